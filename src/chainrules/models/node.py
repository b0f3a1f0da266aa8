"""
Node Attributes and the Attribute Provider

The engine never owns nodes. It reads them through an AttributeProvider,
typically a NodeSnapshot taken once per subscription-generation pass so every
node in the pass is judged against the same attribute set.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ..exceptions import ProviderContractError
from .rule import ChainHop


@dataclass(frozen=True)
class Node:
    """
    Read-only view of a proxy node.

    Attribute names match the default vocabulary's field names. Fields not
    modelled here can be supplied through `extra`.
    """
    id: str
    name: str = ""
    link_name: str = ""
    link_address: str = ""
    link_host: str = ""
    link_port: Optional[int] = None
    link_country: str = ""
    protocol: str = ""
    group: str = ""
    source: str = "manual"
    speed: Optional[float] = None            # MB/s
    delay_time: Optional[int] = None         # ms
    speed_status: str = ""
    delay_status: str = ""
    tags: tuple[str, ...] = ()
    dialer_proxy_name: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str):
            object.__setattr__(self, "id", str(self.id))
        if isinstance(self.tags, str):
            object.__setattr__(self, "tags", split_tags(self.tags))
        elif not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def proxy_name(self) -> str:
        """Name the node is published under; falls back to its id."""
        return self.name or self.id

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Node:
        """Build a node from a dict, moving unknown keys into `extra`."""
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known and k != "extra"}
        extra.update(data.get("extra") or {})
        if "id" not in kwargs:
            raise ProviderContractError(
                message="Node record has no id",
                details={"keys": sorted(data)},
            )
        return cls(extra=extra, **kwargs)


def split_tags(raw: str) -> tuple[str, ...]:
    """Split comma-separated tag storage, trimming and de-duplicating."""
    seen: list[str] = []
    for part in raw.split(","):
        part = part.strip()
        if part and part not in seen:
            seen.append(part)
    return tuple(seen)


def resolve_attribute(node: Any, name: str) -> tuple[Any, bool]:
    """
    Read an attribute from a node object or mapping.

    Returns:
        Tuple of (value, found). `extra` is consulted after real attributes.
    """
    if isinstance(node, Mapping):
        if name in node:
            return (node[name], True)
        extra = node.get("extra")
        if isinstance(extra, Mapping) and name in extra:
            return (extra[name], True)
        return (None, False)

    if hasattr(node, name):
        return (getattr(node, name), True)
    extra = getattr(node, "extra", None)
    if isinstance(extra, Mapping) and name in extra:
        return (extra[name], True)
    return (None, False)


def node_id_of(node: Any) -> str:
    value, found = resolve_attribute(node, "id")
    if not found or value is None:
        raise ProviderContractError(
            message="Node has no id attribute",
            details={"node_type": type(node).__name__},
        )
    return str(value)


# =============================================================================
# Provider Interface
# =============================================================================

@runtime_checkable
class AttributeProvider(Protocol):
    """Read-only source of nodes, groups and template expansions."""

    def get_node(self, node_id: str) -> Optional[Node]:
        ...

    def get_group(self, name: str) -> Optional[Sequence[str]]:
        """Member identifiers of a group, or None if the group is unknown."""
        ...

    def resolve_template(self, name: str) -> Optional[ChainHop]:
        ...

    def nodes(self) -> Sequence[Node]:
        """All nodes, in stable order (used by dynamic/custom hops)."""
        ...


@dataclass(frozen=True)
class NodeSnapshot:
    """
    Immutable point-in-time AttributeProvider.

    Groups are derived from node `group` attributes and can be extended with
    explicit policy groups (e.g. proxy-groups of a Clash template).
    """
    _nodes: tuple[Node, ...]
    _by_id: Mapping[str, Node]
    _groups: Mapping[str, tuple[str, ...]]
    _templates: Mapping[str, ChainHop]

    @classmethod
    def build(
        cls,
        nodes: Iterable[Node],
        groups: Optional[Mapping[str, Iterable[str]]] = None,
        templates: Optional[Mapping[str, ChainHop]] = None,
    ) -> NodeSnapshot:
        node_list = tuple(nodes)
        by_id: dict[str, Node] = {}
        derived: dict[str, list[str]] = {}
        for node in node_list:
            if node.id in by_id:
                raise ProviderContractError(
                    message=f"Duplicate node id in snapshot: {node.id}",
                    details={"node_id": node.id},
                )
            by_id[node.id] = node
            if node.group:
                derived.setdefault(node.group, []).append(node.id)

        all_groups = {name: tuple(ids) for name, ids in derived.items()}
        for name, members in (groups or {}).items():
            all_groups[name] = tuple(str(m) for m in members)

        return cls(
            _nodes=node_list,
            _by_id=MappingProxyType(by_id),
            _groups=MappingProxyType(all_groups),
            _templates=MappingProxyType(dict(templates or {})),
        )

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._by_id.get(str(node_id))

    def get_group(self, name: str) -> Optional[Sequence[str]]:
        return self._groups.get(name)

    def resolve_template(self, name: str) -> Optional[ChainHop]:
        return self._templates.get(name)

    def nodes(self) -> Sequence[Node]:
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
