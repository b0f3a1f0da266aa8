"""
Chain Rule Models

ChainRule and its two tagged unions:
- ChainHop: one link of the proxy chain (node, group, template_group,
  dynamic_node, custom_group)
- TargetConfig: which nodes the rule applies to (AllTarget,
  SpecifiedNodeTarget, ConditionsTarget)

Rules are immutable; the store produces new instances with
dataclasses.replace() on every mutation.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .conditions import ConditionNode
from .enums import SelectMode, SelectorType, TargetType


# =============================================================================
# Chain Hops
# =============================================================================

@dataclass(frozen=True)
class UrlTestConfig:
    """url-test settings for generated custom groups."""
    url: str = "https://www.gstatic.com/generate_204"
    interval: int = 300
    tolerance: int = 50

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "interval": self.interval, "tolerance": self.tolerance}


@dataclass(frozen=True)
class ChainHop:
    """
    One declarative hop of a proxy chain.

    Hop 0 is the outermost proxy traffic enters; the ruled node itself is the
    final (egress) hop and never appears in the chain.

    Attributes:
        selector_type: How the hop identifies its proxy
        reference: Node id, group name or template name. For custom_group it
            is the generated group's name; unused for dynamic_node.
        conditions: Member/candidate filter (dynamic_node, custom_group)
        select_mode: Pick strategy (dynamic_node)
        group_type: Generated group type, e.g. select or url-test (custom_group)
        url_test: url-test settings (custom_group with group_type url-test)
    """
    selector_type: SelectorType
    reference: str = ""
    conditions: Optional[ConditionNode] = None
    select_mode: Optional[SelectMode] = None
    group_type: Optional[str] = None
    url_test: Optional[UrlTestConfig] = None

    def __post_init__(self) -> None:
        if not isinstance(self.selector_type, SelectorType):
            object.__setattr__(self, "selector_type", SelectorType(self.selector_type))
        if self.select_mode is not None and not isinstance(self.select_mode, SelectMode):
            object.__setattr__(self, "select_mode", SelectMode(self.select_mode))
        if self.reference is None:
            object.__setattr__(self, "reference", "")
        elif not isinstance(self.reference, str):
            object.__setattr__(self, "reference", str(self.reference))

    @classmethod
    def node(cls, node_id: Any) -> ChainHop:
        return cls(SelectorType.NODE, str(node_id))

    @classmethod
    def group(cls, name: str) -> ChainHop:
        return cls(SelectorType.GROUP, name)

    @classmethod
    def template(cls, name: str) -> ChainHop:
        return cls(SelectorType.TEMPLATE_GROUP, name)

    @classmethod
    def dynamic(
        cls,
        conditions: ConditionNode,
        select_mode: SelectMode = SelectMode.FIRST,
    ) -> ChainHop:
        return cls(SelectorType.DYNAMIC_NODE, "", conditions=conditions, select_mode=select_mode)

    @classmethod
    def custom_group(
        cls,
        name: str,
        conditions: ConditionNode,
        group_type: str = "select",
        url_test: Optional[UrlTestConfig] = None,
    ) -> ChainHop:
        return cls(
            SelectorType.CUSTOM_GROUP,
            name,
            conditions=conditions,
            group_type=group_type,
            url_test=url_test,
        )

    def describe(self) -> str:
        if self.selector_type == SelectorType.DYNAMIC_NODE:
            mode = (self.select_mode or SelectMode.FIRST).value
            return f"dynamic_node[{mode}]"
        return f"{self.selector_type.value}:{self.reference}"


# =============================================================================
# Targets
# =============================================================================

@dataclass(frozen=True)
class AllTarget:
    """Matches every node."""
    type: TargetType = field(default=TargetType.ALL, init=False)


@dataclass(frozen=True)
class SpecifiedNodeTarget:
    """Matches exactly one node by id; None matches nothing."""
    node_id: Optional[str] = None
    type: TargetType = field(default=TargetType.SPECIFIED_NODE, init=False)

    def __post_init__(self) -> None:
        if self.node_id is not None and not isinstance(self.node_id, str):
            object.__setattr__(self, "node_id", str(self.node_id))


@dataclass(frozen=True)
class ConditionsTarget:
    """Matches nodes satisfying a condition tree; no root behaves as empty AND."""
    root: Optional[ConditionNode] = None
    type: TargetType = field(default=TargetType.CONDITIONS, init=False)


TargetConfig = Union[AllTarget, SpecifiedNodeTarget, ConditionsTarget]


# =============================================================================
# Chain Rule
# =============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChainRule:
    """
    A declarative mapping from a target matcher to an ordered hop sequence.

    Attributes:
        id: Opaque identifier, stable for the rule's lifetime
        subscription_id: Owning subscription
        name: Human label, not unique, may be empty
        enabled: Disabled rules are skipped but keep their position
        sort_order: Zero-based evaluation order within the subscription
        chain_config: Ordered hops; empty means no induced proxy
        target_config: Exactly one target variant
    """
    id: str
    subscription_id: str
    name: str = ""
    enabled: bool = True
    sort_order: int = 0
    chain_config: tuple[ChainHop, ...] = ()
    target_config: TargetConfig = field(default_factory=SpecifiedNodeTarget)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not isinstance(self.chain_config, tuple):
            object.__setattr__(self, "chain_config", tuple(self.chain_config))
        if self.target_config is None:
            raise ValueError("target_config must be exactly one target variant")
