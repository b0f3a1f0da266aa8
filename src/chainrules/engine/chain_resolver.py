"""
Chain Resolver

Turns a rule's declarative hops into concrete proxy identifiers using an
AttributeProvider snapshot.

Resolution is fail-closed: any hop that cannot be resolved fails the whole
chain, and the failure is returned as a ResolutionError value naming the
reference, the hop position and a machine reason.

Hop handling:
- node: the referenced node must exist; resolves to its proxy name
- group: the group must exist and have members; resolves to the group name
- template_group: expanded through the provider (then the vocabulary's
  template groups), following nested templates up to a maximum depth with
  cycle detection; the expansion must end in a node or group hop
- dynamic_node: picks one node matching the hop conditions (first, fastest
  or a seed-stable random pick); the ruled node itself is never a candidate
- custom_group: collects every matching node into a generated proxy group
"""
from __future__ import annotations

import hashlib
import logging
from typing import Any, Optional, Sequence, Union

from ..exceptions import ProviderContractError, ResolutionError
from ..models import (
    AttributeProvider,
    ChainHop,
    CustomProxyGroup,
    HopKind,
    ResolvedChain,
    ResolvedHop,
    SelectMode,
    SelectorType,
    Vocabulary,
    node_id_of,
    resolve_attribute,
)
from .condition_evaluator import ConditionEvaluator

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEMPLATE_DEPTH = 8

HopResult = Union[tuple[ResolvedHop, Optional[CustomProxyGroup]], ResolutionError]


def proxy_name_of(node: Any) -> str:
    """Published proxy name of a node: its name, or its id when unnamed."""
    name, found = resolve_attribute(node, "name")
    if found and name:
        return str(name)
    return node_id_of(node)


def _delay_of(node: Any) -> float:
    value, found = resolve_attribute(node, "delay_time")
    if not found or value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class ChainResolver:
    """
    Resolves chain configurations against one provider snapshot.

    Usage:
        resolver = ChainResolver(snapshot, vocabulary)
        result = resolver.resolve(rule.chain_config, seed=node.id)
        if isinstance(result, ResolutionError):
            ...
    """

    def __init__(
        self,
        provider: AttributeProvider,
        vocabulary: Vocabulary,
        evaluator: Optional[ConditionEvaluator] = None,
        max_template_depth: int = DEFAULT_MAX_TEMPLATE_DEPTH,
    ):
        self.provider = provider
        self.vocabulary = vocabulary
        self.evaluator = evaluator or ConditionEvaluator(vocabulary)
        self.max_template_depth = max_template_depth

    def resolve(
        self,
        chain_config: Sequence[ChainHop],
        seed: Optional[str] = None,
    ) -> Union[ResolvedChain, ResolutionError]:
        """
        Resolve every hop in order.

        Args:
            chain_config: Ordered hops, hop 0 outermost
            seed: Id of the node being ruled; stabilises random picks and
                keeps dynamic_node from selecting that node

        Returns:
            ResolvedChain (possibly empty) or the first ResolutionError
        """
        hops: list[ResolvedHop] = []
        groups: list[CustomProxyGroup] = []

        for position, hop in enumerate(chain_config):
            result = self._resolve_hop(hop, position, seed)
            if isinstance(result, ResolutionError):
                return result
            resolved, group = result
            hops.append(resolved)
            if group is not None:
                groups.append(group)

        return ResolvedChain(hops=tuple(hops), custom_groups=tuple(groups))

    # =========================================================================
    # Hop Resolution
    # =========================================================================

    def _resolve_hop(self, hop: ChainHop, position: int, seed: Optional[str]) -> HopResult:
        declared = hop.selector_type
        if declared == SelectorType.TEMPLATE_GROUP:
            expanded = self._expand_template(hop, position)
            if isinstance(expanded, ResolutionError):
                return expanded
            hop = expanded

        if hop.selector_type == SelectorType.NODE:
            return self._resolve_node(hop, position, declared)
        if hop.selector_type == SelectorType.GROUP:
            return self._resolve_group(hop, position, declared)
        if hop.selector_type == SelectorType.DYNAMIC_NODE:
            return self._resolve_dynamic(hop, position, declared, seed)
        if hop.selector_type == SelectorType.CUSTOM_GROUP:
            return self._resolve_custom_group(hop, position, declared)

        return _error(
            f"Unsupported selector type: {hop.selector_type.value}",
            hop.reference, position, "unsupported_selector",
        )

    def _expand_template(self, hop: ChainHop, position: int) -> Union[ChainHop, ResolutionError]:
        visited: list[str] = []
        current = hop

        while current.selector_type == SelectorType.TEMPLATE_GROUP:
            name = current.reference
            if name in visited:
                return _error(
                    f"Template cycle: {' -> '.join(visited + [name])}",
                    hop.reference, position, "template_cycle",
                )
            if len(visited) >= self.max_template_depth:
                return _error(
                    f"Template nesting deeper than {self.max_template_depth}",
                    hop.reference, position, "template_depth",
                )
            visited.append(name)

            expansion = self.provider.resolve_template(name)
            if expansion is None:
                expansion = self.vocabulary.template_groups.get(name)
            if expansion is None:
                return _error(
                    f"Template group '{name}' does not exist",
                    name, position, "missing_template",
                )
            if not isinstance(expansion, ChainHop):
                raise ProviderContractError(
                    message=f"Template '{name}' expanded to {type(expansion).__name__}, expected ChainHop",
                    details={"template": name},
                )
            current = expansion

        if current.selector_type not in (SelectorType.NODE, SelectorType.GROUP):
            return _error(
                f"Template '{hop.reference}' must expand to a node or group hop, "
                f"got {current.selector_type.value}",
                hop.reference, position, "invalid_template",
            )
        return current

    def _resolve_node(self, hop: ChainHop, position: int, declared: SelectorType) -> HopResult:
        node = self.provider.get_node(hop.reference)
        if node is None:
            return _error(
                f"Node '{hop.reference}' does not exist",
                hop.reference, position, "missing_node",
            )
        resolved = ResolvedHop(
            kind=HopKind.NODE,
            proxy_name=proxy_name_of(node),
            reference=hop.reference,
            position=position,
            selector_type=declared,
        )
        return (resolved, None)

    def _resolve_group(self, hop: ChainHop, position: int, declared: SelectorType) -> HopResult:
        members = self.provider.get_group(hop.reference)
        if members is None:
            return _error(
                f"Group '{hop.reference}' does not exist",
                hop.reference, position, "missing_group",
            )
        if isinstance(members, (str, bytes)):
            raise ProviderContractError(
                message=f"Group '{hop.reference}' members must be a sequence of ids",
                details={"group": hop.reference},
            )
        if len(members) == 0:
            return _error(
                f"Group '{hop.reference}' has no members",
                hop.reference, position, "empty_group",
            )
        resolved = ResolvedHop(
            kind=HopKind.GROUP,
            proxy_name=hop.reference,
            reference=hop.reference,
            position=position,
            selector_type=declared,
        )
        return (resolved, None)

    def _matching_nodes(self, hop: ChainHop) -> list[Any]:
        return [n for n in self.provider.nodes() if self.evaluator.evaluate(hop.conditions, n)]

    def _resolve_dynamic(
        self,
        hop: ChainHop,
        position: int,
        declared: SelectorType,
        seed: Optional[str],
    ) -> HopResult:
        if hop.conditions is None:
            return _error(
                "Dynamic node hop has no conditions",
                hop.describe(), position, "missing_conditions",
            )
        candidates = [n for n in self._matching_nodes(hop) if node_id_of(n) != seed]
        if not candidates:
            return _error(
                "No node matches the dynamic node conditions",
                hop.describe(), position, "no_match",
            )

        mode = hop.select_mode or SelectMode.FIRST
        chosen = _select(candidates, mode, seed)
        resolved = ResolvedHop(
            kind=HopKind.NODE,
            proxy_name=proxy_name_of(chosen),
            reference=node_id_of(chosen),
            position=position,
            selector_type=declared,
        )
        return (resolved, None)

    def _resolve_custom_group(self, hop: ChainHop, position: int, declared: SelectorType) -> HopResult:
        if not hop.reference:
            return _error(
                "Custom group has no name",
                hop.reference, position, "missing_group_name",
            )
        if hop.conditions is None:
            return _error(
                f"Custom group '{hop.reference}' has no conditions",
                hop.reference, position, "missing_conditions",
            )

        proxies = tuple(proxy_name_of(n) for n in self._matching_nodes(hop))
        if not proxies:
            return _error(
                f"Custom group '{hop.reference}' matches no node",
                hop.reference, position, "no_match",
            )

        group = CustomProxyGroup(
            name=hop.reference,
            type=hop.group_type or "select",
            proxies=proxies,
            url_test=hop.url_test,
        )
        resolved = ResolvedHop(
            kind=HopKind.GROUP,
            proxy_name=hop.reference,
            reference=hop.reference,
            position=position,
            selector_type=declared,
        )
        return (resolved, group)


def _select(candidates: list[Any], mode: SelectMode, seed: Optional[str]) -> Any:
    if mode == SelectMode.FASTEST:
        # Lowest positive delay wins; untested nodes (delay <= 0) only as fallback
        chosen = candidates[0]
        for node in candidates[1:]:
            delay = _delay_of(node)
            current = _delay_of(chosen)
            if delay > 0 and (current <= 0 or delay < current):
                chosen = node
        return chosen

    if mode == SelectMode.RANDOM:
        ids = [node_id_of(n) for n in candidates]
        digest = hashlib.sha256("|".join([seed or ""] + ids).encode("utf-8")).hexdigest()
        return candidates[int(digest, 16) % len(candidates)]

    return candidates[0]


def _error(message: str, reference: Optional[str], position: int, reason: str) -> ResolutionError:
    return ResolutionError(
        message=message,
        reference=reference,
        position=position,
        reason=reason,
    )
