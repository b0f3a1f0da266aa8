"""
Chain Rule Engine

First-match-wins evaluation of ordered chain rules.

For each node:
1. Walk the enabled rules in sort order
2. The first rule whose target matches decides the node's chain
3. Its chain is resolved; an empty chain claims the node without a proxy
4. When the chain cannot be resolved the resolution policy decides:
   fail_closed stops with no chain, fail_open skips to the next rule

Evaluation never raises for bad rule data. Resolution failures come back as
ResolutionError values on the decision and are logged at WARNING.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from ..config import Settings, get_settings
from ..exceptions import ResolutionError
from ..models import (
    AttributeProvider,
    ChainRule,
    CustomProxyGroup,
    ResolutionPolicy,
    ResolvedChain,
    Vocabulary,
    node_id_of,
    resolve_attribute,
)
from .chain_resolver import DEFAULT_MAX_TEMPLATE_DEPTH, ChainResolver
from .condition_evaluator import ConditionEvaluator
from .target_matcher import TargetMatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainDecision:
    """
    Outcome of evaluating one node.

    Attributes:
        node_id: Evaluated node
        rule_id: Rule that decided the node (None when nothing matched)
        chain: Resolved chain, None when no chain applies
        error: Resolution failure that left the node without a chain
        skipped: Failures passed over under the fail_open policy
        preserved_dialer: Pre-set dialer proxy kept during pass evaluation
    """
    node_id: str
    rule_id: Optional[str] = None
    chain: Optional[ResolvedChain] = None
    error: Optional[ResolutionError] = None
    skipped: tuple[ResolutionError, ...] = ()
    preserved_dialer: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.chain is not None

    @property
    def dialer_proxy(self) -> Optional[str]:
        if self.preserved_dialer:
            return self.preserved_dialer
        return self.chain.dialer_proxy if self.chain is not None else None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "nodeId": self.node_id,
            "ruleId": self.rule_id,
            "chain": self.chain.proxy_names if self.chain is not None else None,
            "dialerProxy": self.dialer_proxy,
        }
        if self.preserved_dialer:
            result["preserved"] = True
        if self.error is not None:
            result["error"] = self.error.to_dict()
        if self.skipped:
            result["skipped"] = [e.to_dict() for e in self.skipped]
        return result


@dataclass
class PassResult:
    """Decisions for every node of one subscription-generation pass."""
    decisions: list[ChainDecision] = field(default_factory=list)
    custom_groups: list[CustomProxyGroup] = field(default_factory=list)
    errors: list[ResolutionError] = field(default_factory=list)

    def decision_for(self, node_id: str) -> Optional[ChainDecision]:
        for decision in self.decisions:
            if decision.node_id == node_id:
                return decision
        return None

    def dialer_proxies(self) -> dict[str, str]:
        """node id -> dialer proxy name, for nodes that end up with one."""
        return {
            d.node_id: d.dialer_proxy
            for d in self.decisions
            if d.dialer_proxy
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "decisions": [d.to_dict() for d in self.decisions],
            "customGroups": [g.to_dict() for g in self.custom_groups],
            "errors": [e.to_dict() for e in self.errors],
        }


class ChainRuleEngine:
    """
    Façade over TargetMatcher and ChainResolver.

    Usage:
        snapshot = NodeSnapshot.build(nodes)
        engine = ChainRuleEngine(snapshot, default_vocabulary())

        chain = engine.resolve_for_node(node, store.list_enabled(sub_id))
        decision = engine.decide(node, rules)
        result = engine.evaluate_pass(rules)
    """

    def __init__(
        self,
        provider: AttributeProvider,
        vocabulary: Vocabulary,
        policy: ResolutionPolicy = ResolutionPolicy.FAIL_CLOSED,
        max_template_depth: int = DEFAULT_MAX_TEMPLATE_DEPTH,
        preserve_existing_dialer: bool = True,
    ):
        self.provider = provider
        self.vocabulary = vocabulary
        self.policy = ResolutionPolicy(policy)
        self.preserve_existing_dialer = preserve_existing_dialer

        evaluator = ConditionEvaluator(vocabulary)
        self.matcher = TargetMatcher(vocabulary, evaluator)
        self.resolver = ChainResolver(
            provider,
            vocabulary,
            evaluator,
            max_template_depth=max_template_depth,
        )

    @classmethod
    def from_settings(
        cls,
        provider: AttributeProvider,
        vocabulary: Vocabulary,
        settings: Optional[Settings] = None,
    ) -> ChainRuleEngine:
        settings = settings or get_settings()
        return cls(
            provider,
            vocabulary,
            policy=settings.resolution_policy,
            max_template_depth=settings.max_template_depth,
            preserve_existing_dialer=settings.preserve_existing_dialer,
        )

    # =========================================================================
    # Single Node
    # =========================================================================

    def decide(self, node: Any, rules: Sequence[ChainRule]) -> ChainDecision:
        """
        Evaluate one node against rules already in sort order.

        Disabled rules are skipped. The first matching rule is final unless
        its chain fails and the policy is fail_open.
        """
        node_id = node_id_of(node)
        skipped: list[ResolutionError] = []

        for rule in rules:
            if not rule.enabled:
                continue
            if not self.matcher.matches(rule.target_config, node):
                continue

            result = self.resolver.resolve(rule.chain_config, seed=node_id)
            if not isinstance(result, ResolutionError):
                logger.debug(
                    "Node %s matched rule %s -> %s",
                    node_id, rule.id, result.proxy_names,
                    extra={"subscription_id": rule.subscription_id, "rule_id": rule.id, "node_id": node_id},
                )
                return ChainDecision(
                    node_id=node_id,
                    rule_id=rule.id,
                    chain=result,
                    skipped=tuple(skipped),
                )

            error = dataclasses.replace(
                result,
                rule_id=rule.id,
                subscription_id=rule.subscription_id,
            )
            logger.warning(
                "Chain rule %s matched node %s but its chain failed: %s",
                rule.id, node_id, error.message,
                extra={
                    "subscription_id": rule.subscription_id,
                    "rule_id": rule.id,
                    "node_id": node_id,
                    "reason": error.reason,
                    "reference": error.reference,
                    "position": error.position,
                },
            )
            if self.policy == ResolutionPolicy.FAIL_OPEN:
                skipped.append(error)
                continue
            return ChainDecision(
                node_id=node_id,
                rule_id=rule.id,
                error=error,
                skipped=tuple(skipped),
            )

        return ChainDecision(node_id=node_id, skipped=tuple(skipped))

    def resolve_for_node(
        self,
        node: Any,
        rules: Sequence[ChainRule],
        diagnostics: Optional[list[ResolutionError]] = None,
    ) -> Optional[ResolvedChain]:
        """
        Resolve the chain for one node.

        Returns:
            The resolved chain (empty when the matching rule claims the node
            without a proxy), or None when no rule applies or the matching
            rule's chain failed. Failures are appended to `diagnostics`.
        """
        decision = self.decide(node, rules)
        if diagnostics is not None:
            diagnostics.extend(decision.skipped)
            if decision.error is not None:
                diagnostics.append(decision.error)
        return decision.chain

    # =========================================================================
    # Whole Pass
    # =========================================================================

    def evaluate_pass(
        self,
        rules: Sequence[ChainRule],
        nodes: Optional[Iterable[Any]] = None,
    ) -> PassResult:
        """
        Evaluate every node of a subscription-generation pass.

        Args:
            rules: Rules in sort order
            nodes: Nodes to evaluate; defaults to every provider node

        Custom groups are collected once per name; the first definition wins.
        """
        result = PassResult()
        seen_groups: set[str] = set()

        for node in (self.provider.nodes() if nodes is None else nodes):
            existing = self._existing_dialer(node)
            if existing:
                result.decisions.append(
                    ChainDecision(node_id=node_id_of(node), preserved_dialer=existing)
                )
                continue

            decision = self.decide(node, rules)
            result.decisions.append(decision)
            result.errors.extend(decision.skipped)
            if decision.error is not None:
                result.errors.append(decision.error)
            if decision.chain is None:
                continue
            for group in decision.chain.custom_groups:
                if group.name not in seen_groups:
                    seen_groups.add(group.name)
                    result.custom_groups.append(group)

        logger.info(
            "Evaluated %d nodes: %d with chains, %d errors, %d custom groups",
            len(result.decisions),
            sum(1 for d in result.decisions if d.dialer_proxy),
            len(result.errors),
            len(result.custom_groups),
        )
        return result

    def _existing_dialer(self, node: Any) -> Optional[str]:
        if not self.preserve_existing_dialer:
            return None
        value, found = resolve_attribute(node, "dialer_proxy_name")
        if found and value:
            return str(value)
        return None
