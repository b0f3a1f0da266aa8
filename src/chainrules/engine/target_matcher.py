"""
Target Matcher

Decides whether a rule's target selects a node.
"""
from __future__ import annotations

from typing import Any

from ..models import (
    AllTarget,
    ConditionsTarget,
    SpecifiedNodeTarget,
    TargetConfig,
    Vocabulary,
    node_id_of,
)
from .condition_evaluator import ConditionEvaluator


class TargetMatcher:
    """
    Matches a TargetConfig against a node.

    - AllTarget: every node
    - SpecifiedNodeTarget: node id equality by string form; None matches nothing
    - ConditionsTarget: delegated to ConditionEvaluator; a missing root is
      an empty AND and so matches every node
    """

    def __init__(self, vocabulary: Vocabulary, evaluator: ConditionEvaluator | None = None):
        self.vocabulary = vocabulary
        self.evaluator = evaluator or ConditionEvaluator(vocabulary)

    def matches(self, target: TargetConfig, node: Any) -> bool:
        if isinstance(target, AllTarget):
            return True
        if isinstance(target, SpecifiedNodeTarget):
            if target.node_id is None:
                return False
            return node_id_of(node) == target.node_id
        if isinstance(target, ConditionsTarget):
            return self.evaluator.evaluate(target.root, node)
        raise TypeError(f"Unknown target variant: {type(target).__name__}")


def matches_target(target: TargetConfig, node: Any, vocabulary: Vocabulary) -> bool:
    """Convenience function that creates a temporary matcher."""
    return TargetMatcher(vocabulary).matches(target, node)
