"""
Chain Rules Composable Conditions

Recursive condition trees used by `conditions` targets and by the
dynamic_node / custom_group hop selectors.

Key components:
- Predicate: Leaf-level comparison of one node attribute against a value
- ConditionGroup: AND/OR combinator over child conditions
- EvaluationResult: Boolean outcome plus diagnostics
- Helper functions: AND(), OR(), PRED(), EQ(), ... for building trees

Trees are immutable (children are tuples) and therefore acyclic by
construction. Field and operator names are kept as plain strings so a rule
referencing a name that later leaves the vocabulary still loads and simply
never matches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .enums import Combinator, ConditionOperator


# =============================================================================
# Predicate (Leaf Condition)
# =============================================================================

@dataclass(frozen=True)
class Predicate:
    """
    A leaf comparison in a condition tree.

    Attributes:
        field: Vocabulary field name (e.g., "link_country", "delay_time")
        operator: Vocabulary operator name (e.g., "equals", "regex")
        value: Literal, or tuple of literals for list operators
    """
    field: str
    operator: str
    value: Any = None

    def __post_init__(self) -> None:
        if isinstance(self.operator, ConditionOperator):
            object.__setattr__(self, "operator", self.operator.value)
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))

    @property
    def is_leaf(self) -> bool:
        return True

    def describe(self) -> str:
        return f"{self.field} {self.operator} {self.value!r}"


# =============================================================================
# ConditionGroup (Combinator)
# =============================================================================

@dataclass(frozen=True)
class ConditionGroup:
    """
    AND/OR over child conditions.

    Empty children are allowed: an empty AND is true, an empty OR is false.
    """
    combinator: Combinator
    children: tuple["ConditionNode", ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.combinator, Combinator):
            object.__setattr__(self, "combinator", Combinator(self.combinator))
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))
        for child in self.children:
            if not isinstance(child, (Predicate, ConditionGroup)):
                raise TypeError(
                    f"Condition child must be Predicate or ConditionGroup, "
                    f"got {type(child).__name__}"
                )

    @property
    def is_leaf(self) -> bool:
        return False

    def describe(self) -> str:
        joiner = f" {self.combinator.value.upper()} "
        return "(" + joiner.join(c.describe() for c in self.children) + ")"


ConditionNode = Union[Predicate, ConditionGroup]


def iter_predicates(condition: ConditionNode):
    """Yield every leaf predicate of a tree, depth-first in declared order."""
    if isinstance(condition, Predicate):
        yield condition
        return
    for child in condition.children:
        yield from iter_predicates(child)


def condition_depth(condition: ConditionNode) -> int:
    """Depth of a tree; a single predicate has depth 1."""
    if isinstance(condition, Predicate):
        return 1
    if not condition.children:
        return 1
    return 1 + max(condition_depth(c) for c in condition.children)


# =============================================================================
# Evaluation Result
# =============================================================================

@dataclass
class EvaluationResult:
    """
    Result of explaining a condition against a node.

    `degraded` lists leaves that evaluated to false because the field,
    operator or value was unusable rather than because the node failed the
    comparison.
    """
    value: bool
    explanation: str
    evaluated_fields: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.value


# =============================================================================
# Helper Functions for Building Conditions
# =============================================================================

def AND(*conditions: ConditionNode) -> ConditionGroup:
    """
    Create an AND condition.

    Example:
        condition = AND(
            EQ("link_country", "HK"),
            LT("delay_time", 300),
        )
    """
    return ConditionGroup(Combinator.AND, tuple(conditions))


def OR(*conditions: ConditionNode) -> ConditionGroup:
    """Create an OR condition."""
    return ConditionGroup(Combinator.OR, tuple(conditions))


def PRED(field: str, operator: Union[str, ConditionOperator], value: Any = None) -> Predicate:
    """Create a leaf predicate."""
    return Predicate(field=field, operator=operator, value=value)


def EQ(field: str, value: Any) -> Predicate:
    """field == value"""
    return PRED(field, ConditionOperator.EQUALS, value)


def NE(field: str, value: Any) -> Predicate:
    """field != value"""
    return PRED(field, ConditionOperator.NOT_EQUALS, value)


def CONTAINS(field: str, value: Any) -> Predicate:
    """value in field (case-insensitive for text, membership for sets)"""
    return PRED(field, ConditionOperator.CONTAINS, value)


def REGEX(field: str, pattern: str) -> Predicate:
    """re.search(pattern, field)"""
    return PRED(field, ConditionOperator.REGEX, pattern)


def GT(field: str, value: Any) -> Predicate:
    return PRED(field, ConditionOperator.GREATER_THAN, value)


def GTE(field: str, value: Any) -> Predicate:
    return PRED(field, ConditionOperator.GREATER_OR_EQUAL, value)


def LT(field: str, value: Any) -> Predicate:
    return PRED(field, ConditionOperator.LESS_THAN, value)


def LTE(field: str, value: Any) -> Predicate:
    return PRED(field, ConditionOperator.LESS_OR_EQUAL, value)


def BETWEEN(field: str, low: Any, high: Any) -> Predicate:
    """low <= field <= high"""
    return PRED(field, ConditionOperator.BETWEEN, (low, high))


def IN(field: str, values: list[Any]) -> Predicate:
    return PRED(field, ConditionOperator.IN, tuple(values))


def NOT_IN(field: str, values: list[Any]) -> Predicate:
    return PRED(field, ConditionOperator.NOT_IN, tuple(values))


def IS_EMPTY(field: str) -> Predicate:
    return PRED(field, ConditionOperator.IS_EMPTY)


def EXISTS(field: str) -> Predicate:
    return PRED(field, ConditionOperator.EXISTS)
