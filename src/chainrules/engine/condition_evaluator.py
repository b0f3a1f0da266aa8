"""
Chain Rules Condition Evaluator

Evaluates condition trees against node attributes.

Key features:
- Values coerced to the field's declared type (string, number, duration,
  set, enum) before comparison
- AND/OR short-circuit in declared child order; empty AND is true,
  empty OR is false
- Total evaluation: an unknown field or operator, an operator applied to the
  wrong field type, an uncoercible value or a bad regex turns the leaf false
  instead of raising
- Pure: no state is kept between calls, so one evaluator can be shared by
  any number of threads
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Callable, Optional

from ..models import (
    Combinator,
    ConditionGroup,
    ConditionNode,
    ConditionOperator,
    EvaluationResult,
    FieldType,
    Predicate,
    Vocabulary,
    resolve_attribute,
    split_tags,
)


# =============================================================================
# Coercion
# =============================================================================

_DURATION_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {None: 1.0, "ms": 1.0, "s": 1000.0, "m": 60_000.0, "h": 3_600_000.0}


def coerce_number(value: Any) -> float:
    """Coerce to float; booleans and non-numeric strings are rejected."""
    if isinstance(value, bool):
        raise TypeError("boolean is not a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        try:
            return float(Decimal(value.strip()))
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}")
    raise TypeError(f"cannot coerce {type(value).__name__} to number")


def parse_duration(value: Any) -> float:
    """
    Coerce to milliseconds.

    Numbers are taken as milliseconds; strings accept an optional ms/s/m/h
    suffix ("250", "250ms", "1.5s", "2m").
    """
    if isinstance(value, bool):
        raise TypeError("boolean is not a duration")
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValueError(f"not a duration: {value!r}")
        unit = match.group(2).lower() if match.group(2) else None
        return float(match.group(1)) * _DURATION_UNITS[unit]
    raise TypeError(f"cannot coerce {type(value).__name__} to duration")


def coerce_text(value: Any) -> str:
    """Coerce scalars to their display text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    raise TypeError(f"cannot coerce {type(value).__name__} to text")


def coerce_set(value: Any) -> frozenset[str]:
    """Coerce a collection, or comma-separated text, to a set of strings."""
    if isinstance(value, str):
        return frozenset(split_tags(value))
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(coerce_text(v) for v in value)
    raise TypeError(f"cannot coerce {type(value).__name__} to set")


_SCALAR_COERCERS: dict[FieldType, Callable[[Any], Any]] = {
    FieldType.STRING: coerce_text,
    FieldType.ENUM: coerce_text,
    FieldType.NUMBER: coerce_number,
    FieldType.DURATION: parse_duration,
}


def _scalar_coercer(field_type: FieldType, operator: ConditionOperator) -> Callable[[Any], Any]:
    coerce = _SCALAR_COERCERS.get(field_type)
    if coerce is None:
        raise TypeError(f"{operator.value} does not support {field_type.value} fields")
    return coerce


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _as_list(expected: Any) -> list[Any]:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return list(expected)
    raise TypeError("operator expects a list value")


# =============================================================================
# Comparison Operators
# =============================================================================

def compare_values(
    actual: Any,
    operator: ConditionOperator,
    expected: Any,
    field_type: FieldType,
) -> bool:
    """
    Compare a present attribute value against a rule value.

    Args:
        actual: Attribute value read from the node (not None)
        operator: Comparison operator
        expected: Value from the rule
        field_type: Declared type of the field

    Returns:
        Comparison result

    Raises:
        TypeError, ValueError, re.error: when either side cannot be coerced;
            callers degrade these to False
    """
    op = ConditionOperator

    if operator in (op.EQUALS, op.NOT_EQUALS):
        if field_type == FieldType.SET:
            equal = coerce_set(actual) == coerce_set(expected)
        else:
            coerce = _scalar_coercer(field_type, operator)
            equal = coerce(actual) == coerce(expected)
        return equal if operator == op.EQUALS else not equal

    if operator in (op.CONTAINS, op.NOT_CONTAINS):
        needle = coerce_text(expected).lower()
        if field_type == FieldType.SET:
            found = needle in {item.lower() for item in coerce_set(actual)}
        else:
            found = needle in coerce_text(actual).lower()
        return found if operator == op.CONTAINS else not found

    if operator == op.STARTS_WITH:
        return coerce_text(actual).lower().startswith(coerce_text(expected).lower())

    if operator == op.ENDS_WITH:
        return coerce_text(actual).lower().endswith(coerce_text(expected).lower())

    if operator == op.REGEX:
        return _compile(coerce_text(expected)).search(coerce_text(actual)) is not None

    if operator in (op.GREATER_THAN, op.GREATER_OR_EQUAL, op.LESS_THAN, op.LESS_OR_EQUAL):
        coerce = _scalar_coercer(field_type, operator)
        a, b = coerce(actual), coerce(expected)
        if operator == op.GREATER_THAN:
            return a > b
        if operator == op.GREATER_OR_EQUAL:
            return a >= b
        if operator == op.LESS_THAN:
            return a < b
        return a <= b

    if operator == op.BETWEEN:
        bounds = _as_list(expected)
        if len(bounds) != 2:
            raise ValueError("between expects [low, high]")
        coerce = _scalar_coercer(field_type, operator)
        low, high = coerce(bounds[0]), coerce(bounds[1])
        return low <= coerce(actual) <= high

    if operator in (op.IN, op.NOT_IN):
        options = _as_list(expected)
        if field_type == FieldType.SET:
            member = bool(coerce_set(actual) & {coerce_text(o) for o in options})
        else:
            coerce = _scalar_coercer(field_type, operator)
            member = coerce(actual) in {coerce(o) for o in options}
        return member if operator == op.IN else not member

    raise ValueError(f"operator {operator.value} is not a comparison")


_PRESENCE_OPERATORS = {
    ConditionOperator.EXISTS,
    ConditionOperator.NOT_EXISTS,
    ConditionOperator.IS_EMPTY,
    ConditionOperator.IS_NOT_EMPTY,
}


def evaluate_predicate(
    predicate: Predicate,
    node: Any,
    vocabulary: Vocabulary,
) -> tuple[bool, Optional[str]]:
    """
    Evaluate one leaf.

    Returns:
        Tuple of (value, degraded_reason). degraded_reason is set when the
        leaf is false because the rule itself is unusable for this vocabulary.
    """
    spec = vocabulary.get_field(predicate.field)
    if spec is None:
        return (False, f"unknown field '{predicate.field}'")

    op_spec = vocabulary.get_operator(predicate.operator)
    if op_spec is None:
        return (False, f"unknown operator '{predicate.operator}'")
    if not op_spec.applies_to(spec.type):
        return (False, f"operator '{predicate.operator}' not applicable to {spec.type.value}")
    try:
        operator = ConditionOperator(op_spec.name)
    except ValueError:
        return (False, f"unsupported operator '{predicate.operator}'")

    actual, found = resolve_attribute(node, spec.attribute_name)
    present = found and actual is not None

    if operator in _PRESENCE_OPERATORS:
        if operator == ConditionOperator.EXISTS:
            return (present, None)
        if operator == ConditionOperator.NOT_EXISTS:
            return (not present, None)
        empty = not present or _is_empty(actual)
        return (empty if operator == ConditionOperator.IS_EMPTY else not empty, None)

    if not present:
        return (False, None)

    try:
        return (compare_values(actual, operator, predicate.value, spec.type), None)
    except (TypeError, ValueError, re.error) as e:
        return (False, f"{predicate.describe()}: {e}")


# =============================================================================
# Condition Evaluator
# =============================================================================

@dataclass(frozen=True)
class ConditionEvaluator:
    """
    Evaluates condition trees against nodes for one vocabulary.

    Usage:
        evaluator = ConditionEvaluator(default_vocabulary())
        if evaluator.evaluate(AND(EQ("link_country", "HK")), node):
            ...

        result = evaluator.explain(condition, node)
        print(result.explanation, result.degraded)
    """
    vocabulary: Vocabulary

    def evaluate(self, condition: Optional[ConditionNode], node: Any) -> bool:
        """
        Evaluate a condition tree; None behaves as an empty AND (true).
        """
        if condition is None:
            return True
        return self._evaluate(condition, node)

    def _evaluate(self, condition: ConditionNode, node: Any) -> bool:
        if isinstance(condition, Predicate):
            value, _ = evaluate_predicate(condition, node, self.vocabulary)
            return value
        if isinstance(condition, ConditionGroup):
            if condition.combinator == Combinator.AND:
                return all(self._evaluate(child, node) for child in condition.children)
            return any(self._evaluate(child, node) for child in condition.children)
        raise TypeError(f"Not a condition node: {type(condition).__name__}")

    def explain(self, condition: Optional[ConditionNode], node: Any) -> EvaluationResult:
        """
        Evaluate with diagnostics.

        Short-circuits exactly like evaluate(), so `evaluated_fields` lists
        only the leaves that were actually consulted.
        """
        if condition is None:
            return EvaluationResult(value=True, explanation="no condition (empty AND)")
        return self._explain(condition, node)

    def _explain(self, condition: ConditionNode, node: Any) -> EvaluationResult:
        if isinstance(condition, Predicate):
            value, degraded = evaluate_predicate(condition, node, self.vocabulary)
            if degraded:
                explanation = f"{condition.describe()}: DEGRADED ({degraded})"
            else:
                explanation = f"{condition.describe()}: {'PASSED' if value else 'FAILED'}"
            return EvaluationResult(
                value=value,
                explanation=explanation,
                evaluated_fields=[condition.field],
                degraded=[degraded] if degraded else [],
            )

        is_and = condition.combinator == Combinator.AND
        label = "AND" if is_and else "OR"
        result = EvaluationResult(value=is_and, explanation=f"{label}()")
        parts: list[str] = []

        for child in condition.children:
            child_result = self._explain(child, node)
            parts.append(child_result.explanation)
            result.evaluated_fields.extend(child_result.evaluated_fields)
            result.degraded.extend(child_result.degraded)

            # Short-circuit: false dominates AND, true dominates OR
            if is_and and not child_result.value:
                result.value = False
                break
            if not is_and and child_result.value:
                result.value = True
                break

        if parts:
            result.explanation = f"{label}(" + "; ".join(parts) + ")"
        return result

    def get_required_fields(self, condition: Optional[ConditionNode]) -> set[str]:
        """
        Get all field names referenced by a condition.

        Useful for building the attribute snapshot a rule set needs.
        """
        fields: set[str] = set()
        if condition is not None:
            self._collect_fields(condition, fields)
        return fields

    def _collect_fields(self, condition: ConditionNode, fields: set[str]) -> None:
        if isinstance(condition, Predicate):
            fields.add(condition.field)
        else:
            for child in condition.children:
                self._collect_fields(child, fields)


# =============================================================================
# Convenience Functions
# =============================================================================

def evaluate_condition(
    condition: Optional[ConditionNode],
    node: Any,
    vocabulary: Vocabulary,
) -> bool:
    """
    Evaluate a condition tree against a node.

    Convenience function that creates a temporary evaluator.
    """
    return ConditionEvaluator(vocabulary).evaluate(condition, node)
