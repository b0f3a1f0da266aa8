"""
Write-time Rule Validation

Rules are checked against the vocabulary before they are persisted. The
evaluator degrades bad leaves to false at run time; the validator is where
the same problems are reported to whoever is saving the rule.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from ..exceptions import RuleValidationError
from ..models import (
    ARITY_LIST,
    ARITY_NONE,
    ARITY_PAIR,
    AllTarget,
    ChainHop,
    ChainRule,
    ConditionNode,
    ConditionOperator,
    ConditionsTarget,
    FieldType,
    Predicate,
    SelectorType,
    SpecifiedNodeTarget,
    Vocabulary,
    condition_depth,
    iter_predicates,
)
from .condition_evaluator import coerce_number, coerce_text, parse_duration

MAX_CONDITION_DEPTH = 16

_SCALAR_CHECKS = {
    FieldType.NUMBER: coerce_number,
    FieldType.DURATION: parse_duration,
    FieldType.STRING: coerce_text,
    FieldType.ENUM: coerce_text,
}

_ORDERED_OPERATORS = frozenset({
    ConditionOperator.GREATER_THAN.value,
    ConditionOperator.GREATER_OR_EQUAL.value,
    ConditionOperator.LESS_THAN.value,
    ConditionOperator.LESS_OR_EQUAL.value,
    ConditionOperator.BETWEEN.value,
})


@dataclass(frozen=True)
class RuleValidator:
    """
    Collects every problem in a rule instead of stopping at the first.

    Usage:
        errors = RuleValidator(vocabulary).validate(rule)
        RuleValidator(vocabulary).check(rule)  # raises RuleValidationError
    """
    vocabulary: Vocabulary

    def validate(self, rule: ChainRule) -> list[str]:
        errors: list[str] = []
        if not rule.subscription_id:
            errors.append("subscription_id is required")
        if not isinstance(rule.enabled, bool):
            errors.append("enabled must be a boolean")
        errors.extend(self.validate_chain(rule.chain_config))
        errors.extend(self.validate_target(rule.target_config))
        return errors

    def check(self, rule: ChainRule) -> None:
        errors = self.validate(rule)
        if errors:
            raise RuleValidationError(
                message=f"Rule '{rule.name or rule.id}' is invalid: {errors[0]}",
                details={"rule_id": rule.id, "errors": errors},
                subscription_id=rule.subscription_id or None,
            )

    # =========================================================================
    # Chains
    # =========================================================================

    def validate_chain(self, chain_config: tuple[ChainHop, ...]) -> list[str]:
        errors: list[str] = []
        for position, hop in enumerate(chain_config):
            if not isinstance(hop, ChainHop):
                errors.append(f"chain[{position}]: not a chain hop")
                continue
            errors.extend(f"chain[{position}]: {e}" for e in self._validate_hop(hop))
        return errors

    def _validate_hop(self, hop: ChainHop) -> list[str]:
        errors: list[str] = []
        selector = hop.selector_type

        if selector in (SelectorType.NODE, SelectorType.GROUP, SelectorType.TEMPLATE_GROUP):
            if not hop.reference:
                errors.append(f"{selector.value} hop requires a reference")
            return errors

        if hop.conditions is None:
            errors.append(f"{selector.value} hop requires conditions")
        else:
            errors.extend(self.validate_condition(hop.conditions))

        if selector == SelectorType.CUSTOM_GROUP:
            if not hop.reference:
                errors.append("custom_group hop requires a group name")
            group_type = hop.group_type or "select"
            if group_type not in self.vocabulary.group_types:
                errors.append(f"unknown group type '{group_type}'")
            if hop.url_test is not None:
                if hop.url_test.interval <= 0:
                    errors.append("url test interval must be positive")
                if hop.url_test.tolerance < 0:
                    errors.append("url test tolerance must not be negative")
        return errors

    # =========================================================================
    # Targets
    # =========================================================================

    def validate_target(self, target: Any) -> list[str]:
        if isinstance(target, (AllTarget, SpecifiedNodeTarget)):
            return []
        if isinstance(target, ConditionsTarget):
            if target.root is None:
                return []
            return self.validate_condition(target.root)
        return [f"unknown target variant {type(target).__name__}"]

    # =========================================================================
    # Conditions
    # =========================================================================

    def validate_condition(self, condition: ConditionNode) -> list[str]:
        if condition_depth(condition) > MAX_CONDITION_DEPTH:
            return [f"condition tree deeper than {MAX_CONDITION_DEPTH}"]
        errors: list[str] = []
        for predicate in iter_predicates(condition):
            error = self._validate_predicate(predicate)
            if error:
                errors.append(error)
        return errors

    def _validate_predicate(self, predicate: Predicate) -> Optional[str]:
        spec = self.vocabulary.get_field(predicate.field)
        if spec is None:
            return f"unknown field '{predicate.field}'"
        op_spec = self.vocabulary.get_operator(predicate.operator)
        if op_spec is None:
            return f"unknown operator '{predicate.operator}'"
        if not op_spec.applies_to(spec.type):
            return f"operator '{predicate.operator}' does not apply to {spec.type.value} field '{spec.name}'"
        if spec.type == FieldType.SET and predicate.operator in _ORDERED_OPERATORS:
            return f"operator '{predicate.operator}' cannot order set field '{spec.name}'"

        value = predicate.value
        if op_spec.arity == ARITY_NONE:
            return None
        if op_spec.arity == ARITY_LIST:
            if not isinstance(value, (list, tuple, set, frozenset)) or not value:
                return f"'{predicate.field} {predicate.operator}' expects a non-empty list"
            items = list(value)
        elif op_spec.arity == ARITY_PAIR:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                return f"'{predicate.field} {predicate.operator}' expects [low, high]"
            items = list(value)
        else:
            if value is None:
                return f"'{predicate.field} {predicate.operator}' requires a value"
            items = [value]

        if predicate.operator == ConditionOperator.REGEX.value:
            try:
                re.compile(coerce_text(value))
            except (re.error, TypeError) as e:
                return f"invalid regex for '{predicate.field}': {e}"
            return None

        check = _SCALAR_CHECKS.get(spec.type, coerce_text)
        for item in items:
            if spec.type == FieldType.SET and isinstance(item, (list, tuple, set, frozenset)):
                if any(not isinstance(v, (str, int, float)) for v in item):
                    return f"'{predicate.field}' set value has non-scalar members"
                continue
            try:
                text_or_number = check(item)
            except (TypeError, ValueError) as e:
                return f"value {item!r} is not a valid {spec.type.value} for '{predicate.field}': {e}"
            if spec.type == FieldType.ENUM and spec.choices and text_or_number not in spec.choices:
                return f"value {item!r} is not one of {list(spec.choices)} for '{predicate.field}'"
        return None


def validate_rule(rule: ChainRule, vocabulary: Vocabulary) -> list[str]:
    """Convenience function returning all validation errors for a rule."""
    return RuleValidator(vocabulary).validate(rule)
