"""
Persisted Rule Record Codec

Rules are stored as flat records whose chainConfig and targetConfig are
independently JSON-encoded strings:

    {
        "id": "...", "subscriptionId": "...", "name": "...",
        "enabled": true, "sortOrder": 0,
        "chainConfig": "[{\"selectorType\": \"node\", \"reference\": \"hk\"}]",
        "targetConfig": "{\"type\": \"all\"}"
    }

decode_rule() also accepts the legacy record shapes (see packs.schema).
"""
from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from ..exceptions import PackValidationError
from ..models import (
    AllTarget,
    ChainHop,
    ChainRule,
    ConditionNode,
    ConditionsTarget,
    Predicate,
    SpecifiedNodeTarget,
    TargetConfig,
)
from .schema import ConditionSchema, HopSchema, RuleRecordSchema, TargetSchema


# =============================================================================
# Encoding
# =============================================================================

def _json_value(value: Any) -> Any:
    if isinstance(value, (tuple, list)):
        return [_json_value(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_json_value(v) for v in value)
    return value


def condition_to_dict(condition: ConditionNode) -> dict[str, Any]:
    if isinstance(condition, Predicate):
        return {
            "field": condition.field,
            "operator": condition.operator,
            "value": _json_value(condition.value),
        }
    return {
        "combinator": condition.combinator.value,
        "children": [condition_to_dict(child) for child in condition.children],
    }


def hop_to_dict(hop: ChainHop) -> dict[str, Any]:
    result: dict[str, Any] = {
        "selectorType": hop.selector_type.value,
        "reference": hop.reference,
    }
    if hop.conditions is not None:
        result["conditions"] = condition_to_dict(hop.conditions)
    if hop.select_mode is not None:
        result["selectMode"] = hop.select_mode.value
    if hop.group_type is not None:
        result["groupType"] = hop.group_type
    if hop.url_test is not None:
        result["urlTestConfig"] = hop.url_test.to_dict()
    return result


def target_to_dict(target: TargetConfig) -> dict[str, Any]:
    if isinstance(target, SpecifiedNodeTarget):
        return {"type": target.type.value, "nodeId": target.node_id}
    if isinstance(target, ConditionsTarget):
        return {
            "type": target.type.value,
            "conditions": condition_to_dict(target.root) if target.root is not None else None,
        }
    if isinstance(target, AllTarget):
        return {"type": target.type.value}
    raise TypeError(f"Unknown target variant: {type(target).__name__}")


def encode_rule(rule: ChainRule) -> dict[str, Any]:
    """Encode a rule as a canonical persisted record."""
    return {
        "id": rule.id,
        "subscriptionId": rule.subscription_id,
        "name": rule.name,
        "enabled": rule.enabled,
        "sortOrder": rule.sort_order,
        "chainConfig": json.dumps([hop_to_dict(h) for h in rule.chain_config], ensure_ascii=False),
        "targetConfig": json.dumps(target_to_dict(rule.target_config), ensure_ascii=False),
        "createdAt": rule.created_at.isoformat(),
        "updatedAt": rule.updated_at.isoformat(),
    }


# =============================================================================
# Decoding
# =============================================================================

def _validation_error(kind: str, e: ValidationError, context: Optional[dict[str, Any]] = None) -> PackValidationError:
    details: dict[str, Any] = {"errors": e.errors(include_url=False)}
    details.update(context or {})
    return PackValidationError(
        message=f"Invalid {kind}: {e.error_count()} validation error(s)",
        details=details,
    )


def _loads(text: str, kind: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise PackValidationError(
            message=f"Invalid {kind}: not valid JSON ({e.msg})",
            details={"position": e.pos},
        )


def decode_rule(record: Mapping[str, Any]) -> ChainRule:
    """
    Decode a persisted record (canonical or legacy) into a ChainRule.

    Raises:
        PackValidationError: record does not match either shape
    """
    try:
        schema = RuleRecordSchema.model_validate(dict(record))
    except ValidationError as e:
        raise _validation_error("rule record", e, {"rule_id": record.get("id")})

    kwargs: dict[str, Any] = {}
    if schema.created_at is not None:
        kwargs["created_at"] = schema.created_at
    if schema.updated_at is not None:
        kwargs["updated_at"] = schema.updated_at

    return ChainRule(
        id=str(schema.id),
        subscription_id=str(schema.subscription_id),
        name=schema.name,
        enabled=schema.enabled,
        sort_order=schema.position,
        chain_config=tuple(h.to_hop() for h in schema.chain_config),
        target_config=schema.target_config.to_target(),
        **kwargs,
    )


def decode_condition(data: Any) -> ConditionNode:
    """Decode a condition tree from a dict or its JSON text."""
    if isinstance(data, str):
        data = _loads(data, "condition")
    try:
        return ConditionSchema.model_validate(data).to_condition()
    except ValidationError as e:
        raise _validation_error("condition", e)


def decode_hop(data: Mapping[str, Any]) -> ChainHop:
    try:
        return HopSchema.model_validate(dict(data)).to_hop()
    except ValidationError as e:
        raise _validation_error("chain hop", e)


def decode_target(data: Any) -> TargetConfig:
    """Decode a target from a dict or JSON text; empty input means all."""
    if isinstance(data, str):
        data = _loads(data, "target") if data.strip() else {}
    try:
        return TargetSchema.model_validate(data or {}).to_target()
    except ValidationError as e:
        raise _validation_error("target", e)
