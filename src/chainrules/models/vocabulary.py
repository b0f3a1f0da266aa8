"""
Condition Vocabulary

The set of valid condition fields, operators, group types and template
groups is owned by the surrounding system and passed explicitly to the
evaluator, resolver and validator. Nothing here is global state;
default_vocabulary() only builds the stock option lists of the console.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .enums import ConditionOperator, FieldType
from .rule import ChainHop


# Operator arities
ARITY_NONE = "none"        # is_empty, exists, ...
ARITY_SCALAR = "scalar"
ARITY_LIST = "list"        # in, not_in
ARITY_PAIR = "pair"        # between


@dataclass(frozen=True)
class FieldSpec:
    """
    A condition field.

    Attributes:
        name: Wire name used in condition leaves
        type: Declared type, drives coercion
        label: Display label
        attribute: Node attribute to read (defaults to name)
        choices: Allowed values for ENUM fields
    """
    name: str
    type: FieldType
    label: str = ""
    attribute: Optional[str] = None
    choices: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.type, FieldType):
            object.__setattr__(self, "type", FieldType(self.type))
        if not isinstance(self.choices, tuple):
            object.__setattr__(self, "choices", tuple(self.choices))

    @property
    def attribute_name(self) -> str:
        return self.attribute or self.name


@dataclass(frozen=True)
class OperatorSpec:
    """A condition operator and the field types it applies to."""
    name: str
    field_types: frozenset[FieldType]
    arity: str = ARITY_SCALAR
    label: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.field_types, frozenset):
            object.__setattr__(
                self, "field_types", frozenset(FieldType(t) for t in self.field_types)
            )

    def applies_to(self, field_type: FieldType) -> bool:
        return field_type in self.field_types


@dataclass(frozen=True)
class Vocabulary:
    """
    Externally supplied configuration for evaluation and validation.

    Attributes:
        fields: Field name -> FieldSpec
        operators: Operator name -> OperatorSpec
        group_types: Allowed custom group types
        template_groups: Template name -> expansion hop
    """
    fields: dict[str, FieldSpec] = field(default_factory=dict)
    operators: dict[str, OperatorSpec] = field(default_factory=dict)
    group_types: tuple[str, ...] = ("select", "url-test")
    template_groups: dict[str, ChainHop] = field(default_factory=dict)

    def get_field(self, name: str) -> Optional[FieldSpec]:
        return self.fields.get(name)

    def get_operator(self, name: str) -> Optional[OperatorSpec]:
        return self.operators.get(name)

    def with_template_groups(self, templates: dict[str, ChainHop]) -> Vocabulary:
        """Copy with additional template groups (later definitions win)."""
        merged = dict(self.template_groups)
        merged.update(templates)
        return Vocabulary(
            fields=dict(self.fields),
            operators=dict(self.operators),
            group_types=self.group_types,
            template_groups=merged,
        )

    def to_options(self) -> dict[str, Any]:
        """Option lists as consumed by the rule builder UI."""
        return {
            "conditionFields": [
                {"value": f.name, "label": f.label or f.name, "type": f.type.value}
                for f in self.fields.values()
            ],
            "operators": [
                {"value": o.name, "label": o.label or o.name}
                for o in self.operators.values()
            ],
            "groupTypes": [{"value": g, "label": g} for g in self.group_types],
            "templateGroups": sorted(self.template_groups),
        }


# =============================================================================
# Defaults
# =============================================================================

_ALL_TYPES = frozenset(FieldType)
_TEXT_TYPES = frozenset({FieldType.STRING, FieldType.ENUM})
_ORDERED_TYPES = frozenset({FieldType.NUMBER, FieldType.DURATION})

STATUS_CHOICES = ("untested", "success", "timeout", "error")


def _operators(specs: Iterable[OperatorSpec]) -> dict[str, OperatorSpec]:
    return {spec.name: spec for spec in specs}


def default_operators() -> dict[str, OperatorSpec]:
    op = ConditionOperator
    return _operators([
        OperatorSpec(op.EQUALS.value, _ALL_TYPES, label="等于"),
        OperatorSpec(op.NOT_EQUALS.value, _ALL_TYPES, label="不等于"),
        OperatorSpec(op.CONTAINS.value, _TEXT_TYPES | {FieldType.SET}, label="包含"),
        OperatorSpec(op.NOT_CONTAINS.value, _TEXT_TYPES | {FieldType.SET}, label="不包含"),
        OperatorSpec(op.STARTS_WITH.value, _TEXT_TYPES, label="开头是"),
        OperatorSpec(op.ENDS_WITH.value, _TEXT_TYPES, label="结尾是"),
        OperatorSpec(op.REGEX.value, _TEXT_TYPES, label="正则匹配"),
        OperatorSpec(op.GREATER_THAN.value, _ORDERED_TYPES, label="大于"),
        OperatorSpec(op.GREATER_OR_EQUAL.value, _ORDERED_TYPES, label="大于等于"),
        OperatorSpec(op.LESS_THAN.value, _ORDERED_TYPES, label="小于"),
        OperatorSpec(op.LESS_OR_EQUAL.value, _ORDERED_TYPES, label="小于等于"),
        OperatorSpec(op.BETWEEN.value, _ORDERED_TYPES, ARITY_PAIR, label="介于"),
        OperatorSpec(op.IN.value, _ALL_TYPES, ARITY_LIST, label="属于"),
        OperatorSpec(op.NOT_IN.value, _ALL_TYPES, ARITY_LIST, label="不属于"),
        OperatorSpec(op.IS_EMPTY.value, _ALL_TYPES, ARITY_NONE, label="为空"),
        OperatorSpec(op.IS_NOT_EMPTY.value, _ALL_TYPES, ARITY_NONE, label="不为空"),
        OperatorSpec(op.EXISTS.value, _ALL_TYPES, ARITY_NONE, label="存在"),
        OperatorSpec(op.NOT_EXISTS.value, _ALL_TYPES, ARITY_NONE, label="不存在"),
    ])


def default_fields() -> dict[str, FieldSpec]:
    specs = [
        FieldSpec("id", FieldType.STRING, "节点ID"),
        FieldSpec("name", FieldType.STRING, "节点名称"),
        FieldSpec("link_name", FieldType.STRING, "原始名称"),
        FieldSpec("link_country", FieldType.STRING, "国家/地区"),
        FieldSpec("protocol", FieldType.STRING, "协议类型"),
        FieldSpec("group", FieldType.STRING, "分组"),
        FieldSpec("source", FieldType.STRING, "来源"),
        FieldSpec("speed", FieldType.NUMBER, "速度 (MB/s)"),
        FieldSpec("delay_time", FieldType.DURATION, "延迟 (ms)"),
        FieldSpec("speed_status", FieldType.ENUM, "测速状态", choices=STATUS_CHOICES),
        FieldSpec("delay_status", FieldType.ENUM, "延迟状态", choices=STATUS_CHOICES),
        FieldSpec("tags", FieldType.SET, "标签"),
        FieldSpec("link_address", FieldType.STRING, "地址"),
        FieldSpec("link_host", FieldType.STRING, "主机名"),
        FieldSpec("link_port", FieldType.NUMBER, "端口"),
        FieldSpec("dialer_proxy_name", FieldType.STRING, "前置代理"),
    ]
    return {spec.name: spec for spec in specs}


def default_vocabulary(
    template_groups: Optional[dict[str, ChainHop]] = None,
) -> Vocabulary:
    """Stock vocabulary matching the console's option lists."""
    return Vocabulary(
        fields=default_fields(),
        operators=default_operators(),
        group_types=("select", "url-test"),
        template_groups=dict(template_groups or {}),
    )
