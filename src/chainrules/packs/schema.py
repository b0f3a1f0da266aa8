"""
Chain Rules Schemas

Pydantic models for validating persisted rule records and rule pack
YAML/JSON files. They map to the domain models in chainrules.models.

Two wire generations are accepted:
- canonical: hops {selectorType, reference, ...}, condition groups
  {combinator, children}, records with sortOrder
- legacy: hops {type, groupName, nodeId, nodeConditions, ...}, condition
  sets {logic, conditions}, records with sort, empty targetConfig

Both decode to the same domain objects; encoding always writes canonical.

Schema versioning:
- schema_version field tracks breaking changes of rule packs
- Loaders check major version compatibility
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import (
    AllTarget,
    ChainHop,
    Combinator,
    ConditionGroup,
    ConditionNode,
    ConditionsTarget,
    FieldSpec,
    FieldType,
    OperatorSpec,
    Predicate,
    SelectMode,
    SelectorType,
    SpecifiedNodeTarget,
    TargetConfig,
    UrlTestConfig,
    Vocabulary,
    default_fields,
    default_operators,
)


# =============================================================================
# Schema Version
# =============================================================================

SCHEMA_VERSION = "1.0.0"


# =============================================================================
# Enums as Literals (for YAML validation)
# =============================================================================

CombinatorValue = Literal["and", "or"]

TargetTypeValue = Literal["all", "specified_node", "conditions"]

FieldTypeValue = Literal["string", "number", "duration", "set", "enum"]

ArityValue = Literal["none", "scalar", "list", "pair"]

LEGACY_HOP_TYPES = {
    "specified_node": SelectorType.NODE,
    "template_group": SelectorType.TEMPLATE_GROUP,
    "custom_group": SelectorType.CUSTOM_GROUP,
    "dynamic_node": SelectorType.DYNAMIC_NODE,
}

_RECORD_CONFIG = {"extra": "ignore", "populate_by_name": True}
_PACK_CONFIG = {"extra": "forbid", "populate_by_name": True}


def _id_text(value: Any) -> Optional[str]:
    """Ids arrive as strings or (legacy) integers; 0 is the legacy 'unset'."""
    if value is None or value == "" or (isinstance(value, int) and not isinstance(value, bool) and value == 0):
        return None
    return str(value)


# =============================================================================
# Conditions
# =============================================================================

class ConditionSchema(BaseModel):
    """
    Schema for a condition node.

    A leaf has field/operator/value. A group has a combinator and children;
    the legacy spelling {logic, conditions} is accepted for groups.
    """
    # Leaf
    field: Optional[str] = Field(None, description="Vocabulary field name")
    operator: Optional[str] = Field(None, description="Vocabulary operator name")
    value: Any = Field(None, description="Comparison value")

    # Group
    combinator: Optional[CombinatorValue] = Field(None, description="and / or")
    children: Optional[list["ConditionSchema"]] = Field(None, description="Child conditions")

    # Legacy group spelling
    logic: Optional[str] = Field(None, description="Legacy combinator")
    conditions: Optional[list["ConditionSchema"]] = Field(None, description="Legacy children")

    model_config = _RECORD_CONFIG

    @field_validator("logic")
    @classmethod
    def validate_logic(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower() or "and"
        if v not in ("and", "or"):
            raise ValueError(f"logic must be 'and' or 'or', got {v!r}")
        return v

    @model_validator(mode="after")
    def validate_structure(self) -> "ConditionSchema":
        """A node is either a leaf or a group, never both."""
        is_group = (
            self.combinator is not None
            or self.children is not None
            or self.logic is not None
            or self.conditions is not None
        )
        is_leaf = self.field is not None or self.operator is not None

        if is_group and is_leaf:
            raise ValueError("Condition cannot be both a leaf and a group")
        if is_group:
            if self.children is not None and self.conditions is not None:
                raise ValueError("Use either 'children' or 'conditions', not both")
            if self.combinator is not None and self.logic is not None and self.combinator != self.logic:
                raise ValueError("'combinator' and 'logic' disagree")
            return self
        if not self.field or not self.operator:
            raise ValueError("Condition leaf requires 'field' and 'operator'")
        return self

    @property
    def is_legacy_group(self) -> bool:
        return self.combinator is None and (self.logic is not None or self.conditions is not None)

    def to_condition(self) -> ConditionNode:
        """Build the immutable domain tree bottom-up."""
        if self.field is not None:
            return Predicate(self.field, self.operator, self.value)

        children = tuple(c.to_condition() for c in (self.children or self.conditions or []))
        if self.is_legacy_group and not children:
            # Legacy condition sets with no conditions never matched
            return ConditionGroup(Combinator.OR, ())
        combinator = self.combinator or self.logic or "and"
        return ConditionGroup(Combinator(combinator), children)


# =============================================================================
# Chain Hops
# =============================================================================

class UrlTestConfigSchema(BaseModel):
    """url-test settings of a generated custom group."""
    url: str = "https://www.gstatic.com/generate_204"
    interval: int = Field(300, gt=0)
    tolerance: int = Field(50, ge=0)

    model_config = _RECORD_CONFIG

    def to_config(self) -> UrlTestConfig:
        return UrlTestConfig(url=self.url, interval=self.interval, tolerance=self.tolerance)


class HopSchema(BaseModel):
    """
    Schema for one chain hop.

    Canonical: {selectorType, reference, conditions?, selectMode?, groupType?,
    urlTestConfig?}. Legacy: {type, groupName?, nodeId?, nodeConditions?,
    selectMode?, groupType?, urlTestConfig?}.
    """
    selector_type: Optional[str] = Field(None, alias="selectorType")
    reference: Optional[Union[str, int]] = None
    conditions: Optional[ConditionSchema] = None
    select_mode: Optional[str] = Field(None, alias="selectMode")
    group_type: Optional[str] = Field(None, alias="groupType")
    url_test: Optional[UrlTestConfigSchema] = Field(None, alias="urlTestConfig")

    # Legacy spelling
    type: Optional[str] = None
    group_name: Optional[str] = Field(None, alias="groupName")
    node_id: Optional[Union[str, int]] = Field(None, alias="nodeId")
    node_conditions: Optional[ConditionSchema] = Field(None, alias="nodeConditions")

    model_config = _RECORD_CONFIG

    @field_validator("select_mode", "group_type")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def validate_structure(self) -> "HopSchema":
        if self.selector_type is None and self.type is None:
            raise ValueError("Hop requires 'selectorType' (or legacy 'type')")
        if self.selector_type is not None:
            try:
                SelectorType(self.selector_type)
            except ValueError:
                raise ValueError(f"Unknown selectorType {self.selector_type!r}")
        elif self.type not in LEGACY_HOP_TYPES:
            raise ValueError(f"Unknown hop type {self.type!r}")
        if self.select_mode is not None:
            try:
                SelectMode(self.select_mode)
            except ValueError:
                raise ValueError(f"Unknown selectMode {self.select_mode!r}")
        if self.conditions is not None and self.node_conditions is not None:
            raise ValueError("Use either 'conditions' or 'nodeConditions', not both")
        return self

    def to_hop(self) -> ChainHop:
        if self.selector_type is not None:
            selector = SelectorType(self.selector_type)
            reference = _id_text(self.reference) or ""
        else:
            selector = LEGACY_HOP_TYPES[self.type]
            if selector == SelectorType.NODE:
                reference = _id_text(self.node_id) or ""
            else:
                reference = self.group_name or ""

        condition_schema = self.conditions or self.node_conditions
        select_mode = self.select_mode
        if selector == SelectorType.DYNAMIC_NODE and select_mode is None:
            select_mode = SelectMode.FIRST.value
        group_type = self.group_type
        if selector == SelectorType.CUSTOM_GROUP and group_type is None:
            group_type = "select"

        return ChainHop(
            selector_type=selector,
            reference=reference,
            conditions=condition_schema.to_condition() if condition_schema else None,
            select_mode=SelectMode(select_mode) if select_mode else None,
            group_type=group_type,
            url_test=self.url_test.to_config() if self.url_test else None,
        )


# =============================================================================
# Targets
# =============================================================================

class TargetSchema(BaseModel):
    """Schema for a rule target: {type, nodeId?, conditions?}."""
    type: TargetTypeValue = "all"
    node_id: Optional[Union[str, int]] = Field(None, alias="nodeId")
    conditions: Optional[ConditionSchema] = None

    model_config = _RECORD_CONFIG

    @field_validator("type", mode="before")
    @classmethod
    def blank_type_is_all(cls, v: Any) -> Any:
        return v or "all"

    def to_target(self) -> TargetConfig:
        if self.type == "specified_node":
            return SpecifiedNodeTarget(_id_text(self.node_id))
        if self.type == "conditions":
            return ConditionsTarget(self.conditions.to_condition() if self.conditions else None)
        return AllTarget()


# =============================================================================
# Persisted Record
# =============================================================================

def _json_field(value: Any, empty: Any) -> Any:
    """chainConfig/targetConfig are stored as JSON text; native values pass."""
    if value is None:
        return empty
    if isinstance(value, str):
        if not value.strip():
            return empty
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e.msg}")
    return value


class RuleRecordSchema(BaseModel):
    """
    Schema for a persisted rule record.

    Unknown keys are ignored so records written by other tools still load.
    """
    id: Union[str, int]
    subscription_id: Union[str, int] = Field(..., alias="subscriptionId")
    name: str = ""
    enabled: bool = True
    sort_order: Optional[int] = Field(None, alias="sortOrder", ge=0)
    sort: Optional[int] = Field(None, ge=0, description="Legacy sortOrder")
    chain_config: list[HopSchema] = Field(default_factory=list, alias="chainConfig")
    target_config: TargetSchema = Field(default_factory=TargetSchema, alias="targetConfig")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = _RECORD_CONFIG

    @field_validator("name", mode="before")
    @classmethod
    def none_name(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("chain_config", mode="before")
    @classmethod
    def parse_chain(cls, v: Any) -> Any:
        return _json_field(v, [])

    @field_validator("target_config", mode="before")
    @classmethod
    def parse_target(cls, v: Any) -> Any:
        return _json_field(v, {"type": "all"})

    @property
    def position(self) -> int:
        if self.sort_order is not None:
            return self.sort_order
        return self.sort or 0


# =============================================================================
# Vocabulary
# =============================================================================

class FieldSpecSchema(BaseModel):
    """Schema for a condition field."""
    name: str
    type: FieldTypeValue
    label: str = ""
    attribute: Optional[str] = Field(None, description="Node attribute (defaults to name)")
    choices: list[str] = Field(default_factory=list)

    model_config = _PACK_CONFIG

    def to_spec(self) -> FieldSpec:
        return FieldSpec(
            name=self.name,
            type=FieldType(self.type),
            label=self.label,
            attribute=self.attribute,
            choices=tuple(self.choices),
        )


class OperatorSpecSchema(BaseModel):
    """Schema for a condition operator."""
    name: str
    field_types: list[FieldTypeValue] = Field(..., min_length=1)
    arity: ArityValue = "scalar"
    label: str = ""

    model_config = _PACK_CONFIG

    def to_spec(self) -> OperatorSpec:
        return OperatorSpec(
            name=self.name,
            field_types=frozenset(FieldType(t) for t in self.field_types),
            arity=self.arity,
            label=self.label,
        )


class VocabularySchema(BaseModel):
    """
    Vocabulary overrides of a rule pack.

    With extend_defaults (the default) the entries are merged over the stock
    vocabulary; otherwise they replace it.
    """
    extend_defaults: bool = True
    fields: list[FieldSpecSchema] = Field(default_factory=list)
    operators: list[OperatorSpecSchema] = Field(default_factory=list)
    group_types: Optional[list[str]] = None

    model_config = _PACK_CONFIG

    def to_vocabulary(self, template_groups: Optional[dict[str, ChainHop]] = None) -> Vocabulary:
        fields = default_fields() if self.extend_defaults else {}
        operators = default_operators() if self.extend_defaults else {}
        fields.update({f.name: f.to_spec() for f in self.fields})
        operators.update({o.name: o.to_spec() for o in self.operators})
        return Vocabulary(
            fields=fields,
            operators=operators,
            group_types=tuple(self.group_types) if self.group_types else ("select", "url-test"),
            template_groups=dict(template_groups or {}),
        )


# =============================================================================
# Rule Pack
# =============================================================================

class PackRuleSchema(BaseModel):
    """One rule of a pack; list position is its sort order."""
    id: Optional[Union[str, int]] = None
    name: str = ""
    enabled: bool = True
    chain: list[HopSchema] = Field(default_factory=list)
    target: TargetSchema = Field(default_factory=TargetSchema)

    model_config = _PACK_CONFIG


class RulePackSchema(BaseModel):
    """
    Top-level schema for a rule pack YAML/JSON file.

    A rule pack holds the ordered chain rules of one subscription together
    with the vocabulary, template groups and policy groups they reference.
    """
    schema_version: str = Field(SCHEMA_VERSION, description="Schema version for compatibility")
    subscription_id: Union[str, int] = Field(..., description="Owning subscription")
    name: Optional[str] = None
    description: Optional[str] = None

    vocabulary: Optional[VocabularySchema] = None
    templates: dict[str, HopSchema] = Field(
        default_factory=dict,
        description="Template group name -> expansion hop",
    )
    groups: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Policy group name -> member node ids",
    )
    clash_template: Optional[str] = Field(
        None,
        description="Clash template whose proxy-groups become template groups",
    )

    rules: list[PackRuleSchema] = Field(default_factory=list)

    model_config = _PACK_CONFIG

    @model_validator(mode="after")
    def validate_rule_ids(self) -> "RulePackSchema":
        ids = [str(r.id) for r in self.rules if r.id is not None]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate rule ids: {duplicates}")
        return self


ConditionSchema.model_rebuild()


# =============================================================================
# Validation Helpers
# =============================================================================

def validate_rule_pack(data: dict[str, Any]) -> RulePackSchema:
    """
    Validate a rule pack dictionary against the schema.

    Raises:
        pydantic.ValidationError: If validation fails
    """
    return RulePackSchema.model_validate(data)


def check_schema_version(data: dict[str, Any]) -> bool:
    """
    Check if a rule pack's schema version is compatible.

    Only the major version has to match.
    """
    pack_version = str(data.get("schema_version", SCHEMA_VERSION))
    return pack_version.split(".")[0] == SCHEMA_VERSION.split(".")[0]
