"""
Chain Rules Packs

Schema validation, persisted-record codec and loading for rule packs.

Rule packs are YAML or JSON files holding the ordered chain rules of one
subscription together with vocabulary overrides, template groups and
policy groups.

Usage:
    from chainrules.packs import load_rule_pack, decode_rule, encode_rule

    pack = load_rule_pack("path/to/subscription.yaml")
    record = encode_rule(pack.rules[0])
    rule = decode_rule(record)
"""
from __future__ import annotations

from .codec import (
    condition_to_dict,
    decode_condition,
    decode_hop,
    decode_rule,
    decode_target,
    encode_rule,
    hop_to_dict,
    target_to_dict,
)
from .loader import (
    ClashProxyGroup,
    RulePack,
    RulePackLoader,
    load_nodes,
    load_rule_pack,
    load_rule_pack_from_string,
    nodes_from_data,
    parse_clash_proxy_groups,
    template_groups_from_clash,
)
from .schema import (
    SCHEMA_VERSION,
    ConditionSchema,
    FieldSpecSchema,
    HopSchema,
    OperatorSpecSchema,
    PackRuleSchema,
    RuleRecordSchema,
    RulePackSchema,
    TargetSchema,
    UrlTestConfigSchema,
    VocabularySchema,
    check_schema_version,
    validate_rule_pack,
)

__all__ = [
    # Version
    "SCHEMA_VERSION",
    # Loader
    "RulePack",
    "RulePackLoader",
    "load_rule_pack",
    "load_rule_pack_from_string",
    "load_nodes",
    "nodes_from_data",
    # Clash templates
    "ClashProxyGroup",
    "parse_clash_proxy_groups",
    "template_groups_from_clash",
    # Codec
    "encode_rule",
    "decode_rule",
    "decode_condition",
    "decode_hop",
    "decode_target",
    "condition_to_dict",
    "hop_to_dict",
    "target_to_dict",
    # Validation
    "validate_rule_pack",
    "check_schema_version",
    # Schemas (for advanced usage)
    "RulePackSchema",
    "PackRuleSchema",
    "RuleRecordSchema",
    "HopSchema",
    "TargetSchema",
    "ConditionSchema",
    "UrlTestConfigSchema",
    "VocabularySchema",
    "FieldSpecSchema",
    "OperatorSpecSchema",
]
