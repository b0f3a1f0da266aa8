"""
Chain Rules Models

Domain models for the chain-proxy rule engine.

Usage:
    from chainrules.models import (
        ChainRule, ChainHop, AllTarget, ConditionsTarget,
        Node, NodeSnapshot, default_vocabulary,
        AND, OR, EQ, LT,
    )
"""
from __future__ import annotations

from .chain import CustomProxyGroup, ResolvedChain, ResolvedHop
from .conditions import (
    AND,
    BETWEEN,
    CONTAINS,
    EQ,
    EXISTS,
    GT,
    GTE,
    IN,
    IS_EMPTY,
    LT,
    LTE,
    NE,
    NOT_IN,
    OR,
    PRED,
    REGEX,
    ConditionGroup,
    ConditionNode,
    EvaluationResult,
    Predicate,
    condition_depth,
    iter_predicates,
)
from .enums import (
    Combinator,
    ConditionOperator,
    FieldType,
    HopKind,
    ResolutionPolicy,
    SelectMode,
    SelectorType,
    TargetType,
)
from .node import (
    AttributeProvider,
    Node,
    NodeSnapshot,
    node_id_of,
    resolve_attribute,
    split_tags,
)
from .rule import (
    AllTarget,
    ChainHop,
    ChainRule,
    ConditionsTarget,
    SpecifiedNodeTarget,
    TargetConfig,
    UrlTestConfig,
)
from .vocabulary import (
    ARITY_LIST,
    ARITY_NONE,
    ARITY_PAIR,
    ARITY_SCALAR,
    FieldSpec,
    OperatorSpec,
    Vocabulary,
    default_fields,
    default_operators,
    default_vocabulary,
)

__all__ = [
    # Enums
    "Combinator",
    "ConditionOperator",
    "FieldType",
    "HopKind",
    "ResolutionPolicy",
    "SelectMode",
    "SelectorType",
    "TargetType",
    # Conditions
    "Predicate",
    "ConditionGroup",
    "ConditionNode",
    "EvaluationResult",
    "iter_predicates",
    "condition_depth",
    "AND",
    "OR",
    "PRED",
    "EQ",
    "NE",
    "CONTAINS",
    "REGEX",
    "GT",
    "GTE",
    "LT",
    "LTE",
    "BETWEEN",
    "IN",
    "NOT_IN",
    "IS_EMPTY",
    "EXISTS",
    # Rules
    "ChainRule",
    "ChainHop",
    "UrlTestConfig",
    "AllTarget",
    "SpecifiedNodeTarget",
    "ConditionsTarget",
    "TargetConfig",
    # Chains
    "ResolvedChain",
    "ResolvedHop",
    "CustomProxyGroup",
    # Nodes
    "Node",
    "NodeSnapshot",
    "AttributeProvider",
    "resolve_attribute",
    "node_id_of",
    "split_tags",
    # Vocabulary
    "Vocabulary",
    "FieldSpec",
    "OperatorSpec",
    "default_vocabulary",
    "default_fields",
    "default_operators",
    "ARITY_NONE",
    "ARITY_SCALAR",
    "ARITY_LIST",
    "ARITY_PAIR",
]
