"""
Chain Rules Engine

Evaluation services for chain rules.

Services:
- ConditionEvaluator: Evaluate condition trees against node attributes
- TargetMatcher: Decide whether a rule targets a node
- ChainResolver: Resolve declarative hops to concrete proxies
- RuleValidator: Write-time checks against the vocabulary
- ChainRuleEngine: First-match-wins façade

Usage:
    from chainrules.engine import ChainRuleEngine, ConditionEvaluator
"""
from __future__ import annotations

from .chain_resolver import (
    DEFAULT_MAX_TEMPLATE_DEPTH,
    ChainResolver,
    proxy_name_of,
)
from .condition_evaluator import (
    ConditionEvaluator,
    coerce_number,
    coerce_set,
    coerce_text,
    compare_values,
    evaluate_condition,
    evaluate_predicate,
    parse_duration,
)
from .rule_engine import ChainDecision, ChainRuleEngine, PassResult
from .target_matcher import TargetMatcher, matches_target
from .validator import MAX_CONDITION_DEPTH, RuleValidator, validate_rule

__all__ = [
    # Condition Evaluator
    "ConditionEvaluator",
    "evaluate_condition",
    "evaluate_predicate",
    "compare_values",
    "coerce_number",
    "coerce_set",
    "coerce_text",
    "parse_duration",
    # Target Matcher
    "TargetMatcher",
    "matches_target",
    # Chain Resolver
    "ChainResolver",
    "DEFAULT_MAX_TEMPLATE_DEPTH",
    "proxy_name_of",
    # Validation
    "RuleValidator",
    "validate_rule",
    "MAX_CONDITION_DEPTH",
    # Engine
    "ChainRuleEngine",
    "ChainDecision",
    "PassResult",
]
