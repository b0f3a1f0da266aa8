"""
chainrules - Chain Proxy Rule Engine

Decides, for every proxy node of a subscription, which front ("dialer")
proxy chain it is routed through.

Core Principle: "The first matching rule decides."

Key Features:
- Ordered, per-subscription rules with first-match-wins evaluation
- Targets: all nodes, one specified node, or a condition tree
- Boolean condition trees over typed node attributes (string, number,
  duration, set, enum) that never raise on bad rule data
- Hops resolved from nodes, groups, template groups, dynamic node picks
  and generated custom groups
- Thread-safe rule store with atomic reordering
- Persisted-record codec compatible with the legacy storage shape

Quick Start:
    from chainrules.models import AllTarget, ChainHop, Node, NodeSnapshot, default_vocabulary
    from chainrules.engine import ChainRuleEngine
    from chainrules.store import RuleStore

    vocabulary = default_vocabulary()
    store = RuleStore(vocabulary)
    store.create("sub-1", chain_config=[ChainHop.node("hk")], target_config=AllTarget())

    snapshot = NodeSnapshot.build(nodes)
    engine = ChainRuleEngine(snapshot, vocabulary)
    chain = engine.resolve_for_node(node, store.list_enabled("sub-1"))

Version: 0.1.0
"""
from __future__ import annotations

__version__ = "0.1.0"

# =============================================================================
# Core Models (Re-exported for convenience)
# =============================================================================
from .models import (
    AND,
    EQ,
    OR,
    AllTarget,
    AttributeProvider,
    ChainHop,
    ChainRule,
    ConditionGroup,
    ConditionsTarget,
    CustomProxyGroup,
    Node,
    NodeSnapshot,
    Predicate,
    ResolutionPolicy,
    ResolvedChain,
    SpecifiedNodeTarget,
    Vocabulary,
    default_vocabulary,
)

# =============================================================================
# Engine
# =============================================================================
from .engine import (
    ChainDecision,
    ChainResolver,
    ChainRuleEngine,
    ConditionEvaluator,
    PassResult,
    RuleValidator,
    TargetMatcher,
    evaluate_condition,
)

# =============================================================================
# Store, Packs and Configuration
# =============================================================================
from .config import Settings, get_settings
from .packs import decode_rule, encode_rule, load_rule_pack, template_groups_from_clash
from .store import RuleStore

# =============================================================================
# Exceptions
# =============================================================================
from .exceptions import (
    ChainRulesError,
    OrderingConflictError,
    PackLoadError,
    PackValidationError,
    PackVersionMismatch,
    ProviderContractError,
    ResolutionError,
    RuleNotFoundError,
    RuleOwnershipError,
    RuleValidationError,
)

__all__ = [
    "__version__",
    # Models
    "ChainRule",
    "ChainHop",
    "AllTarget",
    "SpecifiedNodeTarget",
    "ConditionsTarget",
    "Predicate",
    "ConditionGroup",
    "AND",
    "OR",
    "EQ",
    "Node",
    "NodeSnapshot",
    "AttributeProvider",
    "Vocabulary",
    "default_vocabulary",
    "ResolvedChain",
    "CustomProxyGroup",
    "ResolutionPolicy",
    # Engine
    "ConditionEvaluator",
    "evaluate_condition",
    "TargetMatcher",
    "ChainResolver",
    "RuleValidator",
    "ChainRuleEngine",
    "ChainDecision",
    "PassResult",
    # Store / packs / config
    "RuleStore",
    "encode_rule",
    "decode_rule",
    "load_rule_pack",
    "template_groups_from_clash",
    "Settings",
    "get_settings",
    # Exceptions
    "ChainRulesError",
    "RuleValidationError",
    "RuleNotFoundError",
    "RuleOwnershipError",
    "OrderingConflictError",
    "ResolutionError",
    "ProviderContractError",
    "PackLoadError",
    "PackValidationError",
    "PackVersionMismatch",
]
