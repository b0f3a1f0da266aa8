"""
Chain Rules Exception Hierarchy

Domain-specific exceptions for the chain-proxy rule engine.
All exceptions include error codes for tracking and logging.

Exception codes follow the pattern: CR_<CATEGORY>_<SPECIFIC>

Evaluation never raises for bad rule data: ResolutionError is returned as a
value by the resolver and the engine. Only store/loader operations and
provider contract violations raise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ChainRulesError(Exception):
    """
    Base exception for all chain rule errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (CR_*)
        details: Additional context about the error
        subscription_id: Associated subscription if applicable
    """
    message: str
    code: str = "CR_INTERNAL_ERROR"
    details: dict[str, Any] = field(default_factory=dict)
    subscription_id: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.subscription_id:
            parts.append(f"(subscription: {self.subscription_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logging/API responses."""
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.subscription_id:
            result["subscription_id"] = self.subscription_id
        return result


# =============================================================================
# Rule Store Errors
# =============================================================================

@dataclass
class RuleValidationError(ChainRulesError):
    """Rule shape or vocabulary reference rejected at write time."""
    code: str = "CR_RULE_VALIDATION_ERROR"


@dataclass
class RuleNotFoundError(ChainRulesError):
    """Requested rule does not exist."""
    code: str = "CR_RULE_NOT_FOUND"


@dataclass
class RuleOwnershipError(ChainRulesError):
    """Rule belongs to a different subscription."""
    code: str = "CR_RULE_OWNERSHIP"


@dataclass
class OrderingConflictError(ChainRulesError):
    """Reorder id set does not match the subscription's current rules."""
    code: str = "CR_ORDERING_CONFLICT"


# =============================================================================
# Resolution Errors
# =============================================================================

@dataclass
class ResolutionError(ChainRulesError):
    """
    A matched rule's chain could not be resolved.

    Returned as a value by ChainResolver and surfaced through engine
    decisions; never raised through the evaluation loop.

    Attributes:
        reference: The node/group/template reference that failed
        position: Zero-based hop position in the chain
        reason: Short machine reason (missing_node, missing_group,
            empty_group, missing_template, template_cycle, no_match, ...)
        rule_id: Rule whose chain failed, when known
    """
    code: str = "CR_RESOLUTION_ERROR"
    reference: Optional[str] = None
    position: Optional[int] = None
    reason: str = "unresolved"
    rule_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason
        if self.reference is not None:
            result["reference"] = self.reference
        if self.position is not None:
            result["position"] = self.position
        if self.rule_id is not None:
            result["rule_id"] = self.rule_id
        return result


@dataclass
class ProviderContractError(ChainRulesError):
    """Attribute provider returned data violating its own interface."""
    code: str = "CR_PROVIDER_CONTRACT"


# =============================================================================
# Pack Errors
# =============================================================================

@dataclass
class PackLoadError(ChainRulesError):
    """Failed to load a rule pack or record file."""
    code: str = "CR_PACK_LOAD_ERROR"


@dataclass
class PackValidationError(ChainRulesError):
    """Rule pack or persisted record failed schema validation."""
    code: str = "CR_PACK_VALIDATION_ERROR"


@dataclass
class PackVersionMismatch(ChainRulesError):
    """Rule pack schema version is incompatible."""
    code: str = "CR_PACK_VERSION_MISMATCH"
