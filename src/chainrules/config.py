"""
Chain Rules Configuration

Settings read from CHAINRULES_* environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from .models import ResolutionPolicy

# =============================================================================
# Environment
# =============================================================================

CHAINRULES_LOG_LEVEL = "CHAINRULES_LOG_LEVEL"
CHAINRULES_LOG_FORMAT = "CHAINRULES_LOG_FORMAT"
CHAINRULES_RESOLUTION_POLICY = "CHAINRULES_RESOLUTION_POLICY"
CHAINRULES_MAX_TEMPLATE_DEPTH = "CHAINRULES_MAX_TEMPLATE_DEPTH"
CHAINRULES_PRESERVE_DIALER = "CHAINRULES_PRESERVE_DIALER"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings.

    Attributes:
        log_level: Root level for chainrules loggers
        log_format: "json" (structured) or "text"
        resolution_policy: What the engine does when a matched rule's chain
            cannot be resolved
        max_template_depth: Deepest template_group nesting followed
        preserve_existing_dialer: Leave nodes with a pre-set dialer proxy alone
            during pass evaluation
    """
    log_level: str = "INFO"
    log_format: str = "json"
    resolution_policy: ResolutionPolicy = ResolutionPolicy.FAIL_CLOSED
    max_template_depth: int = 8
    preserve_existing_dialer: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the environment; unset variables keep defaults."""
        log_format = os.getenv(CHAINRULES_LOG_FORMAT, "json").lower()
        if log_format not in ("json", "text"):
            raise ValueError(f"{CHAINRULES_LOG_FORMAT} must be 'json' or 'text', got {log_format!r}")

        depth = int(os.getenv(CHAINRULES_MAX_TEMPLATE_DEPTH, "8"))
        if depth < 1:
            raise ValueError(f"{CHAINRULES_MAX_TEMPLATE_DEPTH} must be at least 1")

        return cls(
            log_level=os.getenv(CHAINRULES_LOG_LEVEL, "INFO").upper(),
            log_format=log_format,
            resolution_policy=ResolutionPolicy(
                os.getenv(CHAINRULES_RESOLUTION_POLICY, ResolutionPolicy.FAIL_CLOSED.value).lower()
            ),
            max_template_depth=depth,
            preserve_existing_dialer=(
                os.getenv(CHAINRULES_PRESERVE_DIALER, "true").lower() in _TRUE_VALUES
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once. Call get_settings.cache_clear() to re-read."""
    return Settings.from_env()
