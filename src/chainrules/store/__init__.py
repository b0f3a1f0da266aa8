"""
Chain Rules Store

Usage:
    from chainrules.store import RuleStore
"""
from __future__ import annotations

from .rule_store import PROTECTED_FIELDS, UPDATABLE_FIELDS, RuleStore

__all__ = [
    "RuleStore",
    "UPDATABLE_FIELDS",
    "PROTECTED_FIELDS",
]
