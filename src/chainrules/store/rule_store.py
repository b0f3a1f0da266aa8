"""
Rule Store

Thread-safe in-memory CRUD and ordering for chain rules.

Thread Safety:
    Mutations on one subscription are serialized by that subscription's
    ``threading.Lock``; different subscriptions proceed concurrently. A
    registry lock guards the lock table and the rule-id index. Each
    subscription's rules are held in an immutable tuple that is swapped on
    every mutation, so readers see either the state before or after a
    mutation, never a partially renumbered one.

Invariants:
    - sort_order is contiguous 0..n-1 within a subscription after every
      mutation
    - every stored rule passed RuleValidator for the store's vocabulary
    - a rejected mutation leaves the store unchanged
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Sequence

from ..engine.validator import RuleValidator
from ..exceptions import (
    OrderingConflictError,
    RuleNotFoundError,
    RuleOwnershipError,
    RuleValidationError,
)
from ..models import ChainHop, ChainRule, SpecifiedNodeTarget, TargetConfig, Vocabulary
from ..packs.codec import decode_rule, encode_rule

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "enabled", "chain_config", "target_config"})
PROTECTED_FIELDS = frozenset({"id", "subscription_id", "sort_order", "created_at", "updated_at"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _renumber(rules: Iterable[ChainRule]) -> tuple[ChainRule, ...]:
    return tuple(
        rule if rule.sort_order == index else dataclasses.replace(rule, sort_order=index)
        for index, rule in enumerate(rules)
    )


class RuleStore:
    """
    Ordered chain rules per subscription.

    Usage:
        store = RuleStore(default_vocabulary())
        rule = store.create("sub-1", name="HK via relay",
                            chain_config=[ChainHop.node("relay")],
                            target_config=AllTarget())
        store.reorder("sub-1", [r.id for r in reversed(store.list("sub-1"))])
        engine.resolve_for_node(node, store.list_enabled("sub-1"))
    """

    def __init__(
        self,
        vocabulary: Vocabulary,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.vocabulary = vocabulary
        self._validator = RuleValidator(vocabulary)
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._rules: dict[str, tuple[ChainRule, ...]] = {}
        self._index: dict[str, str] = {}  # rule id -> subscription id

    # =========================================================================
    # Reads
    # =========================================================================

    def list(self, subscription_id: str) -> list[ChainRule]:
        """Rules of a subscription in ascending sort_order."""
        return list(self._rules.get(subscription_id, ()))

    def list_enabled(self, subscription_id: str) -> list[ChainRule]:
        """Enabled rules in sort order, ready for ChainRuleEngine."""
        return [rule for rule in self._rules.get(subscription_id, ()) if rule.enabled]

    def get(self, rule_id: str, subscription_id: Optional[str] = None) -> ChainRule:
        owner = self._owner_of(rule_id, subscription_id)
        return self._find(owner, rule_id)

    def count(self, subscription_id: Optional[str] = None) -> int:
        if subscription_id is not None:
            return len(self._rules.get(subscription_id, ()))
        with self._registry_lock:
            return len(self._index)

    def subscriptions(self) -> list[str]:
        with self._registry_lock:
            return sorted(sub for sub, rules in self._rules.items() if rules)

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(
        self,
        subscription_id: str,
        name: str = "",
        enabled: bool = True,
        chain_config: Sequence[ChainHop] = (),
        target_config: Optional[TargetConfig] = None,
    ) -> ChainRule:
        """
        Append a rule at the end of the subscription's order.

        Raises:
            RuleValidationError: rule rejected; nothing stored
        """
        if not subscription_id:
            raise RuleValidationError(message="subscription_id is required")

        with self._locked(subscription_id):
            current = self._rules.get(subscription_id, ())
            rule = ChainRule(
                id=self._allocate_id(),
                subscription_id=subscription_id,
                name=name,
                enabled=enabled,
                sort_order=len(current),
                chain_config=tuple(chain_config),
                target_config=target_config if target_config is not None else SpecifiedNodeTarget(),
            )
            self._validator.check(rule)
            self._rules[subscription_id] = current + (rule,)
            with self._registry_lock:
                self._index[rule.id] = subscription_id

        logger.info(
            "Created chain rule %s at position %d",
            rule.id, rule.sort_order,
            extra={"subscription_id": subscription_id, "rule_id": rule.id},
        )
        return rule

    def update(
        self,
        rule_id: str,
        patch: Mapping[str, Any],
        subscription_id: Optional[str] = None,
    ) -> ChainRule:
        """
        Apply a partial update to name, enabled, chain_config or target_config.

        Raises:
            RuleValidationError: protected or unknown field, or invalid result
            RuleNotFoundError, RuleOwnershipError
        """
        protected = sorted(PROTECTED_FIELDS & set(patch))
        if protected:
            raise RuleValidationError(
                message=f"Fields cannot be changed by update: {', '.join(protected)}",
                details={"rule_id": rule_id, "fields": protected},
                subscription_id=subscription_id,
            )
        unknown = sorted(set(patch) - UPDATABLE_FIELDS)
        if unknown:
            raise RuleValidationError(
                message=f"Unknown rule fields: {', '.join(unknown)}",
                details={"rule_id": rule_id, "fields": unknown},
                subscription_id=subscription_id,
            )
        changes = dict(patch)
        if "chain_config" in changes:
            changes["chain_config"] = tuple(changes["chain_config"] or ())
        if "target_config" in changes and changes["target_config"] is None:
            raise RuleValidationError(
                message="target_config must be exactly one target variant",
                details={"rule_id": rule_id},
                subscription_id=subscription_id,
            )

        owner = self._owner_of(rule_id, subscription_id)
        with self._locked(owner):
            current = self._find(owner, rule_id)
            updated = dataclasses.replace(current, updated_at=_utcnow(), **changes)
            self._validator.check(updated)
            self._replace(owner, updated)

        logger.debug(
            "Updated chain rule %s (%s)",
            rule_id, ", ".join(sorted(changes)),
            extra={"subscription_id": owner, "rule_id": rule_id},
        )
        return updated

    def toggle(self, rule_id: str, subscription_id: Optional[str] = None) -> ChainRule:
        """Flip enabled; the rule keeps its position."""
        owner = self._owner_of(rule_id, subscription_id)
        with self._locked(owner):
            current = self._find(owner, rule_id)
            updated = dataclasses.replace(current, enabled=not current.enabled, updated_at=_utcnow())
            self._replace(owner, updated)

        logger.info(
            "%s chain rule %s",
            "Enabled" if updated.enabled else "Disabled", rule_id,
            extra={"subscription_id": owner, "rule_id": rule_id},
        )
        return updated

    def delete(self, rule_id: str, subscription_id: Optional[str] = None) -> ChainRule:
        """Remove a rule and renumber the rest, keeping their relative order."""
        owner = self._owner_of(rule_id, subscription_id)
        with self._locked(owner):
            removed = self._find(owner, rule_id)
            remaining = (r for r in self._rules[owner] if r.id != rule_id)
            self._rules[owner] = _renumber(remaining)
            with self._registry_lock:
                self._index.pop(rule_id, None)

        logger.info(
            "Deleted chain rule %s",
            rule_id,
            extra={"subscription_id": owner, "rule_id": rule_id},
        )
        return removed

    def reorder(self, subscription_id: str, ordered_ids: Sequence[str]) -> list[ChainRule]:
        """
        Rewrite sort_order so each rule's position is its index in ordered_ids.

        Raises:
            OrderingConflictError: ordered_ids is not exactly the current id
                set (missing, extra or duplicate ids); nothing changes
        """
        ordered_ids = [str(rule_id) for rule_id in ordered_ids]
        with self._locked(subscription_id):
            current = self._rules.get(subscription_id, ())
            by_id = {rule.id: rule for rule in current}

            duplicates = sorted({i for i in ordered_ids if ordered_ids.count(i) > 1})
            missing = sorted(set(by_id) - set(ordered_ids))
            extra = sorted(set(ordered_ids) - set(by_id))
            if duplicates or missing or extra:
                raise OrderingConflictError(
                    message="Reorder ids do not match the current rules",
                    details={"missing": missing, "extra": extra, "duplicates": duplicates},
                    subscription_id=subscription_id,
                )

            reordered = _renumber(by_id[rule_id] for rule_id in ordered_ids)
            self._rules[subscription_id] = reordered

        logger.info(
            "Reordered %d chain rules",
            len(reordered),
            extra={"subscription_id": subscription_id},
        )
        return list(reordered)

    def delete_subscription(self, subscription_id: str) -> int:
        """Drop every rule of a subscription; returns how many were removed."""
        with self._locked(subscription_id):
            removed = self._rules.pop(subscription_id, ())
            with self._registry_lock:
                for rule in removed:
                    self._index.pop(rule.id, None)
                self._locks.pop(subscription_id, None)
        if removed:
            logger.info(
                "Deleted %d chain rules",
                len(removed),
                extra={"subscription_id": subscription_id},
            )
        return len(removed)

    # =========================================================================
    # Persistence
    # =========================================================================

    def export_records(self, subscription_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Persisted-record dicts, grouped by subscription in sort order."""
        subs = [subscription_id] if subscription_id is not None else self.subscriptions()
        return [encode_rule(rule) for sub in subs for rule in self._rules.get(sub, ())]

    def import_records(self, records: Iterable[Mapping[str, Any]]) -> list[ChainRule]:
        """
        Load persisted records, replacing the rule sets of every subscription
        they mention.

        Records are decoded and validated before anything is stored. Each
        subscription's rules are ordered by their recorded sort order and
        renumbered to 0..n-1.

        Raises:
            PackValidationError: a record does not decode
            RuleValidationError: a rule is invalid or an id is repeated
        """
        grouped: dict[str, list[ChainRule]] = {}
        seen: set[str] = set()
        for record in records:
            rule = decode_rule(record)
            if rule.id in seen:
                raise RuleValidationError(
                    message=f"Duplicate rule id in import: {rule.id}",
                    details={"rule_id": rule.id},
                    subscription_id=rule.subscription_id,
                )
            seen.add(rule.id)
            self._validator.check(rule)
            grouped.setdefault(rule.subscription_id, []).append(rule)

        with self._registry_lock:
            for rule_id in seen:
                owner = self._index.get(rule_id)
                if owner is not None and owner not in grouped:
                    raise RuleValidationError(
                        message=f"Rule id {rule_id} already belongs to another subscription",
                        details={"rule_id": rule_id, "owner": owner},
                    )

        imported: list[ChainRule] = []
        for sub, rules in grouped.items():
            ordered = _renumber(sorted(rules, key=lambda r: r.sort_order))
            with self._locked(sub):
                previous = self._rules.get(sub, ())
                self._rules[sub] = ordered
                with self._registry_lock:
                    for rule in previous:
                        # moved rules may already be indexed under another import target
                        if self._index.get(rule.id) == sub:
                            self._index.pop(rule.id, None)
                    for rule in ordered:
                        self._index[rule.id] = sub
            imported.extend(ordered)
            logger.info(
                "Imported %d chain rules",
                len(ordered),
                extra={"subscription_id": sub},
            )
        return imported

    # =========================================================================
    # Internals
    # =========================================================================

    @contextmanager
    def _locked(self, subscription_id: str) -> Iterator[None]:
        """
        Hold the subscription's lock.

        delete_subscription drops the lock from the table, so a waiter that
        wakes on a retired lock retries with the current one.
        """
        while True:
            with self._registry_lock:
                lock = self._locks.get(subscription_id)
                if lock is None:
                    lock = self._locks[subscription_id] = threading.Lock()
            lock.acquire()
            with self._registry_lock:
                current = self._locks.get(subscription_id) is lock
            if current:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _allocate_id(self) -> str:
        with self._registry_lock:
            rule_id = str(self._id_factory())
            while rule_id in self._index:
                rule_id = str(self._id_factory())
            return rule_id

    def _owner_of(self, rule_id: str, subscription_id: Optional[str]) -> str:
        with self._registry_lock:
            owner = self._index.get(rule_id)
        if owner is None:
            raise RuleNotFoundError(
                message=f"Chain rule not found: {rule_id}",
                details={"rule_id": rule_id},
                subscription_id=subscription_id,
            )
        if subscription_id is not None and owner != subscription_id:
            raise RuleOwnershipError(
                message=f"Chain rule {rule_id} does not belong to this subscription",
                details={"rule_id": rule_id},
                subscription_id=subscription_id,
            )
        return owner

    def _find(self, subscription_id: str, rule_id: str) -> ChainRule:
        for rule in self._rules.get(subscription_id, ()):
            if rule.id == rule_id:
                return rule
        raise RuleNotFoundError(
            message=f"Chain rule not found: {rule_id}",
            details={"rule_id": rule_id},
            subscription_id=subscription_id,
        )

    def _replace(self, subscription_id: str, updated: ChainRule) -> None:
        self._rules[subscription_id] = tuple(
            updated if rule.id == updated.id else rule
            for rule in self._rules[subscription_id]
        )
