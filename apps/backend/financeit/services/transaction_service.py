from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..utils.timestamps import normalize_timestamp
from .interval_calculator import next_run, parse_interval_kind
from .recurrence_store import RecurrenceStore

logger = logging.getLogger(__name__)

# Plain ledger fields; editing them never moves a subscription's schedule.
LEDGER_FIELDS = (
    "amount",
    "kind",
    "category",
    "description",
    "timestamp",
    "account_ref",
    "instrument_ref",
)


class TransactionService:
    """Create/edit/delete ledger rows while keeping subscription bookkeeping consistent."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.store = RecurrenceStore(db)

    def create(self, data: dict[str, Any]) -> models.Transaction:
        """Insert a ledger row; a recurring row gets ``next_due`` one interval after ``timestamp``.

        Raises:
            ParseError: ``timestamp`` is not canonical.
            UnsupportedIntervalError: unknown ``interval_kind``.
            ValueError: recurring without an interval, or an interval on a plain row.
        """
        data = dict(data)
        data["timestamp"] = normalize_timestamp(data["timestamp"])
        is_recurring = bool(data.get("is_recurring", False))
        interval = data.get("interval_kind")
        if is_recurring:
            if interval is None:
                raise ValueError("interval_kind is required for recurring transactions")
            kind = parse_interval_kind(interval)
            data["interval_kind"] = kind.value
            data["next_due"] = next_run(data["timestamp"], kind)
        else:
            if interval is not None:
                raise ValueError("interval_kind is only allowed on recurring transactions")
            data["interval_kind"] = None
            data["next_due"] = None
        data["is_recurring"] = is_recurring
        txn = models.Transaction(**data)
        self.store.add(txn)
        self.db.commit()
        self.db.refresh(txn)
        if is_recurring:
            logger.info("Subscription %s created; next run at %s", txn.id, txn.next_due)
        return txn

    def update(self, txn_id: int, changes: dict[str, Any]) -> Optional[models.Transaction]:
        """Apply ``changes``; returns ``None`` when ``txn_id`` does not exist.

        ``next_due`` is recomputed from the (possibly edited) ``timestamp`` only
        when the interval changes or the row becomes recurring; it is cleared
        together with ``interval_kind`` when the row stops being recurring.
        """
        txn = self.store.get(txn_id)
        if txn is None:
            return None
        if not changes:
            return txn

        changes = dict(changes)
        try:
            self._apply_changes(txn, changes)
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()
        self.db.refresh(txn)
        return txn

    def _apply_changes(self, txn: models.Transaction, changes: dict[str, Any]) -> None:
        if "timestamp" in changes:
            changes["timestamp"] = normalize_timestamp(changes["timestamp"])
        for key in LEDGER_FIELDS:
            if key in changes:
                value = changes[key]
                if key == "kind" and isinstance(value, models.TxnKind):
                    value = value.value
                setattr(txn, key, value)

        was_recurring = bool(txn.is_recurring)
        becomes_recurring = bool(changes.get("is_recurring", was_recurring))
        if becomes_recurring:
            requested = changes.get("interval_kind", txn.interval_kind)
            if requested is None:
                raise ValueError("interval_kind is required for recurring transactions")
            kind = parse_interval_kind(requested)
            current = txn.interval_kind.lower() if txn.interval_kind else None
            interval_changed = current != kind.value
            txn.is_recurring = True
            txn.interval_kind = kind.value
            if not was_recurring or interval_changed or not txn.next_due:
                txn.next_due = next_run(txn.timestamp, kind)
                logger.info("Subscription %s rescheduled (%s); next run at %s", txn.id, kind.value, txn.next_due)
        else:
            if changes.get("interval_kind") is not None:
                raise ValueError("interval_kind is only allowed on recurring transactions")
            txn.is_recurring = False
            txn.interval_kind = None
            txn.next_due = None

    def delete(self, txn_id: int) -> bool:
        """Delete a row; subscriptions take their spawned children with them."""
        txn = self.store.get(txn_id)
        if txn is None:
            return False
        if txn.is_recurring:
            return self.delete_subscription_with_children(txn_id)
        try:
            removed = self.store.delete_one(txn_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to delete transaction %s", txn_id)
            return False
        return removed > 0

    def delete_subscription_with_children(self, subscription_id: int) -> bool:
        """Delete the subscription and all of its children in one transaction.

        Returns True only when at least one row was removed.
        """
        try:
            removed = self.store.delete_with_children(subscription_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to delete subscription %s", subscription_id)
            return False
        if removed:
            logger.info("Subscription %s and %s child transaction(s) deleted", subscription_id, removed - 1)
        return removed > 0
