from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..core.errors import StoreError
from ..utils.timestamps import format_timestamp

logger = logging.getLogger(__name__)


class RecurrenceStore:
    """Session-bound access to the ``transaction`` table for the recurrence engine."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def atomic(self, label: str = "write") -> Iterator[Session]:
        """Commit everything written inside the block, or nothing.

        Any ``SQLAlchemyError`` rolls the session back and is re-raised as
        ``StoreError`` so callers see a single failure type.
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"{label} failed: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

    def get(self, txn_id: int) -> Optional[models.Transaction]:
        return self.db.get(models.Transaction, txn_id)

    def list(
        self,
        *,
        is_recurring: Optional[bool] = None,
        parent_subscription_ref: Optional[int] = None,
        account_ref: Optional[int] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[list[models.Transaction], int]:
        q = self.db.query(models.Transaction)
        if is_recurring is not None:
            q = q.filter(models.Transaction.is_recurring.is_(is_recurring))
        if parent_subscription_ref is not None:
            q = q.filter(models.Transaction.parent_subscription_ref == parent_subscription_ref)
        if account_ref is not None:
            q = q.filter(models.Transaction.account_ref == account_ref)
        total = q.count()
        q = q.order_by(models.Transaction.id).offset(offset)
        if limit is not None:
            q = q.limit(limit)
        return q.all(), total

    def children_of(self, subscription_id: int) -> list[models.Transaction]:
        return (
            self.db.query(models.Transaction)
            .filter(models.Transaction.parent_subscription_ref == subscription_id)
            .order_by(models.Transaction.id)
            .all()
        )

    def add(self, txn: models.Transaction) -> models.Transaction:
        self.db.add(txn)
        self.db.flush()
        return txn

    def spawn_child(
        self,
        subscription: models.Transaction,
        scheduled_at: datetime,
        *,
        parent_id: int,
    ) -> models.Transaction:
        """Stage one non-recurring child of ``subscription`` dated ``scheduled_at``.

        ``parent_id`` is the original subscription (``Subscription.root_id``),
        never another child.
        """
        child = models.Transaction(
            amount=subscription.amount,
            kind=subscription.kind,
            category=subscription.category,
            description=subscription.description,
            timestamp=format_timestamp(scheduled_at),
            account_ref=subscription.account_ref,
            instrument_ref=subscription.instrument_ref,
            is_recurring=False,
            interval_kind=None,
            next_due=None,
            parent_subscription_ref=parent_id,
            source_interval_kind=subscription.interval_kind,
        )
        self.db.add(child)
        return child

    def delete_one(self, txn_id: int) -> int:
        removed = (
            self.db.query(models.Transaction)
            .filter(models.Transaction.id == txn_id)
            .delete(synchronize_session="fetch")
        )
        return int(removed or 0)

    def delete_with_children(self, subscription_id: int) -> int:
        """Delete the subscription row and every row that names it as parent.

        Children go first so the returned count is exact; with the FK cascade
        enabled, deleting the parent first would remove children without
        them being counted.
        """
        children = (
            self.db.query(models.Transaction)
            .filter(models.Transaction.parent_subscription_ref == subscription_id)
            .delete(synchronize_session="fetch")
        )
        parent = (
            self.db.query(models.Transaction)
            .filter(
                or_(
                    models.Transaction.id == subscription_id,
                    models.Transaction.parent_subscription_ref == subscription_id,
                )
            )
            .delete(synchronize_session="fetch")
        )
        removed = int(children or 0) + int(parent or 0)
        logger.debug("Cascade delete for subscription %s removed %s rows", subscription_id, removed)
        return removed
