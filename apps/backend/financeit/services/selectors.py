"""Read-only queries over subscriptions: due set and shortest active interval."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models
from ..core.errors import ParseError
from ..utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)


def due_subscriptions(db: Session, now: datetime) -> list[models.Transaction]:
    """Every subscription whose ``next_due`` is at or before ``now``.

    ``next_due`` is ``dd/MM/yyyy`` text which does not sort chronologically, so
    the comparison happens on parsed values. Rows whose ``next_due`` cannot be
    parsed are returned as well; the catch-up step reports and skips them.
    """
    rows = (
        db.query(models.Transaction)
        .filter(models.Transaction.is_recurring.is_(True))
        .order_by(models.Transaction.id)
        .all()
    )
    due: list[models.Transaction] = []
    for row in rows:
        try:
            next_due = parse_timestamp(row.next_due)
        except ParseError:
            logger.warning("Subscription %s has unparseable next_due %r", row.id, row.next_due)
            due.append(row)
            continue
        if next_due <= now:
            due.append(row)
    return due


def shortest_active_interval(db: Session) -> models.IntervalKind | None:
    """Tightest interval among active subscriptions, or ``None`` when there are none."""
    for kind in models.IntervalKind.priority_order():
        hit = (
            db.query(models.Transaction.id)
            .filter(
                models.Transaction.is_recurring.is_(True),
                func.lower(models.Transaction.interval_kind) == kind.value,
            )
            .first()
        )
        if hit is not None:
            return kind
    return None


def earliest_next_due(db: Session) -> datetime | None:
    """Soonest parseable ``next_due`` among active subscriptions."""
    earliest: datetime | None = None
    rows = db.query(models.Transaction.next_due).filter(models.Transaction.is_recurring.is_(True)).all()
    for (raw,) in rows:
        try:
            value = parse_timestamp(raw)
        except ParseError:
            continue
        if earliest is None or value < earliest:
            earliest = value
    return earliest
