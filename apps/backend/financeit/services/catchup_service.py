"""
Catch-Up Processor

Materializes every occurrence a subscription missed since its stored
``next_due`` and advances ``next_due`` past ``now``. Children and the advanced
subscription are committed together, so a retry after any failure recomputes
the same work from persisted state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Optional

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..domain import Subscription, as_variant
from ..utils.timestamps import format_timestamp, parse_timestamp
from .interval_calculator import add_months, advance, interval_duration
from .notifications import RECURRENCE_STATE_CHANGED, ChangeNotifier
from .recurrence_store import RecurrenceStore

logger = logging.getLogger(__name__)

Arithmetic = Literal["fixed", "calendar"]


@dataclass
class CatchUpResult:
    subscription: models.Transaction
    children: list[models.Transaction] = field(default_factory=list)
    previous_next_due: Optional[str] = None

    @property
    def missed_count(self) -> int:
        return len(self.children)


def missed_occurrences_fixed(next_due: datetime, now: datetime, interval: timedelta) -> tuple[list[datetime], datetime]:
    """Occurrences at ``next_due + i * interval`` up to ``now`` and the new ``next_due``."""
    missed_count = (now - next_due) // interval + 1
    scheduled = [next_due + i * interval for i in range(missed_count)]
    return scheduled, next_due + missed_count * interval


def missed_occurrences_calendar(
    next_due: datetime,
    now: datetime,
    interval_kind: models.IntervalKind,
) -> tuple[list[datetime], datetime]:
    """Like ``missed_occurrences_fixed`` but stepping with calendar-aware addition.

    Monthly/yearly steps are taken from the original ``next_due`` (n months
    after it, day clipped) so a 31st does not drift to the 28th after February.
    """
    scheduled: list[datetime] = []
    current = next_due
    steps = 0
    while current <= now:
        scheduled.append(current)
        steps += 1
        if interval_kind is models.IntervalKind.MONTHLY:
            current = add_months(next_due, steps)
        elif interval_kind is models.IntervalKind.YEARLY:
            current = add_months(next_due, 12 * steps)
        else:
            current = advance(current, interval_kind)
    return scheduled, current


class CatchUpProcessor:
    """Run one catch-up pass for a single due subscription."""

    def __init__(
        self,
        db: Session,
        *,
        notifier: Optional[ChangeNotifier] = None,
        arithmetic: Optional[Arithmetic] = None,
    ) -> None:
        self.db = db
        self.store = RecurrenceStore(db)
        self.notifier = notifier
        self.arithmetic: Arithmetic = arithmetic or settings.CATCHUP_ARITHMETIC

    def process_due(self, subscription: models.Transaction, now: datetime) -> CatchUpResult:
        """Spawn missed children for ``subscription`` and advance its ``next_due``.

        Nothing is written when ``now`` is before ``next_due``.

        Raises:
            ParseError: stored ``next_due`` is malformed; nothing was written.
            UnsupportedIntervalError: stored interval is unknown; nothing was written.
            ValueError: ``subscription`` is not a subscription row.
            StoreError: the commit failed and was rolled back.
        """
        # validate before touching the session so a bad row leaves no trace
        variant = as_variant(subscription)
        if not isinstance(variant, Subscription):
            raise ValueError(f"Transaction {subscription.id} is not a subscription")
        next_due = parse_timestamp(variant.next_due)
        kind = variant.interval_kind
        result = CatchUpResult(subscription=subscription, previous_next_due=subscription.next_due)

        if now < next_due:
            logger.debug(
                "No missed transactions for subscription %s. Next run is at: %s",
                subscription.id,
                subscription.next_due,
            )
            return result

        if self.arithmetic == "calendar":
            scheduled, new_next_due = missed_occurrences_calendar(next_due, now, kind)
        else:
            scheduled, new_next_due = missed_occurrences_fixed(next_due, now, interval_duration(kind))

        with self.store.atomic(label=f"catch-up for subscription {subscription.id}"):
            for when in scheduled:
                result.children.append(self.store.spawn_child(subscription, when, parent_id=variant.root_id))
                logger.debug("Spawned missed transaction for: %s", format_timestamp(when))
            subscription.next_due = format_timestamp(new_next_due)
            self.db.flush()

        logger.info(
            "Subscription %s: spawned %s transaction(s), next_due %s -> %s",
            subscription.id,
            len(result.children),
            result.previous_next_due,
            subscription.next_due,
        )
        if self.notifier is not None:
            self.notifier.publish(
                RECURRENCE_STATE_CHANGED,
                occurred_at=now,
                subscription_ids=(subscription.id,),
                spawned_ids=tuple(child.id for child in result.children),
                message=settings.PROCESSED_MESSAGE,
            )
        return result
