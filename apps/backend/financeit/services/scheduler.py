"""
Scheduler trigger glue

``RecurrenceScheduler.process_all_due`` is what a wake-up invokes: select the
due subscriptions, catch each one up, then re-arm the wake alarm for the
tightest interval still in use (or disarm when nothing is active).

The alarm itself is an injected ``WakeAlarm`` so the wake mechanism stays
outside the engine; ``SchedulerWakeAlarm`` drives it with an APScheduler
``BackgroundScheduler`` when the backend runs on its own.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Optional, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..core.errors import StoreError
from ..utils.timestamps import LOCAL_ZONE, now_local_naive
from .catchup_service import Arithmetic, CatchUpProcessor
from .interval_calculator import wake_cadence
from .notifications import ChangeNotifier
from .selectors import due_subscriptions, earliest_next_due, shortest_active_interval

logger = logging.getLogger(__name__)

WAKE_JOB_ID = "recurrence_catch_up"


class WakeAlarm(Protocol):
    def arm(self, interval_kind: models.IntervalKind, cadence: timedelta, first_fire_at: datetime) -> None: ...

    def disarm(self) -> None: ...


@dataclass
class RecordingWakeAlarm:
    """Alarm that only remembers what it was asked to do."""

    interval_kind: Optional[models.IntervalKind] = None
    cadence: Optional[timedelta] = None
    first_fire_at: Optional[datetime] = None
    history: list[tuple[str, Optional[models.IntervalKind]]] = field(default_factory=list)

    @property
    def armed(self) -> bool:
        return self.interval_kind is not None

    def arm(self, interval_kind: models.IntervalKind, cadence: timedelta, first_fire_at: datetime) -> None:
        self.interval_kind = interval_kind
        self.cadence = cadence
        self.first_fire_at = first_fire_at
        self.history.append(("arm", interval_kind))

    def disarm(self) -> None:
        self.interval_kind = None
        self.cadence = None
        self.first_fire_at = None
        self.history.append(("disarm", None))


class SchedulerWakeAlarm:
    """Repeating wake job on an APScheduler ``BackgroundScheduler``.

    One job id is reused, so arming again replaces the job instead of stacking
    wakes. A pending fire time earlier than the requested one is kept; re-arming
    never postpones a wake that is already due sooner.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        scheduler: Optional[BackgroundScheduler] = None,
        timezone: tzinfo = LOCAL_ZONE,
    ) -> None:
        self._callback = callback
        self._timezone = timezone
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone)
        self.interval_kind: Optional[models.IntervalKind] = None

    @property
    def armed(self) -> bool:
        return self._scheduler.get_job(WAKE_JOB_ID) is not None

    def start(self) -> None:
        if self._scheduler.running:
            logger.info("Wake scheduler already started; ignoring duplicate start.")
            return
        self._scheduler.start()
        logger.info("Wake scheduler started")

    def shutdown(self) -> None:
        if not self._scheduler.running:
            return
        try:
            self._scheduler.shutdown(wait=False)
            logger.info("Wake scheduler stopped")
        finally:
            self.interval_kind = None

    def next_fire_time(self) -> Optional[datetime]:
        """Pending wake as naive local wall-clock time, or ``None``."""
        job = self._scheduler.get_job(WAKE_JOB_ID)
        pending = getattr(job, "next_run_time", None) if job is not None else None
        if pending is None:
            return None
        return pending.astimezone(self._timezone).replace(tzinfo=None)

    def arm(self, interval_kind: models.IntervalKind, cadence: timedelta, first_fire_at: datetime) -> None:
        pending = self.next_fire_time()
        if pending is not None and pending < first_fire_at:
            first_fire_at = pending
        if pending is not None:
            # a stopped scheduler queues jobs without replacing by id
            self._scheduler.remove_job(WAKE_JOB_ID)
        self._scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(seconds=max(int(cadence.total_seconds()), 1), timezone=self._timezone),
            id=WAKE_JOB_ID,
            next_run_time=first_fire_at.replace(tzinfo=self._timezone),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )
        self.interval_kind = interval_kind
        logger.info("Wake alarm armed for %s (every %s), next wake at %s", interval_kind.value, cadence, first_fire_at)

    def disarm(self) -> None:
        if self._scheduler.get_job(WAKE_JOB_ID) is not None:
            self._scheduler.remove_job(WAKE_JOB_ID)
        self.interval_kind = None
        logger.info("Wake alarm canceled, scheduler will no longer run")

    def _run(self) -> None:
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled recurrence pass failed")


@dataclass
class SkippedSubscription:
    subscription_id: int
    reason: str


@dataclass
class PassSummary:
    evaluated_at: datetime
    due_count: int = 0
    processed_ids: list[int] = field(default_factory=list)
    spawned_ids: list[int] = field(default_factory=list)
    skipped: list[SkippedSubscription] = field(default_factory=list)
    armed_interval: Optional[models.IntervalKind] = None
    ran: bool = True
    # set when the pass could not read the store at all
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return bool(self.spawned_ids)


class RecurrenceScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        alarm: WakeAlarm,
        notifier: Optional[ChangeNotifier] = None,
        arithmetic: Optional[Arithmetic] = None,
        clock: Callable[[], datetime] = now_local_naive,
    ) -> None:
        self.session_factory = session_factory
        self.alarm = alarm
        self.notifier = notifier
        self.arithmetic = arithmetic
        self.clock = clock
        # scheduled wakes and manual/API passes share this; the job itself runs with max_instances=1
        self._pass_lock = threading.Lock()

    def process_all_due(self, now: Optional[datetime] = None, *, db: Optional[Session] = None) -> PassSummary:
        """Catch up every due subscription, then re-arm the alarm.

        A wake that arrives while another pass is still running is skipped;
        the running pass already covers it and the next wake resumes from
        whatever was persisted. Store failures are logged and reported in the
        summary, never raised.
        """
        now = now or self.clock()
        if not self._pass_lock.acquire(blocking=False):
            logger.info("Recurrence pass already running; skipping wake at %s", now)
            return PassSummary(evaluated_at=now, ran=False)
        owns_session = db is None
        session = db if db is not None else self.session_factory()
        try:
            return self._run_pass(session, now)
        finally:
            if owns_session:
                session.close()
            self._pass_lock.release()

    def rearm(self, db: Session, now: Optional[datetime] = None) -> Optional[models.IntervalKind]:
        """Point the alarm at the shortest active interval (disarm when none).

        The first wake lands at the earlier of one cadence from ``now`` and the
        soonest pending ``next_due``.
        """
        now = now or self.clock()
        kind = shortest_active_interval(db)
        if kind is None:
            self.alarm.disarm()
            logger.info("No active subscriptions; wake alarm disarmed")
            return None
        cadence = wake_cadence(kind, now)
        first_fire_at = now + cadence
        soonest = earliest_next_due(db)
        if soonest is not None and soonest < first_fire_at:
            first_fire_at = max(soonest, now)
        self.alarm.arm(kind, cadence, first_fire_at)
        logger.debug("Wake alarm updated to shortest interval: %s", kind.value)
        return kind

    def _abort(self, db: Session, summary: PassSummary, what: str, exc: SQLAlchemyError) -> PassSummary:
        db.rollback()
        error = StoreError(f"{what} failed: {exc}")
        logger.error("Recurrence pass at %s aborted: %s", summary.evaluated_at, error, exc_info=True)
        summary.error = str(error)
        return summary

    def _run_pass(self, db: Session, now: datetime) -> PassSummary:
        summary = PassSummary(evaluated_at=now)
        try:
            due = due_subscriptions(db, now)
        except SQLAlchemyError as exc:
            return self._abort(db, summary, "due-set read", exc)
        summary.due_count = len(due)
        logger.info("Subscriptions ready to run: %s", len(due))

        processor = CatchUpProcessor(db, notifier=self.notifier, arithmetic=self.arithmetic)
        for subscription in due:
            subscription_id = subscription.id
            logger.debug("Processing subscription ID: %s", subscription_id)
            try:
                result = processor.process_due(subscription, now)
            except ValueError as exc:
                # ParseError, UnsupportedIntervalError or a row that is not a subscription
                logger.warning("Skipping subscription %s: %s", subscription_id, exc)
                summary.skipped.append(SkippedSubscription(subscription_id, str(exc)))
                continue
            except StoreError as exc:
                logger.error("Catch-up for subscription %s rolled back: %s", subscription_id, exc, exc_info=True)
                summary.skipped.append(SkippedSubscription(subscription_id, str(exc)))
                continue
            summary.processed_ids.append(subscription_id)
            summary.spawned_ids.extend(child.id for child in result.children)

        try:
            summary.armed_interval = self.rearm(db, now)
        except SQLAlchemyError as exc:
            return self._abort(db, summary, "wake alarm re-arm", exc)
        return summary
