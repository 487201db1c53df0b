from __future__ import annotations

from typing import Optional

from ..services.notifications import ChangeNotifier
from ..services.scheduler import RecordingWakeAlarm, RecurrenceScheduler, WakeAlarm
from .database import SessionLocal

notifier = ChangeNotifier()
_scheduler: Optional[RecurrenceScheduler] = None


def build_scheduler(alarm: Optional[WakeAlarm] = None) -> RecurrenceScheduler:
    """(Re)create the process-wide scheduler around ``alarm``.

    Defaults to a ``RecordingWakeAlarm`` so nothing fires on its own; the app
    lifespan swaps in a ``SchedulerWakeAlarm`` when the background scheduler is on.
    """
    global _scheduler
    _scheduler = RecurrenceScheduler(
        SessionLocal,
        alarm=alarm or RecordingWakeAlarm(),
        notifier=notifier,
    )
    return _scheduler


def get_notifier() -> ChangeNotifier:
    return notifier


def get_scheduler() -> RecurrenceScheduler:
    """Very lightweight scheduler resolver.

    Tests may override this dependency to inject their own alarm/notifier.
    """
    if _scheduler is None:
        return build_scheduler()
    return _scheduler
