"""
Services 패키지

반복 거래(subscription) 스케줄러와 거래 편집 서비스를 제공합니다.
"""

from .catchup_service import CatchUpProcessor, CatchUpResult
from .notifications import RECURRENCE_STATE_CHANGED, ChangeEvent, ChangeNotifier
from .recurrence_store import RecurrenceStore
from .scheduler import (
    PassSummary,
    RecordingWakeAlarm,
    RecurrenceScheduler,
    SchedulerWakeAlarm,
    WakeAlarm,
)
from .selectors import due_subscriptions, shortest_active_interval
from .transaction_service import TransactionService

__all__ = [
    "CatchUpProcessor",
    "CatchUpResult",
    "RECURRENCE_STATE_CHANGED",
    "ChangeEvent",
    "ChangeNotifier",
    "RecurrenceStore",
    "PassSummary",
    "RecordingWakeAlarm",
    "RecurrenceScheduler",
    "SchedulerWakeAlarm",
    "WakeAlarm",
    "due_subscriptions",
    "shortest_active_interval",
    "TransactionService",
]
