"""
Interval Calculator

Pure date arithmetic for subscription intervals:

- ``next_run``: calendar-aware next occurrence (month/year lengths respected)
- ``interval_duration``: fixed approximations used to count missed occurrences
- ``wake_cadence``: how far ahead the wake alarm should fire for an interval
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import overload

from ..models import IntervalKind
from ..utils.timestamps import format_timestamp, parse_timestamp


_FIXED_DURATIONS: dict[IntervalKind, timedelta] = {
    IntervalKind.MINUTELY: timedelta(minutes=1),
    IntervalKind.DAILY: timedelta(days=1),
    IntervalKind.WEEKLY: timedelta(days=7),
    IntervalKind.MONTHLY: timedelta(days=30),
    IntervalKind.YEARLY: timedelta(days=365),
}


def parse_interval_kind(value: str | IntervalKind | None) -> IntervalKind:
    return IntervalKind.parse(value)


def _add_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = (year * 12 + (month - 1)) + delta
    new_year = total // 12
    new_month = total % 12 + 1
    return new_year, new_month


def _clamp_day(year: int, month: int, day: int) -> int:
    last_day = calendar.monthrange(year, month)[1]
    return min(day, last_day)


def add_months(value: datetime, months: int) -> datetime:
    year, month = _add_month(value.year, value.month, months)
    return value.replace(year=year, month=month, day=_clamp_day(year, month, value.day))


def advance(value: datetime, interval_kind: str | IntervalKind) -> datetime:
    kind = parse_interval_kind(interval_kind)
    if kind is IntervalKind.MINUTELY:
        return value + timedelta(minutes=1)
    if kind is IntervalKind.DAILY:
        return value + timedelta(days=1)
    if kind is IntervalKind.WEEKLY:
        return value + timedelta(weeks=1)
    if kind is IntervalKind.MONTHLY:
        return add_months(value, 1)
    return add_months(value, 12)


@overload
def next_run(timestamp: str, interval_kind: str | IntervalKind) -> str: ...


@overload
def next_run(timestamp: datetime, interval_kind: str | IntervalKind) -> datetime: ...


def next_run(timestamp, interval_kind):
    """Return the occurrence one interval after ``timestamp``.

    Strings in the canonical format come back as canonical strings; datetimes
    come back as datetimes.

    Raises:
        ParseError: ``timestamp`` is not canonical.
        UnsupportedIntervalError: ``interval_kind`` is outside the enumeration.
    """
    kind = parse_interval_kind(interval_kind)
    if isinstance(timestamp, datetime):
        return advance(timestamp, kind)
    return format_timestamp(advance(parse_timestamp(timestamp), kind))


def interval_duration(interval_kind: str | IntervalKind) -> timedelta:
    return _FIXED_DURATIONS[parse_interval_kind(interval_kind)]


def wake_cadence(interval_kind: str | IntervalKind, now: datetime) -> timedelta:
    """Calendar-aware distance from ``now`` to the next occurrence of the interval."""
    return advance(now, interval_kind) - now
