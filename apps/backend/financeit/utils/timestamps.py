"""
Canonical timestamp helpers

Ledger timestamps are stored as naive local wall-clock text in the
``dd/MM/yyyy HH:mm`` format shared with the mobile client.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from ..core.config import settings
from ..core.errors import ParseError

CANONICAL_FORMAT = "%d/%m/%Y %H:%M"

try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "Asia/Jerusalem"))
except Exception:
    LOCAL_ZONE = ZoneInfo("Asia/Jerusalem")


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone, minute precision."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None, second=0, microsecond=0)


def parse_timestamp(value: str | datetime | None) -> datetime:
    """
    Canonical 문자열 -> datetime

    Raises:
        ParseError: ``value`` is empty or not ``dd/MM/yyyy HH:mm``.

    Example:
        >>> parse_timestamp("05/01/2024 09:30")
        datetime.datetime(2024, 1, 5, 9, 30)
    """
    if isinstance(value, datetime):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str) or not value.strip():
        raise ParseError(value)
    try:
        return datetime.strptime(value.strip(), CANONICAL_FORMAT)
    except ValueError as exc:
        raise ParseError(value) from exc


def format_timestamp(value: datetime) -> str:
    return value.strftime(CANONICAL_FORMAT)


def normalize_timestamp(value: str | datetime) -> str:
    """Round-trip through the parser so stored text is always zero-padded."""
    return format_timestamp(parse_timestamp(value))
