"""Error types raised by the recurrence engine."""

from __future__ import annotations


class RecurrenceError(Exception):
    """Base class for recurrence engine failures."""


class ParseError(RecurrenceError, ValueError):
    """A timestamp is not in the canonical ``dd/MM/yyyy HH:mm`` format."""

    def __init__(self, value: object, message: str | None = None) -> None:
        self.value = value
        super().__init__(message or f"Unparseable timestamp: {value!r}")


class UnsupportedIntervalError(RecurrenceError, ValueError):
    def __init__(self, interval_kind: object) -> None:
        self.interval_kind = interval_kind
        super().__init__(f"Unsupported interval: {interval_kind!r}")


class StoreError(RecurrenceError):
    """Persisting a catch-up pass failed; the pass was rolled back."""
