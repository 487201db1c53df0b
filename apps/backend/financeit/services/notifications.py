"""
Change notification

Fire-and-forget fan-out of "recurrence state changed" events to whoever
renders totals/lists (the UI collaborator). Listeners are plain callables;
a failing listener is logged and never interrupts the publisher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Callable

logger = logging.getLogger(__name__)

RECURRENCE_STATE_CHANGED = "recurrence_state_changed"


@dataclass(frozen=True)
class ChangeEvent:
    name: str
    revision: int
    occurred_at: datetime
    subscription_ids: tuple[int, ...] = ()
    spawned_ids: tuple[int, ...] = ()
    message: str | None = None


Listener = Callable[[ChangeEvent], None]


@dataclass
class ChangeNotifier:
    revision: int = 0
    last_event: ChangeEvent | None = None
    _listeners: list[Listener] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(
        self,
        name: str,
        *,
        occurred_at: datetime,
        subscription_ids: tuple[int, ...] = (),
        spawned_ids: tuple[int, ...] = (),
        message: str | None = None,
    ) -> ChangeEvent:
        with self._lock:
            self.revision += 1
            event = ChangeEvent(
                name=name,
                revision=self.revision,
                occurred_at=occurred_at,
                subscription_ids=subscription_ids,
                spawned_ids=spawned_ids,
                message=message,
            )
            self.last_event = event
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed for %s", listener, name)
        logger.debug("Broadcast sent: %s (revision %s)", name, event.revision)
        return event
