"""
storage/events.py

In-process record of the platform's public signals.

Events are appended in emission order, fanned out to subscribers, and
optionally written through to an :class:`storage.db.AuditStore`.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from storage.db import AuditStore
from storage.models import EventKind, PlatformEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[PlatformEvent], None]


class EventLog:
    def __init__(self, store: AuditStore | None = None):
        self._store = store
        self._events: list[PlatformEvent] = []
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        """Register *callback* to receive every subsequently emitted event."""
        with self._lock:
            self._subscribers.append(callback)

    def emit(self, event: PlatformEvent) -> None:
        """
        Record *event* and deliver it to the store and subscribers.

        Emission happens after the originating operation has committed, so a
        failing store or subscriber is logged and never raised to the caller.
        """
        with self._lock:
            self._events.append(event)
            subscribers = list(self._subscribers)

        logger.info("Event %s patient=%s session=%s", event.kind, event.patient, event.session_id)

        if self._store is not None:
            try:
                self._store.append_event(event)
            except Exception:
                logger.exception("Audit store failed to persist %s for patient=%s", event.kind, event.patient)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber %r failed on %s", callback, event.kind)

    @property
    def events(self) -> list[PlatformEvent]:
        with self._lock:
            return list(self._events)

    def of_kind(self, kind: EventKind | str) -> list[PlatformEvent]:
        return [e for e in self.events if e.kind == kind]
