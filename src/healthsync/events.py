"""Human-readable sync events ("Monitoring started", "FAILED: ...").

The orchestrator reports every cycle transition here.  ``EventLog`` keeps
the most recent entries in memory, newest first, and mirrors each one to
the standard logger.  Durable storage and display belong elsewhere.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger("healthsync.events")

DEFAULT_MAX_ENTRIES = 50


@dataclass(frozen=True)
class SyncEvent:
    message: str
    is_error: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventLog:
    """Bounded, newest-first list of sync events."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._entries: deque[SyncEvent] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def add(self, message: str, is_error: bool = False) -> SyncEvent:
        event = SyncEvent(message=message, is_error=is_error)
        with self._lock:
            self._entries.appendleft(event)
        if is_error:
            logger.error(message)
        else:
            logger.info(message)
        return event

    def entries(self) -> list[SyncEvent]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
