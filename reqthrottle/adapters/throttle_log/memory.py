"""In-memory sink keeping the most recent blocked requests."""

from __future__ import annotations

import threading
from collections import deque

from reqthrottle.adapters.throttle_log.base import AbstractThrottleLogger, ThrottleLogEntry


class MemoryThrottleLogger(AbstractThrottleLogger):
    """Bounded, thread-safe buffer of blocked-request entries.

    Oldest entries are dropped once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._entries: deque[ThrottleLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._total = 0

    def log(self, entry: ThrottleLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            self._total += 1

    def recent(self, limit: int | None = None) -> list[ThrottleLogEntry]:
        """Return buffered entries, newest first."""

        with self._lock:
            entries = list(reversed(self._entries))
        return entries if limit is None else entries[:limit]

    @property
    def total_logged(self) -> int:
        """Entries received since creation or the last clear()."""
        return self._total

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total = 0
