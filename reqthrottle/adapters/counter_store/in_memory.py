"""In-memory throttle counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limits.
- Thread-safe: a lock guards the mapping itself; per-key transactions are
  serialized by the striped locks inherited from AbstractCounterStore.
- Expiry is lazy (checked on read). ``purge_expired()`` and ``max_entries``
  keep memory bounded under many distinct clients.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from reqthrottle.adapters.counter_store.base import AbstractCounterStore, ThrottleCounter

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    counter: ThrottleCounter
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by an ordered dict.

    Entries are kept in write order, so when ``max_entries`` is exceeded the
    least recently written counter is evicted first.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce
        its own independent limits.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        max_entries: int | None = None,
        lock_stripes: int = 64,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in seconds.
            max_entries: Capacity bound (None for unbounded).
            lock_stripes: Number of locks guarding per-key transactions.

        Raises:
            ValueError: If max_entries or lock_stripes are invalid.
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        super().__init__(lock_stripes=lock_stripes)
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._state_lock = threading.RLock()
        self._expirations = 0
        self._evictions = 0

    def __len__(self) -> int:
        with self._state_lock:
            return len(self._entries)

    def get(self, key: str) -> ThrottleCounter | None:
        with self._state_lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                return None
            return entry.counter

    def save(self, key: str, counter: ThrottleCounter, expiry_seconds: float) -> None:
        if expiry_seconds <= 0:
            raise ValueError("expiry_seconds must be > 0")

        with self._state_lock:
            self._entries[key] = _Entry(counter=counter, expires_at=counter.window_start + expiry_seconds)
            self._entries.move_to_end(key)
            self._evict_if_over_capacity_locked()

    def purge_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """

        with self._state_lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)

        if expired:
            logger.debug("counter_store.purged", extra={"purged": len(expired)})
        return len(expired)

    def clear(self) -> None:
        """Remove all counters and reset statistics."""

        with self._state_lock:
            self._entries.clear()
            self._expirations = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight store metrics without exposing keys."""

        with self._state_lock:
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "expirations": self._expirations,
                "evictions": self._evictions,
                "lock_stripes": len(self._keyed_lock),
            }

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._entries) > self._max_entries:
            # popitem(last=False) removes the least recently written entry
            self._entries.popitem(last=False)
            self._evictions += 1
