"""Counter store interfaces.

The throttle engine depends on this abstraction (not the concrete
implementation) so storage can be swapped (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass


@dataclass(frozen=True)
class ThrottleCounter:
    """Request count for one key within one period window.

    Attributes:
        window_start: UNIX epoch seconds when the window started.
        total_requests: Requests seen in the window, including the current one.
    """

    window_start: float
    total_requests: int

    def is_expired(self, period_seconds: float, now: float) -> bool:
        """Whether the window has fully elapsed at ``now``."""
        return self.window_start + period_seconds < now


class KeyedLock:
    """Fixed pool of locks; each key always maps to the same lock.

    Transactions on the same key are serialized while transactions on
    unrelated keys only contend when they hash to the same stripe.
    """

    def __init__(self, stripes: int = 64) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def __len__(self) -> int:
        return len(self._locks)

    def for_key(self, key: str) -> threading.Lock:
        # Python's hash() is salted per process; the digest keeps stripe
        # assignment stable, which makes contention reproducible in tests.
        digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
        return self._locks[int.from_bytes(digest, "big") % len(self._locks)]


class AbstractCounterStore(ABC):
    """Interface for throttle counter stores.

    Implementations must treat an entry as absent once ``expiry_seconds`` have
    elapsed since the counter's own ``window_start`` (not since the write).
    """

    def __init__(self, *, lock_stripes: int = 64) -> None:
        self._keyed_lock = KeyedLock(lock_stripes)

    def lock(self, key: str) -> AbstractContextManager:
        """Return the lock guarding read-increment-write transactions on ``key``.

        Stores backed by a shared external service should override this with
        a distributed lock or replace the transaction with a native atomic
        increment.
        """

        return self._keyed_lock.for_key(key)

    @abstractmethod
    def get(self, key: str) -> ThrottleCounter | None:
        """Return the live counter for ``key`` or None when absent/expired.

        Raises:
            CounterStoreAppError: If the backing store cannot be read.
        """
        raise NotImplementedError

    @abstractmethod
    def save(self, key: str, counter: ThrottleCounter, expiry_seconds: float) -> None:
        """Insert or replace the counter for ``key``.

        Args:
            key: Derived counter key.
            counter: New counter value.
            expiry_seconds: Lifetime measured from ``counter.window_start``.

        Raises:
            CounterStoreAppError: If the backing store cannot be written.
        """
        raise NotImplementedError
