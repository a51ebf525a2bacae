"""Throttle counter store adapters.

This package provides a small abstraction layer so throttling can start with
an in-memory store and later migrate to Redis or another shared store without
changing the engine or the HTTP layer.
"""

from reqthrottle.adapters.counter_store.base import AbstractCounterStore, KeyedLock, ThrottleCounter
from reqthrottle.adapters.counter_store.in_memory import InMemoryCounterStore

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "KeyedLock",
    "ThrottleCounter",
]
