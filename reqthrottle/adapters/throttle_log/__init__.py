"""Sinks for blocked-request log entries."""

from reqthrottle.adapters.throttle_log.base import AbstractThrottleLogger, ThrottleLogEntry
from reqthrottle.adapters.throttle_log.memory import MemoryThrottleLogger

__all__ = [
    "AbstractThrottleLogger",
    "MemoryThrottleLogger",
    "ThrottleLogEntry",
]
