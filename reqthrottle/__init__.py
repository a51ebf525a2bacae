"""Request throttling by client IP, client identity, endpoint and user agent.

The engine is framework-agnostic: callers hand it a RequestDescriptor and get
a ThrottleDecision back. The FastAPI integration lives in
``reqthrottle.core.throttling``.
"""

from reqthrottle.adapters.counter_store import AbstractCounterStore, InMemoryCounterStore, ThrottleCounter
from reqthrottle.adapters.throttle_log import AbstractThrottleLogger, MemoryThrottleLogger, ThrottleLogEntry
from reqthrottle.schemas.policy import (
    EndpointThrottlingType,
    RateLimitPeriod,
    RateLimits,
    ThrottlePolicy,
    load_policy,
)
from reqthrottle.services.scope import RequestDescriptor, RequestScope, derive_key, resolve_scope
from reqthrottle.services.throttle_service import ThrottleDecision, ThrottleService, evaluate

__all__ = [
    "AbstractCounterStore",
    "AbstractThrottleLogger",
    "EndpointThrottlingType",
    "InMemoryCounterStore",
    "MemoryThrottleLogger",
    "RateLimitPeriod",
    "RateLimits",
    "RequestDescriptor",
    "RequestScope",
    "ThrottleCounter",
    "ThrottleDecision",
    "ThrottleLogEntry",
    "ThrottlePolicy",
    "ThrottleService",
    "derive_key",
    "evaluate",
    "load_policy",
    "resolve_scope",
]
