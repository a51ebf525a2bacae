from __future__ import annotations

from fastapi import APIRouter, Query, Request

from reqthrottle.adapters.counter_store.in_memory import InMemoryCounterStore
from reqthrottle.adapters.throttle_log.memory import MemoryThrottleLogger
from reqthrottle.core.throttling import get_throttle_context

router = APIRouter(prefix="/throttle", tags=["Throttle"])


@router.get("/blocked", name="throttle_blocked")
def recent_blocked(request: Request, limit: int = Query(50, ge=1, le=1000)) -> dict:
    """List the most recent blocked requests, newest first.

    Only available when the in-memory log sink is configured; otherwise the
    list is empty.
    """

    context = get_throttle_context(request)
    sink = context.service.throttle_logger if context else None
    if not isinstance(sink, MemoryThrottleLogger):
        return {"total": 0, "entries": []}

    return {
        "total": sink.total_logged,
        "entries": [entry.to_dict() for entry in sink.recent(limit)],
    }


@router.get("/stats", name="throttle_stats")
def store_stats(request: Request) -> dict:
    """Counter store statistics (entry count, expirations, evictions)."""

    context = get_throttle_context(request)
    store = context.service.counter_store if context else None
    if isinstance(store, InMemoryCounterStore):
        store.purge_expired()
        return store.stats()
    return {}
