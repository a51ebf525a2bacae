"""Blocked-request log sink interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ThrottleLogEntry:
    """Snapshot of a blocked request.

    Attributes:
        request_id: Correlation id of the HTTP request (or a generated one).
        client_ip: Normalized client address.
        client_key: ``auth`` or ``anon``.
        endpoint: Lower-cased rendered endpoint.
        user_agent: User-Agent header, if any.
        total_requests: Counter value that exceeded the limit.
        start_period: Start of the counter window (UTC).
        rate_limit: Effective limit that was exceeded.
        rate_limit_period: Period name (``second``, ``minute``, ...).
        log_date: When the block was decided (UTC).
        counter_key: Derived counter store key.
    """

    request_id: str
    client_ip: str
    client_key: str
    endpoint: str
    user_agent: str | None
    total_requests: int
    start_period: datetime
    rate_limit: int
    rate_limit_period: str
    log_date: datetime
    counter_key: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start_period"] = self.start_period.isoformat()
        data["log_date"] = self.log_date.isoformat()
        return data


class AbstractThrottleLogger(ABC):
    """Receives one entry per blocked request.

    Failures raised by ``log`` are reported by the engine and never change the
    decision already taken.
    """

    @abstractmethod
    def log(self, entry: ThrottleLogEntry) -> None:
        raise NotImplementedError
