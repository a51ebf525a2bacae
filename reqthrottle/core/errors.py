"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from reqthrottle.services.throttle_service import ThrottleDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: int
    limit: int
    period: str
    value: str
    path: str
    operation: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidIpFormatError(ValidationAppError):
    """Raised when a string cannot be parsed as an IP address."""


class CounterStoreAppError(AppError):
    """Raised when the counter store fails to read or persist a counter."""


class ThrottledAppError(AppError):
    """Raised by the HTTP integration when a request is rejected.

    Carries the block decision so the exception handler can delegate the
    response to the configured rejection renderer.
    """

    def __init__(self, decision: "ThrottleDecision", message: str) -> None:
        self.decision = decision
        super().__init__(
            code="rate_limit_exceeded",
            message=message,
            details={
                "limit": decision.limit or 0,
                "period": decision.period.value if decision.period else "",
                "retry_after": decision.retry_after_seconds or 0,
            },
        )
