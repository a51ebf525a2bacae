"""Pydantic models for the throttle policy.

The policy is loaded once (from code, settings or a JSON file) and shared
read-only between concurrent requests, so every model here is frozen.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, ValidationError, field_validator

from reqthrottle.core.errors import ValidationAppError


class RateLimitPeriod(str, Enum):
    """Fixed time windows a request count can be bounded over."""

    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"

    @property
    def seconds(self) -> int:
        return _PERIOD_SECONDS[self]


_PERIOD_SECONDS: dict[RateLimitPeriod, int] = {
    RateLimitPeriod.SECOND: 1,
    RateLimitPeriod.MINUTE: 60,
    RateLimitPeriod.HOUR: 60 * 60,
    RateLimitPeriod.DAY: 60 * 60 * 24,
    RateLimitPeriod.WEEK: 60 * 60 * 24 * 7,
}


class EndpointThrottlingType(str, Enum):
    """How the HTTP integration renders the endpoint string of a request."""

    ABSOLUTE_PATH = "absolute_path"
    PATH_AND_QUERY = "path_and_query"
    CONTROLLER_AND_ACTION = "controller_and_action"
    CONTROLLER = "controller"


class RateLimits(BaseModel):
    """Sparse per-period limits used by rule overrides.

    Unset or zero entries mean "no limit at this period for this rule".
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    per_second: NonNegativeInt | None = None
    per_minute: NonNegativeInt | None = None
    per_hour: NonNegativeInt | None = None
    per_day: NonNegativeInt | None = None
    per_week: NonNegativeInt | None = None

    def get_limit(self, period: RateLimitPeriod) -> int:
        """Return the limit for ``period``, 0 when unset."""
        return getattr(self, f"per_{period.value}") or 0


class ThrottlePolicy(BaseModel):
    """Root throttling configuration.

    Attributes:
        rates: Base limits per period, kept in ascending period order.
        ip_throttling: Partition counters by client IP.
        client_throttling: Partition counters by client key (auth/anon).
        endpoint_throttling: Partition counters by rendered endpoint.
        user_agent_throttling: Partition counters by User-Agent.
        ip_rules: IP range spec -> override limits.
        client_rules: Exact client key -> override limits.
        endpoint_rules: Endpoint substring -> override limits.
        user_agent_rules: User-Agent substring -> override limits.
        ip_whitelist: IP range specs exempt from throttling.
        client_whitelist: Client keys exempt from throttling.
        endpoint_whitelist: Endpoint substrings exempt from throttling.
        user_agent_whitelist: User-Agent substrings exempt from throttling.
        endpoint_type: Endpoint rendering used by the HTTP integration.
        stack_blocked_requests: Evaluate periods longest-first.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rates: Dict[RateLimitPeriod, PositiveInt] = Field(
        ...,
        description="Base limits; at least one period is required.",
    )

    ip_throttling: bool = False
    client_throttling: bool = False
    endpoint_throttling: bool = False
    user_agent_throttling: bool = False

    ip_rules: Dict[str, RateLimits] = Field(default_factory=dict)
    client_rules: Dict[str, RateLimits] = Field(default_factory=dict)
    endpoint_rules: Dict[str, RateLimits] = Field(default_factory=dict)
    user_agent_rules: Dict[str, RateLimits] = Field(default_factory=dict)

    ip_whitelist: List[str] = Field(default_factory=list)
    client_whitelist: List[str] = Field(default_factory=list)
    endpoint_whitelist: List[str] = Field(default_factory=list)
    user_agent_whitelist: List[str] = Field(default_factory=list)

    endpoint_type: EndpointThrottlingType = EndpointThrottlingType.ABSOLUTE_PATH
    stack_blocked_requests: bool = False

    @field_validator("rates")
    @classmethod
    def _rates_not_empty(cls, value: Dict[RateLimitPeriod, int]) -> Dict[RateLimitPeriod, int]:
        if not value:
            raise ValueError("at least one rate limit period must be configured")
        return {period: value[period] for period in sorted(value, key=lambda p: p.seconds)}

    @classmethod
    def from_limits(
        cls,
        *,
        per_second: int | None = None,
        per_minute: int | None = None,
        per_hour: int | None = None,
        per_day: int | None = None,
        per_week: int | None = None,
        **fields: Any,
    ) -> "ThrottlePolicy":
        """Build a policy from keyword limits; unset periods are not enforced.

        Example:
            >>> policy = ThrottlePolicy.from_limits(per_second=1, per_minute=10, ip_throttling=True)
            >>> list(policy.rates)
            [<RateLimitPeriod.SECOND: 'second'>, <RateLimitPeriod.MINUTE: 'minute'>]
        """

        limits = {
            RateLimitPeriod.SECOND: per_second,
            RateLimitPeriod.MINUTE: per_minute,
            RateLimitPeriod.HOUR: per_hour,
            RateLimitPeriod.DAY: per_day,
            RateLimitPeriod.WEEK: per_week,
        }
        rates = {period: limit for period, limit in limits.items() if limit}
        return cls(rates=rates, **fields)

    def ordered_periods(self) -> list[tuple[RateLimitPeriod, int]]:
        """Return (period, base limit) pairs in evaluation order.

        Shortest period first, or longest first when requests are stacked so
        that rejected requests still count against the long windows.
        """

        items = list(self.rates.items())
        if self.stack_blocked_requests:
            items.reverse()
        return items


def load_policy(path: str | Path) -> ThrottlePolicy:
    """Load and validate a policy from a JSON file.

    Args:
        path: Location of the JSON document.

    Returns:
        The validated policy.

    Raises:
        ValidationAppError: If the file is missing, not JSON, or invalid.
    """

    policy_path = Path(path)
    try:
        raw = json.loads(policy_path.read_text(encoding="utf-8"))
        return ThrottlePolicy.model_validate(raw)
    except OSError as exc:
        raise ValidationAppError(
            code="policy_file_unreadable",
            message=f"Cannot read throttle policy file '{policy_path}'",
            details={"path": str(policy_path), "hint": str(exc)},
        ) from exc
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValidationAppError(
            code="invalid_policy",
            message=f"Throttle policy file '{policy_path}' is invalid",
            details={"path": str(policy_path), "hint": str(exc)},
        ) from exc
