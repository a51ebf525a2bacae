"""Throttle decision engine.

Given a request descriptor and a policy, decides whether the request is
admitted. For each configured period the engine:

- derives the counter key from the request scope
- increments the counter under the store's per-key lock
- resolves the effective limit (base -> route override -> endpoint rules ->
  client rule -> user-agent rules -> IP rule, later positive values win)
- blocks as soon as one period's counter exceeds its limit

Periods are evaluated shortest-first, or longest-first when the policy stacks
blocked requests. The first period that exceeds its limit decides the block.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from reqthrottle.adapters.counter_store.base import AbstractCounterStore, ThrottleCounter
from reqthrottle.adapters.throttle_log.base import AbstractThrottleLogger, ThrottleLogEntry
from reqthrottle.core.config import DEFAULT_QUOTA_EXCEEDED_MESSAGE
from reqthrottle.core.errors import CounterStoreAppError
from reqthrottle.core.logging import get_or_create_request_id
from reqthrottle.schemas.policy import RateLimitPeriod, RateLimits, ThrottlePolicy
from reqthrottle.services.scope import RequestDescriptor, RequestScope, derive_key, resolve_scope
from reqthrottle.utils.ip_address import any_range_contains

logger = logging.getLogger(__name__)

DEFAULT_STATUS_CODE = 429


@dataclass(frozen=True)
class ThrottleDecision:
    """Outcome of evaluating one request.

    Attributes:
        allowed: Whether the request may proceed.
        scope: Resolved request scope.
        period: Period whose limit was exceeded (blocked only).
        limit: Effective limit that was exceeded (blocked only).
        retry_after_seconds: Seconds until the window rolls over (blocked only).
        log_entry: Entry handed to the log sink (blocked only).
        whitelisted: True when a whitelist exempted the request.
    """

    allowed: bool
    scope: RequestScope | None = None
    period: RateLimitPeriod | None = None
    limit: int | None = None
    retry_after_seconds: int | None = None
    log_entry: ThrottleLogEntry | None = None
    whitelisted: bool = False

    @property
    def blocked(self) -> bool:
        return not self.allowed

    @property
    def quota_description(self) -> str | None:
        """``"<limit> per <period>"`` for blocked decisions."""
        if self.period is None or self.limit is None:
            return None
        return f"{self.limit} per {self.period.value}"

    def message(self, template: str = DEFAULT_QUOTA_EXCEEDED_MESSAGE) -> str:
        """Format a rejection message; ``{limit}`` and ``{period}`` are substituted.

        A template that does not format falls back to the default message.
        """
        if self.period is None or self.limit is None:
            return ""
        try:
            return template.format(limit=self.limit, period=self.period.value)
        except (AttributeError, KeyError, IndexError, ValueError):
            logger.warning("throttle.invalid_message_template", extra={"template": template})
            return DEFAULT_QUOTA_EXCEEDED_MESSAGE.format(limit=self.limit, period=self.period.value)


def compute_retry_after(window_start: float, period: RateLimitPeriod, now: float) -> int:
    """Seconds until the window starting at ``window_start`` rolls over, at least 1."""
    elapsed = int(now - window_start)
    return max(1, period.seconds - elapsed)


def _min_limit(limits: Iterable[int]) -> int:
    """Smallest limit among matching rules; a rule without the period counts as 0."""
    return min(limits, default=0)


class ThrottleService:
    """Decision engine bound to one policy and one counter store.

    Instances are safe to share between threads: the policy is immutable and
    counter transactions are serialized per key by the store.
    """

    def __init__(
        self,
        policy: ThrottlePolicy,
        counter_store: AbstractCounterStore,
        *,
        throttle_logger: AbstractThrottleLogger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._policy = policy
        self._store = counter_store
        self._throttle_logger = throttle_logger
        self._clock = clock

    @property
    def policy(self) -> ThrottlePolicy:
        return self._policy

    @property
    def counter_store(self) -> AbstractCounterStore:
        return self._store

    @property
    def throttle_logger(self) -> AbstractThrottleLogger | None:
        return self._throttle_logger

    def evaluate(
        self,
        descriptor: RequestDescriptor,
        annotation_override: RateLimits | None = None,
        *,
        request_id: str | None = None,
    ) -> ThrottleDecision:
        """Decide whether the described request is admitted.

        Args:
            descriptor: Request attributes resolved by the host framework.
            annotation_override: Route-level limits, applied over the base rates.
            request_id: Correlation id for the log entry; taken from the
                logging context (or generated) when omitted.

        Returns:
            The allow/block decision.

        Raises:
            CounterStoreAppError: If the counter store fails. Counters of
                periods evaluated before the failure stay persisted.
        """

        scope = resolve_scope(descriptor)

        if self.is_whitelisted(scope):
            logger.debug(
                "throttle.whitelisted",
                extra={"client_ip": scope.client_ip, "endpoint": scope.endpoint},
            )
            return ThrottleDecision(allowed=True, scope=scope, whitelisted=True)

        for period, base_limit in self._policy.ordered_periods():
            key = derive_key(scope, self._policy, period)
            counter = self._increment(key, period)

            # An expired window carries no enforcement weight
            if counter.is_expired(period.seconds, self._clock()):
                continue

            limit = self.resolve_limit(scope, period, base_limit, annotation_override)
            if limit > 0 and counter.total_requests > limit:
                return self._block(scope, key, counter, period, limit, request_id)

        return ThrottleDecision(allowed=True, scope=scope)

    def is_whitelisted(self, scope: RequestScope) -> bool:
        """Check the whitelists of every scope field the policy throttles on."""

        policy = self._policy

        if policy.ip_throttling and policy.ip_whitelist:
            matched, _ = any_range_contains(policy.ip_whitelist, scope.client_ip)
            if matched:
                return True

        if policy.client_throttling and scope.client_key in policy.client_whitelist:
            return True

        if policy.endpoint_throttling and any(
            pattern.lower() in scope.endpoint for pattern in policy.endpoint_whitelist
        ):
            return True

        if policy.user_agent_throttling and scope.user_agent is not None:
            user_agent = scope.user_agent.lower()
            if any(pattern.lower() in user_agent for pattern in policy.user_agent_whitelist):
                return True

        return False

    def resolve_limit(
        self,
        scope: RequestScope,
        period: RateLimitPeriod,
        base_limit: int,
        annotation_override: RateLimits | None = None,
    ) -> int:
        """Resolve the effective limit for ``period``.

        Each step replaces the limit only when it yields a positive value. IP
        rules come last and win over everything else. Endpoint and user-agent
        steps take the minimum over every matching rule, so a matching rule
        that leaves the period unset disables that step for the period.
        """

        policy = self._policy
        limit = base_limit

        if annotation_override is not None:
            limit = annotation_override.get_limit(period) or limit

        endpoint_limit = _min_limit(
            rule.get_limit(period)
            for pattern, rule in policy.endpoint_rules.items()
            if pattern.lower() in scope.endpoint
        )
        if endpoint_limit > 0:
            limit = endpoint_limit

        client_rule = policy.client_rules.get(scope.client_key)
        if client_rule is not None:
            limit = client_rule.get_limit(period) or limit

        if scope.user_agent:
            user_agent = scope.user_agent.lower()
            user_agent_limit = _min_limit(
                rule.get_limit(period)
                for pattern, rule in policy.user_agent_rules.items()
                if pattern.lower() in user_agent
            )
            if user_agent_limit > 0:
                limit = user_agent_limit

        if policy.ip_rules:
            matched, spec = any_range_contains(policy.ip_rules.keys(), scope.client_ip)
            if matched and spec is not None:
                limit = policy.ip_rules[spec].get_limit(period) or limit

        return limit

    def _increment(self, key: str, period: RateLimitPeriod) -> ThrottleCounter:
        """Read-increment-write the counter for ``key`` as one transaction."""

        with self._store.lock(key):
            try:
                current = self._store.get(key)
            except CounterStoreAppError:
                raise
            except Exception as exc:
                raise self._store_failure("get", key, exc) from exc

            now = self._clock()
            if current is None or current.is_expired(period.seconds, now):
                counter = ThrottleCounter(window_start=now, total_requests=1)
            else:
                counter = ThrottleCounter(
                    window_start=current.window_start,
                    total_requests=current.total_requests + 1,
                )

            try:
                self._store.save(key, counter, period.seconds)
            except CounterStoreAppError:
                raise
            except Exception as exc:
                raise self._store_failure("save", key, exc) from exc

        return counter

    def _store_failure(self, operation: str, key: str, exc: Exception) -> CounterStoreAppError:
        logger.error(
            "counter_store.failed",
            extra={
                "operation": operation,
                "key_hash": key[:16],
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return CounterStoreAppError(
            code="counter_store_unavailable",
            message=f"Counter store {operation} failed",
            details={"operation": operation, "hint": type(exc).__name__},
        )

    def _block(
        self,
        scope: RequestScope,
        key: str,
        counter: ThrottleCounter,
        period: RateLimitPeriod,
        limit: int,
        request_id: str | None,
    ) -> ThrottleDecision:
        now = self._clock()
        retry_after = compute_retry_after(counter.window_start, period, now)
        entry = ThrottleLogEntry(
            request_id=request_id or get_or_create_request_id(),
            client_ip=scope.client_ip,
            client_key=scope.client_key,
            endpoint=scope.endpoint,
            user_agent=scope.user_agent,
            total_requests=counter.total_requests,
            start_period=datetime.fromtimestamp(counter.window_start, tz=timezone.utc),
            rate_limit=limit,
            rate_limit_period=period.value,
            log_date=datetime.fromtimestamp(now, tz=timezone.utc),
            counter_key=key,
        )

        logger.warning(
            "throttle.blocked",
            extra={
                "request_id": entry.request_id,
                "client_ip": scope.client_ip,
                "client_key": scope.client_key,
                "endpoint": scope.endpoint,
                "user_agent": scope.user_agent,
                "limit": limit,
                "period": period.value,
                "total_requests": counter.total_requests,
                "retry_after_s": retry_after,
                "key_hash": key[:16],
            },
        )

        if self._throttle_logger is not None:
            try:
                self._throttle_logger.log(entry)
            except Exception:
                logger.exception(
                    "throttle.log_sink_failed",
                    extra={"request_id": entry.request_id},
                )

        return ThrottleDecision(
            allowed=False,
            scope=scope,
            period=period,
            limit=limit,
            retry_after_seconds=retry_after,
            log_entry=entry,
        )


def evaluate(
    descriptor: RequestDescriptor,
    policy: ThrottlePolicy,
    counter_store: AbstractCounterStore,
    annotation_override: RateLimits | None = None,
    *,
    throttle_logger: AbstractThrottleLogger | None = None,
    request_id: str | None = None,
    clock: Callable[[], float] = time.time,
) -> ThrottleDecision:
    """Evaluate one request without keeping a ThrottleService around.

    Convenience wrapper for callers that hold the policy and store
    themselves; see ThrottleService.evaluate.
    """

    service = ThrottleService(policy, counter_store, throttle_logger=throttle_logger, clock=clock)
    return service.evaluate(descriptor, annotation_override, request_id=request_id)
