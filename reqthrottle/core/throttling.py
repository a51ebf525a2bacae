"""Throttling dependency for FastAPI routes.

This module wires the throttle engine into the HTTP layer.

Design goals:
- Minimal coupling: the engine only sees a RequestDescriptor; everything
  FastAPI-specific (client address, route identity, responses) lives here.
- Explicit route configuration: per-router and per-route enable/disable and
  limit overrides come from a ThrottleRegistry passed in at startup.
- Swap-friendly: the counter store, log sink and rejection renderer are all
  injected through the ThrottleContext stored on ``app.state.throttle``.

Usage:
    app = FastAPI(dependencies=[Depends(enforce_throttling)])
    configure_throttling(app, build_default_context())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from reqthrottle.adapters.counter_store.in_memory import InMemoryCounterStore
from reqthrottle.adapters.throttle_log.memory import MemoryThrottleLogger
from reqthrottle.core.auth import is_request_authenticated
from reqthrottle.core.config import DEFAULT_QUOTA_EXCEEDED_MESSAGE, ThrottleSettings, settings
from reqthrottle.core.errors import CounterStoreAppError, ThrottledAppError
from reqthrottle.core.logging import get_request_id
from reqthrottle.schemas.policy import EndpointThrottlingType, RateLimits, ThrottlePolicy, load_policy
from reqthrottle.services.scope import RequestDescriptor
from reqthrottle.services.throttle_service import DEFAULT_STATUS_CODE, ThrottleDecision, ThrottleService
from reqthrottle.utils.ip_address import ForwardedIpStrategy, resolve_client_ip

logger = logging.getLogger(__name__)

DEFAULT_CONTROLLER = "default"


@dataclass(frozen=True)
class RouteThrottleConfig:
    """Throttling switch and limit override for a router or a single route.

    Attributes:
        enabled: Explicitly enable throttling at this level.
        disabled: Explicitly disable throttling at this level; wins over
            ``enabled`` on the same level.
        limits: Limits applied over the policy's base rates.
    """

    enabled: bool = False
    disabled: bool = False
    limits: RateLimits | None = None

    @classmethod
    def enable(
        cls,
        *,
        per_second: int | None = None,
        per_minute: int | None = None,
        per_hour: int | None = None,
        per_day: int | None = None,
        per_week: int | None = None,
    ) -> "RouteThrottleConfig":
        limits = RateLimits(
            per_second=per_second,
            per_minute=per_minute,
            per_hour=per_hour,
            per_day=per_day,
            per_week=per_week,
        )
        return cls(enabled=True, limits=limits)

    @classmethod
    def disable(cls) -> "RouteThrottleConfig":
        return cls(disabled=True)


@dataclass
class ThrottleRegistry:
    """Route-level throttling configuration.

    ``controllers`` is keyed by the router tag (the first tag of a route) and
    ``actions`` by the route name (the endpoint function name by default).

    Routes without any configuration are throttled (``apply_by_default=True``),
    so the base policy covers every route unless a router or route opts out.
    Set ``apply_by_default=False`` for opt-in mode, where only routes whose
    controller or action is explicitly enabled are throttled.
    """

    controllers: dict[str, RouteThrottleConfig] = field(default_factory=dict)
    actions: dict[str, RouteThrottleConfig] = field(default_factory=dict)
    apply_by_default: bool = True

    def resolve(self, controller: str, action: str) -> tuple[bool, RateLimits | None]:
        """Decide whether a route is throttled and which override applies.

        Precedence: controller enable, controller disable, action enable,
        action disable. An action-level enable replaces the controller's
        limits.
        """

        apply = self.apply_by_default
        limits: RateLimits | None = None

        controller_cfg = self.controllers.get(controller)
        if controller_cfg is not None:
            if controller_cfg.enabled:
                apply = True
                limits = controller_cfg.limits
            if controller_cfg.disabled:
                apply = False

        action_cfg = self.actions.get(action)
        if action_cfg is not None:
            if action_cfg.enabled:
                apply = True
                limits = action_cfg.limits
            if action_cfg.disabled:
                apply = False

        return apply, limits


class RejectionRenderer(Protocol):
    """Builds the HTTP response for a blocked request."""

    def render_rejection(self, decision: ThrottleDecision) -> Response:
        ...


@dataclass(frozen=True)
class JsonRejectionRenderer:
    """Render rejections in the application's JSON error format."""

    status_code: int = DEFAULT_STATUS_CODE
    message_template: str = DEFAULT_QUOTA_EXCEEDED_MESSAGE
    include_headers: bool = True

    def render_rejection(self, decision: ThrottleDecision) -> Response:
        retry_after = decision.retry_after_seconds or 1
        headers = {"Retry-After": str(retry_after)}
        if self.include_headers and decision.period is not None:
            headers["X-RateLimit-Limit"] = str(decision.limit)
            headers["X-RateLimit-Period"] = decision.period.value

        return JSONResponse(
            status_code=self.status_code,
            content={
                "error": {
                    "code": "rate_limit_exceeded",
                    "message": decision.message(self.message_template),
                    "request_id": get_request_id(),
                    "details": {
                        "limit": decision.limit,
                        "period": decision.period.value if decision.period else None,
                        "retry_after": retry_after,
                    },
                }
            },
            headers=headers,
        )


@dataclass
class ThrottleContext:
    """Everything the throttling dependency needs, stored on app.state."""

    service: ThrottleService
    registry: ThrottleRegistry = field(default_factory=ThrottleRegistry)
    renderer: RejectionRenderer = field(default_factory=JsonRejectionRenderer)
    enabled: bool = True
    forwarded_ip_strategy: ForwardedIpStrategy = "none"
    fail_open: bool = False

    @property
    def policy(self) -> ThrottlePolicy:
        return self.service.policy


def build_policy(throttle_settings: ThrottleSettings | None = None) -> ThrottlePolicy:
    """Build the policy from the configured JSON file or per-period settings.

    Raises:
        ValidationAppError: If the policy file is unreadable or invalid.
    """

    cfg = throttle_settings or settings.throttle
    if cfg.policy_file:
        return load_policy(cfg.policy_file)

    return ThrottlePolicy.from_limits(
        per_second=cfg.per_second,
        per_minute=cfg.per_minute,
        per_hour=cfg.per_hour,
        per_day=cfg.per_day,
        per_week=cfg.per_week,
        ip_throttling=cfg.ip_throttling,
        client_throttling=cfg.client_throttling,
        endpoint_throttling=cfg.endpoint_throttling,
        user_agent_throttling=cfg.user_agent_throttling,
        stack_blocked_requests=cfg.stack_blocked_requests,
    )


def build_default_context(
    throttle_settings: ThrottleSettings | None = None,
    *,
    registry: ThrottleRegistry | None = None,
    policy: ThrottlePolicy | None = None,
) -> ThrottleContext:
    """Assemble a ThrottleContext from settings.

    Uses the in-memory counter store and the in-memory log sink.
    """

    cfg = throttle_settings or settings.throttle
    service = ThrottleService(
        policy or build_policy(cfg),
        InMemoryCounterStore(max_entries=cfg.store_max_entries, lock_stripes=cfg.store_lock_stripes),
        throttle_logger=MemoryThrottleLogger(max_entries=cfg.log_sink_max_entries),
    )
    return ThrottleContext(
        service=service,
        registry=registry or ThrottleRegistry(),
        renderer=JsonRejectionRenderer(
            status_code=cfg.status_code,
            message_template=cfg.quota_exceeded_message,
            include_headers=cfg.include_headers,
        ),
        enabled=cfg.enabled,
        forwarded_ip_strategy=cfg.forwarded_ip_strategy,
        fail_open=cfg.fail_open,
    )


def configure_throttling(app: FastAPI, context: ThrottleContext) -> None:
    """Attach the throttle context to the application."""

    app.state.throttle = context
    logger.info(
        "throttle.configured",
        extra={
            "enabled": context.enabled,
            "periods": [period.value for period in context.policy.rates],
            "endpoint_type": context.policy.endpoint_type.value,
            "stack_blocked_requests": context.policy.stack_blocked_requests,
        },
    )


def get_throttle_context(request: Request) -> ThrottleContext | None:
    return getattr(request.app.state, "throttle", None)


def route_identity(request: Request) -> tuple[str, str]:
    """Return (controller, action) for the matched route.

    The controller is the route's first tag and the action its name. Requests
    without a matched API route fall back to the path.
    """

    route = request.scope.get("route")
    if route is None:
        return DEFAULT_CONTROLLER, request.url.path

    tags = getattr(route, "tags", None) or []
    controller = str(tags[0]) if tags else DEFAULT_CONTROLLER
    action = getattr(route, "name", None) or request.url.path
    return controller, action


def render_endpoint(request: Request, endpoint_type: EndpointThrottlingType) -> str:
    """Render the endpoint string used for scoping and endpoint rules."""

    if endpoint_type is EndpointThrottlingType.PATH_AND_QUERY:
        query = request.url.query
        return f"{request.url.path}?{query}" if query else request.url.path

    if endpoint_type is EndpointThrottlingType.CONTROLLER_AND_ACTION:
        controller, action = route_identity(request)
        return f"{controller}/{action}"

    if endpoint_type is EndpointThrottlingType.CONTROLLER:
        controller, _ = route_identity(request)
        return controller

    return request.url.path


def build_request_descriptor(request: Request, context: ThrottleContext) -> RequestDescriptor:
    """Extract the throttling attributes of a live request."""

    remote_addr = request.client.host if request.client else "unknown"
    client_ip = resolve_client_ip(
        remote_addr,
        request.headers.get("X-Forwarded-For"),
        context.forwarded_ip_strategy,
    )
    return RequestDescriptor(
        client_ip=client_ip or remote_addr,
        is_authenticated=is_request_authenticated(request),
        endpoint=render_endpoint(request, context.policy.endpoint_type),
        user_agent=request.headers.get("User-Agent"),
    )


def enforce_throttling(request: Request) -> None:
    """FastAPI dependency enforcing the throttle policy.

    Declared sync so FastAPI runs it in the threadpool; counter stores backed
    by network services may block.

    Raises:
        ThrottledAppError: When the request exceeds a limit (rendered by the
            registered exception handler, 429 by default).
        CounterStoreAppError: When the counter store fails and fail-open is
            disabled (503).
    """

    context = get_throttle_context(request)
    if context is None or not context.enabled:
        return

    controller, action = route_identity(request)
    apply, route_limits = context.registry.resolve(controller, action)
    if not apply:
        return

    descriptor = build_request_descriptor(request, context)
    request_id = getattr(request.state, "request_id", None) or get_request_id()

    try:
        decision = context.service.evaluate(descriptor, route_limits, request_id=request_id)
    except CounterStoreAppError as exc:
        if not context.fail_open:
            raise
        logger.warning(
            "throttle.fail_open",
            extra={"error_code": exc.code, "controller": controller, "action": action},
        )
        return

    request.state.throttle_decision = decision
    if decision.blocked:
        raise ThrottledAppError(decision, decision.message())
