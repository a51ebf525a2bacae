"""Application factory for the demo FastAPI app.

Centralizes app construction (middleware, handlers, routers, throttling) so
tests can build isolated apps with their own policy and counter store.
"""

from __future__ import annotations

from fastapi import Depends, FastAPI

from reqthrottle.api.routes import blog_router, health_router, throttle_router
from reqthrottle.core.config import settings
from reqthrottle.core.exception_handlers import setup_exception_handlers
from reqthrottle.core.logging import configure_logging
from reqthrottle.core.middleware import request_id_middleware
from reqthrottle.core.throttling import (
    RouteThrottleConfig,
    ThrottleContext,
    ThrottleRegistry,
    build_default_context,
    configure_throttling,
    enforce_throttling,
)


def build_demo_registry() -> ThrottleRegistry:
    """Route configuration of the demo app.

    Health probes and the Blog router are exempt, except ``blog_search``
    which re-enables throttling with tighter limits.
    """

    return ThrottleRegistry(
        controllers={
            "Health": RouteThrottleConfig.disable(),
            "Blog": RouteThrottleConfig.disable(),
        },
        actions={
            "blog_search": RouteThrottleConfig.enable(per_second=2, per_minute=5),
        },
    )


def create_app(context: ThrottleContext | None = None, *, configure_logs: bool = True) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        context: Throttle context to install; built from settings when omitted.
        configure_logs: Whether to (re)configure the root logger.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and throttling.
    """
    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(settings.log)

    app = FastAPI(
        title="reqthrottle demo",
        description=(
            "Demo API for the reqthrottle request-admission engine. Requests "
            "are throttled per client IP and endpoint; rejected requests get "
            "HTTP 429 with a Retry-After header."
        ),
        version="0.1.0",
        dependencies=[Depends(enforce_throttling)],
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(blog_router)
    app.include_router(throttle_router)

    configure_throttling(app, context or build_default_context(registry=build_demo_registry()))

    return app
