from __future__ import annotations

from reqthrottle.api.routes.blog import router as blog_router
from reqthrottle.api.routes.health import router as health_router
from reqthrottle.api.routes.throttle import router as throttle_router

__all__ = ["blog_router", "health_router", "throttle_router"]
