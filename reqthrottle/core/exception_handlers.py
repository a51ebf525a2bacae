"""Global exception handlers for consistent error responses.

Design:
- ThrottledAppError → response built by the configured RejectionRenderer
  (429 JSON by default)
- CounterStoreAppError → 503 (throttling state unavailable, fail-closed)
- Other AppError subclasses → 400
- Unexpected Exception → generic 500 (safety net)
- All JSON bodies include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from reqthrottle.core.errors import AppError, CounterStoreAppError, ThrottledAppError
from reqthrottle.core.logging import get_request_id
from reqthrottle.core.throttling import JsonRejectionRenderer, get_throttle_context

logger = logging.getLogger(__name__)

_fallback_renderer = JsonRejectionRenderer()


async def throttled_error_handler(request: Request, exc: ThrottledAppError) -> Response:
    """Delegate the rejection response to the application's renderer.

    Args:
        request: FastAPI request object.
        exc: Error carrying the block decision.

    Returns:
        Whatever the configured renderer builds for the decision.
    """
    context = get_throttle_context(request)
    renderer = context.renderer if context is not None else _fallback_renderer
    return renderer.render_rejection(exc.decision)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - CounterStoreAppError → 503 Service Unavailable
    - anything else → 400 Bad Request

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 503 if isinstance(exc, CounterStoreAppError) else 400

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message
    (no stack traces to client).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Starlette picks the handler of the closest class in the MRO, so the
    throttling handler wins over the generic AppError one.
    """
    app.exception_handler(ThrottledAppError)(throttled_error_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
