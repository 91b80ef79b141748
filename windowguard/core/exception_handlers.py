"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceeded → 429 with Retry-After and X-RateLimit-* headers
- AppError subclasses → appropriate HTTP status (400, 403, 503)
- Unexpected Exception → generic 500 (safety net)
- All AppError responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from windowguard.core.errors import (
    AppError,
    AuthenticationAppError,
    RateLimitExceeded,
    StoreUnavailable,
)
from windowguard.core.logging import get_request_id
from windowguard.core.rate_limit import build_rate_limited_response

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render a denied request as ``429 Too Many Requests``.

    Body: ``{"error", "message", "retryAfter"}``; headers carry
    ``Retry-After`` and ``X-RateLimit-Limit/Remaining/Reset``.
    """
    decision = exc.decision
    logger.info(
        "rate_limit.rejected",
        extra={
            "policy": decision.policy,
            "retry_after_s": decision.retry_after_seconds,
            "degraded": decision.degraded,
            "request_path": request.url.path,
        },
    )
    return build_rate_limited_response(decision)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError / UnknownPolicy / InvalidIdentity → 400 Bad Request
    - AuthenticationAppError → 403 Forbidden
    - StoreUnavailable → 503 Service Unavailable (diagnostics endpoints only;
      the rate limit dependency never lets it escape)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, StoreUnavailable):
        status_code = 503

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Include details only if present (optional structured context)
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message,
    so no stack traces or internal messages reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
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

    Example:
        >>> from fastapi import FastAPI
        >>> from windowguard.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(RateLimitExceeded)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
