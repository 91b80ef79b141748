"""Rate limiting dependency for FastAPI routes.

This module wires the limiter core into the HTTP layer.

Design goals:
- Minimal coupling: routes declare ``Depends(rate_limit("login"))`` only.
- No module-level limiter: the instance and the settings it was built from
  live on ``app.state``, so every app owns its own configuration.
- Limiter failures never become 5xx: they degrade to an allow/deny decision.

Identity strategy:
- Client address from the socket peer. Behind a trusted proxy
  (``trust_forwarded_headers``) the first ``X-Forwarded-For`` hop, then
  ``X-Real-IP``, take precedence.
- Suffixed with ``auth`` when an Authorization header is present, else ``anon``.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from windowguard.core.config import RateLimitSettings, settings
from windowguard.core.errors import InvalidIdentity, RateLimitExceeded, UnknownPolicy
from windowguard.services.limiter import Decision, RateLimiter

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter owned by the running application.

    Raises:
        RuntimeError: If the application was built without a limiter.
    """
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise RuntimeError("rate limiter is not configured on app.state")
    return limiter


def get_rate_limit_settings(request: Request) -> RateLimitSettings:
    """Rate limit settings of the application serving ``request``.

    Falls back to the process-wide settings for apps that were not built
    by ``create_app``.
    """
    app = request.scope.get("app")
    configured = getattr(getattr(app, "state", None), "rate_limit_settings", None)
    if configured is None:
        return settings.rate_limit
    return configured


def get_client_address(request: Request, *, trust_forwarded: bool | None = None) -> str:
    """Best-effort client network address for the current request."""
    if trust_forwarded is None:
        trust_forwarded = get_rate_limit_settings(request).trust_forwarded_headers

    if trust_forwarded:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def derive_identity(request: Request, *, trust_forwarded: bool | None = None) -> str:
    """Build the caller identity: ``"<address>:<auth|anon>"``."""
    address = get_client_address(request, trust_forwarded=trust_forwarded)
    auth_state = "auth" if request.headers.get("authorization") else "anon"
    return f"{address}:{auth_state}"


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """X-RateLimit-* headers describing ``decision``."""
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining if decision.allowed else 0),
        "X-RateLimit-Reset": str(decision.reset_at_ms),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds or 0)
    return headers


def build_rate_limited_response(decision: Decision) -> JSONResponse:
    """Standard 429 response for a denied request."""
    retry_after = decision.retry_after_seconds or 0
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "message": f"Rate limit exceeded. Please try again in {retry_after} seconds.",
            "retryAfter": retry_after,
        },
        headers=rate_limit_headers(decision),
    )


def evaluate_request(limiter: RateLimiter, request: Request, policy_name: str) -> Decision:
    """Run the limiter for ``request``, closing on programming errors.

    ``UnknownPolicy`` and ``InvalidIdentity`` are logged and turned into a
    denied decision; the request is never let through unscoped.
    """
    identity = derive_identity(request)
    try:
        return limiter.check(identity, policy_name)
    except (UnknownPolicy, InvalidIdentity) as exc:
        logger.error(
            "rate_limit.misconfigured",
            extra={
                "policy": policy_name,
                "error_code": exc.code,
                "error_message": exc.message,
                "request_path": request.url.path,
            },
        )
        return limiter.deny(policy_name)


def rate_limit(policy_name: str) -> Callable[[Request, Response], Awaitable[Decision | None]]:
    """Create a FastAPI dependency enforcing ``policy_name``.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit("login"))])
        async def login(): ...

    Args:
        policy_name: Registered policy to evaluate.

    Returns:
        Dependency callable that raises ``RateLimitExceeded`` on denial and
        otherwise returns the Decision (None when limiting is disabled).
    """

    async def enforce_rate_limit(request: Request, response: Response) -> Decision | None:
        config = get_rate_limit_settings(request)
        if not config.enabled:
            return None

        limiter = get_rate_limiter(request)
        # Remote stores block for up to their timeout; keep that off the event loop.
        decision = await run_in_threadpool(evaluate_request, limiter, request, policy_name)

        if not decision.allowed:
            raise RateLimitExceeded(decision)

        if config.include_headers:
            response.headers.update(rate_limit_headers(decision))
        return decision

    enforce_rate_limit.__name__ = f"enforce_rate_limit_{policy_name}"
    return enforce_rate_limit
