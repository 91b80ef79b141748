"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the rate limiter's lifecycle: the limiter and its settings are built
here and placed on ``app.state`` for dependencies to find, and the store is
started and closed by the lifespan.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from windowguard.adapters.rate_limit.factory import create_window_store
from windowguard.api.routes import health_router, rate_limits_router
from windowguard.core.config import Settings, settings as default_settings
from windowguard.core.exception_handlers import setup_exception_handlers
from windowguard.core.logging import configure_logging
from windowguard.core.middleware import request_id_middleware
from windowguard.core.openapi import apply_openapi_customizations
from windowguard.services.limiter import RateLimiter
from windowguard.services.policies import PolicyRegistry

logger = logging.getLogger(__name__)


def build_rate_limiter(app_settings: Settings) -> RateLimiter:
    """Build the limiter from settings: store backend plus policy registry."""
    registry = PolicyRegistry.default().with_overrides(app_settings.rate_limit.policy_overrides)
    store = create_window_store(app_settings.rate_limit)
    return RateLimiter(store, registry)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    limiter: RateLimiter = app.state.rate_limiter
    limiter.store.start()
    logger.info(
        "rate_limit.started",
        extra={
            "backend": limiter.store.backend_name,
            "policies": limiter.registry.names(),
        },
    )
    try:
        yield
    finally:
        limiter.shutdown()
        logger.info("rate_limit.stopped", extra={"backend": limiter.store.backend_name})


def create_app(
    app_settings: Settings | None = None,
    *,
    limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the process-wide settings.
        limiter: Pre-built limiter (tests inject one with a fake clock).

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="windowguard",
        description=(
            "Fixed-window request rate limiting for the messaging platform's "
            "HTTP handlers: named policies, in-memory or Redis window stores, "
            "standard 429 responses and diagnostics endpoints."
        ),
        version="0.1.0",
        lifespan=_lifespan,
    )
    app.state.rate_limiter = limiter or build_rate_limiter(cfg)
    app.state.rate_limit_settings = cfg.rate_limit

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
