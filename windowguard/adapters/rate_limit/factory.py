"""Factory for creating the configured window store."""

from windowguard.adapters.rate_limit.base import AbstractWindowStore
from windowguard.adapters.rate_limit.in_memory import InMemoryWindowStore
from windowguard.adapters.rate_limit.redis_store import RedisWindowStore
from windowguard.core.config import RateLimitSettings
from windowguard.core.errors import ValidationAppError


def create_window_store(rate_limit_settings: RateLimitSettings) -> AbstractWindowStore:
    """Instantiate the window store selected by ``RATE_LIMIT_BACKEND``.

    The store is returned idle: the caller owns its lifecycle, starting the
    in-memory eviction thread with ``start()`` and calling
    ``close()`` on shutdown.

    Args:
        rate_limit_settings: Rate limiter configuration.

    Returns:
        AbstractWindowStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    backend = rate_limit_settings.backend.lower()

    if backend == "memory":
        return InMemoryWindowStore(
            eviction_interval_seconds=rate_limit_settings.eviction_interval_seconds,
        )

    if backend == "redis":
        return RedisWindowStore(
            redis_url=rate_limit_settings.redis_url,
            timeout_ms=rate_limit_settings.redis_timeout_ms,
            key_prefix=rate_limit_settings.redis_key_prefix,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: memory, redis",
    )
