"""Redis-backed fixed-window store for multi-instance deployments.

Every observation is a single round trip running a Lua script, so the
increment and the window (TTL) bookkeeping are atomic across processes.
Window expiry is delegated to Redis key TTLs; ``evict`` has nothing to do.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import redis

from windowguard.adapters.rate_limit.base import AbstractWindowStore, WindowState
from windowguard.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


# INCR creates the key at 1 when it is missing or already expired.
# A key without TTL (e.g. written by hand) gets one so it can never live forever.
OBSERVE_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisWindowStore(AbstractWindowStore):
    """Window store using an atomic Redis counter per key.

    Important:
        All Redis failures (connection refused, socket timeout, script errors)
        surface as ``StoreUnavailable`` so the limiter can apply the policy's
        fail-open / fail-closed fallback.
    """

    backend_name = "redis"

    def __init__(
        self,
        *,
        client: Any | None = None,
        redis_url: str = "redis://localhost:6379/0",
        timeout_ms: int = 100,
        key_prefix: str = "rl",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the Redis store.

        Args:
            client: Pre-built ``redis.Redis`` client (tests inject a mock).
            redis_url: Connection URL used when no client is given.
            timeout_ms: Connect and read timeout for each command.
            key_prefix: Namespace prepended to every key.
            clock: Time source function returning UNIX time in seconds.
        """
        if timeout_ms < 1:
            raise ValueError("timeout_ms must be >= 1")

        timeout_s = timeout_ms / 1000
        self._client = client or redis.Redis.from_url(
            redis_url,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
        )
        self._timeout_ms = timeout_ms
        self._key_prefix = key_prefix
        self._clock = clock
        self._observe_script = self._client.register_script(OBSERVE_SCRIPT)

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}" if self._key_prefix else key

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _unavailable(self, operation: str, exc: Exception) -> StoreUnavailable:
        logger.warning(
            "rate_limit.redis_error",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "timeout_ms": self._timeout_ms,
            },
        )
        return StoreUnavailable(
            code="rate_limit_store_unavailable",
            message=f"Redis {operation} failed: {type(exc).__name__}",
            details={"backend": self.backend_name},
        )

    def observe(self, key: str, window_ms: int) -> WindowState:
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        now_ms = self._now_ms()
        try:
            count, ttl_ms = self._observe_script(
                keys=[self._redis_key(key)],
                args=[window_ms],
            )
        except redis.RedisError as exc:
            raise self._unavailable("observe", exc) from exc

        return WindowState(count=int(count), reset_at_ms=now_ms + int(ttl_ms))

    def peek(self, key: str) -> WindowState | None:
        redis_key = self._redis_key(key)
        now_ms = self._now_ms()
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.get(redis_key)
            pipe.pttl(redis_key)
            raw_count, ttl_ms = pipe.execute()
        except redis.RedisError as exc:
            raise self._unavailable("peek", exc) from exc

        # PTTL is -2 for a missing key and -1 for a key without expiry.
        if raw_count is None or ttl_ms is None or int(ttl_ms) < 1:
            return None
        return WindowState(count=int(raw_count), reset_at_ms=now_ms + int(ttl_ms))

    def evict(self, now_ms: int | None = None) -> int:
        return 0

    def reset(self, key: str) -> bool:
        try:
            return bool(self._client.delete(self._redis_key(key)))
        except redis.RedisError as exc:
            raise self._unavailable("reset", exc) from exc

    def ping(self) -> bool:
        """Return True when Redis answers within the timeout."""
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as exc:
            logger.warning("rate_limit.redis_close_failed", extra={"error_type": type(exc).__name__})
