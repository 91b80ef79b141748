"""Rate limiter core: turns a policy and a store observation into a decision.

The limiter increments first and checks afterwards. The store's single
atomic ``observe`` therefore covers both steps, and concurrent requests cannot
both slip through a check/increment gap. Denied requests still count, so a
caller cannot rebuild its budget by retrying in a tight loop.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from windowguard.adapters.rate_limit.base import AbstractWindowStore, WindowState
from windowguard.core.errors import InvalidIdentity, StoreUnavailable
from windowguard.services.policies import FailureMode, Policy, PolicyRegistry

logger = logging.getLogger(__name__)

MAX_IDENTITY_LENGTH = 512


@dataclass(frozen=True)
class Decision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Policy ``max_requests``.
        remaining: Requests still permitted in the current window (0 when denied).
        reset_at_ms: UNIX epoch milliseconds when the current window ends.
        retry_after_seconds: Seconds until ``reset_at_ms`` rounded up; only set when denied.
        policy: Name of the policy that produced the decision.
        degraded: True when the store was unavailable and the policy's
            failure mode decided instead of the counter.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None
    policy: str = ""
    degraded: bool = False


def build_rate_limit_key(key_prefix: str, identity: str) -> str:
    """Compose the store key for one caller under one policy.

    Schema: ``"<key_prefix>:<identity>"``. Two callers that share an identity
    (e.g. the same egress IP) share a window; that is accepted for coarse
    identities. Prefixes keep policies from sharing windows.
    """
    return f"{key_prefix}:{identity}"


def validate_identity(identity: str) -> str:
    """Return ``identity`` unchanged if it can scope a window.

    Raises:
        InvalidIdentity: If it is empty, too long, or contains control characters.
    """
    if not isinstance(identity, str) or not identity.strip():
        raise InvalidIdentity(
            code="rate_limit_invalid_identity",
            message="Rate limit identity must be a non-empty string",
        )
    if len(identity) > MAX_IDENTITY_LENGTH:
        raise InvalidIdentity(
            code="rate_limit_invalid_identity",
            message=f"Rate limit identity exceeds {MAX_IDENTITY_LENGTH} characters",
        )
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in identity):
        raise InvalidIdentity(
            code="rate_limit_invalid_identity",
            message="Rate limit identity contains control characters",
        )
    return identity


def hash_identity(identity: str) -> str:
    """Hash an identity for logging without exposing client addresses."""
    return hashlib.sha256(identity.encode()).hexdigest()[:16]


def retry_after_seconds(reset_at_ms: int, now_ms: int) -> int:
    return max(0, math.ceil((reset_at_ms - now_ms) / 1000))


class RateLimiter:
    """Evaluates requests against named policies.

    The limiter holds no counter state of its own; it is safe to share one
    instance across threads as long as the store is.
    """

    def __init__(
        self,
        store: AbstractWindowStore,
        registry: PolicyRegistry | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._registry = registry if registry is not None else PolicyRegistry.default()
        self._clock = clock

    @property
    def store(self) -> AbstractWindowStore:
        return self._store

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def resolve(self, policy: Policy | str) -> Policy:
        if isinstance(policy, Policy):
            return policy
        return self._registry.get_policy(policy)

    def check(self, identity: str, policy: Policy | str) -> Decision:
        """Register one request for ``identity`` and decide allow/deny.

        Args:
            identity: Caller identity (e.g. ``"203.0.113.4:anon"``).
            policy: Policy instance or registered policy name.

        Returns:
            Decision for this request.

        Raises:
            UnknownPolicy: If ``policy`` is a name not in the registry.
            InvalidIdentity: If ``identity`` cannot scope a window.
        """
        resolved = self.resolve(policy)
        validate_identity(identity)
        key = build_rate_limit_key(resolved.key_prefix, identity)

        try:
            state = self._store.observe(key, resolved.window_ms)
        except StoreUnavailable as exc:
            return self._fallback(resolved, identity, exc)

        return self._decide(resolved, state, identity)

    def _decide(self, policy: Policy, state: WindowState, identity: str) -> Decision:
        now_ms = self._now_ms()

        if state.count > policy.max_requests:
            retry_after = retry_after_seconds(state.reset_at_ms, now_ms)
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "policy": policy.name,
                    "identity_hash": hash_identity(identity),
                    "limit": policy.max_requests,
                    "count": state.count,
                    "retry_after_s": retry_after,
                },
            )
            return Decision(
                allowed=False,
                limit=policy.max_requests,
                remaining=0,
                reset_at_ms=state.reset_at_ms,
                retry_after_seconds=retry_after,
                policy=policy.name,
            )

        remaining = policy.max_requests - state.count
        logger.debug(
            "rate_limit.allowed",
            extra={
                "policy": policy.name,
                "identity_hash": hash_identity(identity),
                "limit": policy.max_requests,
                "remaining": remaining,
            },
        )
        return Decision(
            allowed=True,
            limit=policy.max_requests,
            remaining=remaining,
            reset_at_ms=state.reset_at_ms,
            policy=policy.name,
        )

    def _fallback(self, policy: Policy, identity: str, exc: StoreUnavailable) -> Decision:
        now_ms = self._now_ms()
        reset_at_ms = now_ms + policy.window_ms
        fail_open = policy.failure_mode is FailureMode.OPEN

        logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "policy": policy.name,
                "identity_hash": hash_identity(identity),
                "failure_mode": policy.failure_mode.value,
                "backend": self._store.backend_name,
                "error_code": exc.code,
            },
        )

        if fail_open:
            return Decision(
                allowed=True,
                limit=policy.max_requests,
                remaining=policy.max_requests,
                reset_at_ms=reset_at_ms,
                policy=policy.name,
                degraded=True,
            )
        return Decision(
            allowed=False,
            limit=policy.max_requests,
            remaining=0,
            reset_at_ms=reset_at_ms,
            retry_after_seconds=retry_after_seconds(reset_at_ms, now_ms),
            policy=policy.name,
            degraded=True,
        )

    def deny(self, policy_name: str, *, retry_after: int = 60) -> Decision:
        """Build a closed decision for requests the limiter could not evaluate.

        Used when a caller asked for an unknown policy or supplied an unusable
        identity: such requests are rejected, never passed through.
        """
        now_ms = self._now_ms()
        return Decision(
            allowed=False,
            limit=0,
            remaining=0,
            reset_at_ms=now_ms + retry_after * 1000,
            retry_after_seconds=retry_after,
            policy=policy_name,
            degraded=True,
        )

    def status(self, identity: str, policy: Policy | str) -> WindowState | None:
        """Return the live window for ``identity`` without counting a request."""
        resolved = self.resolve(policy)
        validate_identity(identity)
        return self._store.peek(build_rate_limit_key(resolved.key_prefix, identity))

    def reset(self, identity: str, policy: Policy | str) -> bool:
        """Forget the current window for ``identity`` under ``policy``."""
        resolved = self.resolve(policy)
        validate_identity(identity)
        removed = self._store.reset(build_rate_limit_key(resolved.key_prefix, identity))
        logger.info(
            "rate_limit.reset",
            extra={
                "policy": resolved.name,
                "identity_hash": hash_identity(identity),
                "removed": removed,
            },
        )
        return removed

    def shutdown(self) -> None:
        self._store.close()
