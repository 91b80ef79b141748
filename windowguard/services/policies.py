"""Named rate limit policies.

The registry is built once at process start and never mutated afterwards.
Callers look policies up by name; an unknown name is a programming error and
raises ``UnknownPolicy`` instead of silently allowing the request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from windowguard.core.errors import UnknownPolicy, ValidationAppError

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


class FailureMode(str, Enum):
    """What to decide when the window store is unavailable."""

    OPEN = "open"
    CLOSED = "closed"


def default_failure_mode(key_prefix: str) -> FailureMode:
    """Authentication policies fail closed, everything else fails open."""
    if key_prefix == "auth" or key_prefix.startswith("auth:"):
        return FailureMode.CLOSED
    return FailureMode.OPEN


@dataclass(frozen=True)
class Policy:
    """Immutable rate limit configuration for one endpoint class.

    Attributes:
        name: Registry name (e.g. ``login``).
        window_ms: Window duration in milliseconds.
        max_requests: Requests allowed within one window.
        key_prefix: Namespace for keys counted under this policy.
        failure_mode: Fallback when the store is unavailable; derived from
            the prefix when omitted.
    """

    name: str
    window_ms: int
    max_requests: int
    key_prefix: str
    failure_mode: FailureMode = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("policy name must be non-empty")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if not self.key_prefix:
            raise ValueError("key_prefix must be non-empty")
        if self.failure_mode is None:
            object.__setattr__(self, "failure_mode", default_failure_mode(self.key_prefix))
        else:
            object.__setattr__(self, "failure_mode", FailureMode(self.failure_mode))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "window_ms": self.window_ms,
            "max_requests": self.max_requests,
            "key_prefix": self.key_prefix,
            "failure_mode": self.failure_mode.value,
        }


DEFAULT_POLICIES: tuple[Policy, ...] = (
    # Auth endpoints - strict limits
    Policy("login", window_ms=15 * MINUTE_MS, max_requests=5, key_prefix="auth:login"),
    Policy("signup", window_ms=HOUR_MS, max_requests=3, key_prefix="auth:signup"),
    Policy("otp", window_ms=MINUTE_MS, max_requests=3, key_prefix="auth:otp"),
    Policy("password_reset", window_ms=HOUR_MS, max_requests=3, key_prefix="auth:reset"),
    Policy("auth", window_ms=15 * MINUTE_MS, max_requests=10, key_prefix="auth"),
    # API endpoints - standard limits
    Policy("api", window_ms=MINUTE_MS, max_requests=60, key_prefix="api"),
    Policy("broadcast", window_ms=HOUR_MS, max_requests=10, key_prefix="broadcast"),
    # Webhooks - high limits
    Policy("webhook", window_ms=MINUTE_MS, max_requests=1000, key_prefix="webhook"),
    # Public endpoints
    Policy("public_form", window_ms=MINUTE_MS, max_requests=30, key_prefix="form"),
    Policy("public_store", window_ms=MINUTE_MS, max_requests=100, key_prefix="store"),
    Policy("public", window_ms=MINUTE_MS, max_requests=30, key_prefix="public"),
)

_OVERRIDABLE_FIELDS = {"window_ms", "max_requests", "key_prefix", "failure_mode"}


class PolicyRegistry(Mapping[str, Policy]):
    """Read-only name -> Policy table."""

    def __init__(self, policies: Iterator[Policy] | tuple[Policy, ...] | list[Policy]) -> None:
        table: dict[str, Policy] = {}
        for policy in policies:
            if policy.name in table:
                raise ValueError(f"duplicate policy name: {policy.name!r}")
            table[policy.name] = policy
        self._policies: Mapping[str, Policy] = MappingProxyType(table)

    def __getitem__(self, name: str) -> Policy:
        return self._policies[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"PolicyRegistry({sorted(self._policies)})"

    def get_policy(self, name: str) -> Policy:
        """Look a policy up by name.

        Raises:
            UnknownPolicy: If ``name`` is not registered.
        """
        try:
            return self._policies[name]
        except KeyError:
            raise UnknownPolicy(
                code="rate_limit_unknown_policy",
                message=f"Unknown rate limit policy: '{name}'",
                details={"policy": name, "known_policies": sorted(self._policies)},
            ) from None

    def names(self) -> list[str]:
        return sorted(self._policies)

    @classmethod
    def default(cls) -> "PolicyRegistry":
        return cls(DEFAULT_POLICIES)

    def with_overrides(self, overrides: Mapping[str, Mapping[str, Any]] | str | None) -> "PolicyRegistry":
        """Return a new registry with per-policy field overrides applied.

        Args:
            overrides: Mapping (or its JSON encoding) of policy name to a
                partial set of ``window_ms``, ``max_requests``, ``key_prefix``
                and ``failure_mode``.

        Raises:
            ValidationAppError: If the JSON is invalid, a field is not
                overridable, or the resulting policy is invalid.
            UnknownPolicy: If an override names an unregistered policy.
        """
        if not overrides:
            return self

        if isinstance(overrides, str):
            try:
                overrides = json.loads(overrides)
            except json.JSONDecodeError as exc:
                raise ValidationAppError(
                    code="rate_limit_invalid_overrides",
                    message="RATE_LIMIT_POLICY_OVERRIDES is not valid JSON",
                    details={"hint": str(exc)},
                ) from exc
        if not isinstance(overrides, Mapping):
            raise ValidationAppError(
                code="rate_limit_invalid_overrides",
                message="Policy overrides must be a JSON object keyed by policy name",
            )

        table = dict(self._policies)
        for name, fields in overrides.items():
            base = self.get_policy(name)
            if not isinstance(fields, Mapping):
                raise ValidationAppError(
                    code="rate_limit_invalid_overrides",
                    message=f"Override for '{name}' must be an object of policy fields",
                    details={"policy": name},
                )
            unknown = set(fields) - _OVERRIDABLE_FIELDS
            if unknown:
                raise ValidationAppError(
                    code="rate_limit_invalid_overrides",
                    message=f"Unsupported override fields for '{name}': {sorted(unknown)}",
                    details={"policy": name},
                )
            changes = dict(fields)
            # A new prefix without an explicit mode re-derives the default mode.
            if "key_prefix" in changes and "failure_mode" not in changes:
                changes["failure_mode"] = default_failure_mode(changes["key_prefix"])
            try:
                table[name] = replace(base, **changes)
            except (TypeError, ValueError) as exc:
                raise ValidationAppError(
                    code="rate_limit_invalid_overrides",
                    message=f"Invalid override for policy '{name}': {exc}",
                    details={"policy": name},
                ) from exc
            logger.info(
                "rate_limit.policy_overridden",
                extra={"policy": name, "fields": sorted(changes)},
            )

        return PolicyRegistry(list(table.values()))
