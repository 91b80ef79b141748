"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from windowguard.services.limiter import Decision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    policy: str
    backend: str
    known_policies: list[str]
    http_status: int
    retry_after: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class RateLimitAppError(AppError):
    """Base class for failures inside the rate limiter itself."""


class UnknownPolicy(RateLimitAppError):
    """Raised when a policy name is not registered (programming error)."""


class InvalidIdentity(RateLimitAppError):
    """Raised when a caller identity is empty or malformed."""


class StoreUnavailable(RateLimitAppError):
    """Raised when the window store cannot be reached in time."""


class RateLimitExceeded(Exception):
    """Raised by the HTTP dependency when a request is denied.

    Rendered as ``429 Too Many Requests`` by the exception handlers.
    """

    def __init__(self, decision: "Decision") -> None:
        self.decision = decision
        super().__init__(f"rate limit exceeded for policy {decision.policy!r}")
