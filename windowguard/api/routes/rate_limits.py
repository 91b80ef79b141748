from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from windowguard.core.auth import verify_api_key
from windowguard.core.errors import RateLimitExceeded
from windowguard.core.rate_limit import evaluate_request, get_rate_limit_settings, get_rate_limiter
from windowguard.schemas.rate_limit import (
    DecisionResponse,
    PolicyListResponse,
    PolicyResponse,
    WindowResetResponse,
    WindowStatusResponse,
)
from windowguard.services.limiter import RateLimiter

router = APIRouter(prefix="/rate-limits", tags=["Rate limits"])

IdentityQuery = Annotated[
    str,
    Query(
        min_length=1,
        max_length=512,
        description="Caller identity as derived by the limiter, e.g. '203.0.113.4:anon'.",
    ),
]


@router.get(
    "/policies",
    response_model=PolicyListResponse,
    dependencies=[Depends(verify_api_key)],
)
def list_policies(limiter: Annotated[RateLimiter, Depends(get_rate_limiter)]) -> PolicyListResponse:
    """List every registered policy with its effective values."""

    registry = limiter.registry
    return PolicyListResponse(
        backend=limiter.store.backend_name,
        policies=[PolicyResponse(**registry[name].to_dict()) for name in registry.names()],
    )


@router.get(
    "/{policy_name}/status",
    response_model=WindowStatusResponse,
    dependencies=[Depends(verify_api_key)],
)
def window_status(
    policy_name: str,
    identity: IdentityQuery,
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> WindowStatusResponse:
    """Peek at the current window without counting a request.

    Raises:
        UnknownPolicy: 400 when the policy is not registered.
        StoreUnavailable: 503 when the store cannot be reached.
    """

    policy = limiter.resolve(policy_name)
    state = limiter.status(identity, policy)
    if state is None:
        return WindowStatusResponse(
            policy=policy.name,
            active=False,
            limit=policy.max_requests,
            remaining=policy.max_requests,
        )
    return WindowStatusResponse(
        policy=policy.name,
        active=True,
        count=state.count,
        limit=policy.max_requests,
        remaining=max(0, policy.max_requests - state.count),
        reset_at_ms=state.reset_at_ms,
    )


@router.delete(
    "/{policy_name}/window",
    response_model=WindowResetResponse,
    dependencies=[Depends(verify_api_key)],
)
def reset_window(
    policy_name: str,
    identity: IdentityQuery,
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> WindowResetResponse:
    """Drop the current window so the identity starts fresh."""

    policy = limiter.resolve(policy_name)
    return WindowResetResponse(policy=policy.name, removed=limiter.reset(identity, policy))


@router.post("/{policy_name}/check", response_model=DecisionResponse)
def check_rate_limit(
    policy_name: str,
    request: Request,
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> DecisionResponse:
    """Count one request for the caller under ``policy_name``.

    Lets browser clients and other services ask before doing rate-limited
    work. Denials (including unknown policies) come back as 429. With
    limiting disabled nothing is counted and every known policy allows.
    """

    if not get_rate_limit_settings(request).enabled:
        policy = limiter.resolve(policy_name)
        return DecisionResponse(
            policy=policy.name,
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests,
        )

    decision = evaluate_request(limiter, request, policy_name)
    if not decision.allowed:
        raise RateLimitExceeded(decision)
    return DecisionResponse(
        policy=decision.policy,
        allowed=decision.allowed,
        limit=decision.limit,
        remaining=decision.remaining,
        reset_at_ms=decision.reset_at_ms,
        degraded=decision.degraded,
    )
