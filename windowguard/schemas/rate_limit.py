"""Pydantic schemas for the rate limit diagnostics API."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field


class PolicyResponse(BaseModel):
    """One registered policy."""

    name: str = Field(..., description="Registry name used by routes, e.g. 'login'.")
    window_ms: int = Field(..., description="Window duration in milliseconds.")
    max_requests: int = Field(..., description="Requests allowed within one window.")
    key_prefix: str = Field(..., description="Namespace of keys counted under this policy.")
    failure_mode: Literal["open", "closed"] = Field(
        ..., description="Decision applied when the window store is unavailable."
    )


class PolicyListResponse(BaseModel):
    backend: str = Field(..., description="Active window store backend.")
    policies: List[PolicyResponse]


class WindowStatusResponse(BaseModel):
    """Live window of one identity under one policy (read-only)."""

    policy: str
    active: bool = Field(..., description="False when no unexpired window exists.")
    count: int = Field(0, description="Requests counted in the current window.")
    limit: int
    remaining: int
    reset_at_ms: int | None = Field(
        None, description="Epoch milliseconds when the window ends (null when inactive)."
    )


class WindowResetResponse(BaseModel):
    policy: str
    removed: bool = Field(..., description="Whether a live window was dropped.")


class DecisionResponse(BaseModel):
    """Outcome of an allowed check; denials are returned as 429 instead."""

    policy: str
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int | None = Field(
        None, description="Epoch milliseconds when the window ends (null when limiting is disabled)."
    )
    degraded: bool = Field(
        False, description="True when the store was unavailable and the failure mode decided."
    )
