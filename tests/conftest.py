"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``windowguard`` import so the
global settings object is built from test values.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from windowguard.adapters.rate_limit.in_memory import InMemoryWindowStore
from windowguard.services.limiter import RateLimiter
from windowguard.services.policies import PolicyRegistry


class FakeClock:
    """Deterministic clock (UNIX seconds) shared by store and limiter."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryWindowStore:
    return InMemoryWindowStore(clock=clock)


@pytest.fixture
def limiter(store: InMemoryWindowStore, clock: FakeClock) -> RateLimiter:
    return RateLimiter(store, PolicyRegistry.default(), clock=clock)


@pytest.fixture
def api_key_headers() -> dict[str, str]:
    return {"X-API-Key": "test-api-key-123"}
