"""Window store adapters.

This package provides a small abstraction layer so the limiter can run on an
in-memory map for single-instance or client-side advisory limiting, and on
Redis for multi-instance deployments, without changing the limiter core.
"""

from windowguard.adapters.rate_limit.base import AbstractWindowStore, WindowState
from windowguard.adapters.rate_limit.factory import create_window_store
from windowguard.adapters.rate_limit.in_memory import InMemoryWindowStore
from windowguard.adapters.rate_limit.redis_store import RedisWindowStore

__all__ = [
    "AbstractWindowStore",
    "InMemoryWindowStore",
    "RedisWindowStore",
    "WindowState",
    "create_window_store",
]
