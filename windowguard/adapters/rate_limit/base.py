"""Window store interfaces.

The limiter core should depend on this abstraction (not the concrete
implementation) so the storage backend can be swapped between an in-process
map and a shared Redis instance by configuration alone.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowState:
    """Counter state of one fixed window.

    Attributes:
        count: Observations registered in the current window (denied ones included).
        reset_at_ms: UNIX epoch milliseconds at which the window ends.
    """

    count: int
    reset_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return self.reset_at_ms <= now_ms


class AbstractWindowStore(ABC):
    """Interface for window stores.

    Implementations must make ``observe`` atomic per key: two simultaneous
    observations of the same key are both counted.
    """

    #: Short backend name used in logs and health output.
    backend_name: str = "abstract"

    @abstractmethod
    def observe(self, key: str, window_ms: int) -> WindowState:
        """Register one observation for ``key`` and return the resulting state.

        A fresh window (``count=1``, ``reset_at_ms=now+window_ms``) is started
        when the key is absent or its window has already ended; otherwise the
        count is incremented and ``reset_at_ms`` is kept.

        Args:
            key: Fully qualified rate limit key (prefix + identity).
            window_ms: Window length in milliseconds, from the policy.

        Returns:
            WindowState after the increment.

        Raises:
            StoreUnavailable: If a remote backend errors or times out.
        """
        raise NotImplementedError

    @abstractmethod
    def peek(self, key: str) -> WindowState | None:
        """Return the live state for ``key`` without mutating it."""
        raise NotImplementedError

    @abstractmethod
    def evict(self, now_ms: int | None = None) -> int:
        """Remove every window whose ``reset_at_ms <= now_ms``.

        Returns:
            Number of entries removed.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> bool:
        """Drop the window for ``key``. Returns True if one existed."""
        raise NotImplementedError

    def start(self) -> None:
        """Start background maintenance, if the backend needs any."""

    def close(self) -> None:
        """Release timers/connections held by the store."""
