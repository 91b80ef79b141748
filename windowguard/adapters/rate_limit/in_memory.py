"""In-memory fixed-window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Expired windows are dropped by an optional background eviction thread.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from windowguard.adapters.rate_limit.base import AbstractWindowStore, WindowState

logger = logging.getLogger(__name__)


class InMemoryWindowStore(AbstractWindowStore):
    """Window store backed by a dict guarded by a re-entrant lock.

    Suitable for single-instance deployments and client-side advisory
    limiting. The store owns its eviction thread: call ``start_eviction()``
    after construction and ``close()`` on shutdown.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        eviction_interval_seconds: float = 60.0,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            eviction_interval_seconds: Period of the background eviction pass.

        Raises:
            ValueError: If eviction_interval_seconds is not positive.
        """
        if eviction_interval_seconds <= 0:
            raise ValueError("eviction_interval_seconds must be > 0")

        self._clock = clock
        self._eviction_interval = eviction_interval_seconds
        self._lock = threading.RLock()
        self._state_by_key: dict[str, WindowState] = {}
        self._stop_event = threading.Event()
        self._eviction_thread: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def observe(self, key: str, window_ms: int) -> WindowState:
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        with self._lock:
            now_ms = self._now_ms()
            state = self._state_by_key.get(key)
            if state is None or state.is_expired(now_ms):
                state = WindowState(count=1, reset_at_ms=now_ms + window_ms)
            else:
                state = WindowState(count=state.count + 1, reset_at_ms=state.reset_at_ms)
            self._state_by_key[key] = state
            return state

    def peek(self, key: str) -> WindowState | None:
        now_ms = self._now_ms()
        with self._lock:
            state = self._state_by_key.get(key)
        if state is None or state.is_expired(now_ms):
            return None
        return state

    def evict(self, now_ms: int | None = None) -> int:
        if now_ms is None:
            now_ms = self._now_ms()
        with self._lock:
            expired_keys = [k for k, s in self._state_by_key.items() if s.is_expired(now_ms)]
            for key in expired_keys:
                del self._state_by_key[key]
            remaining = len(self._state_by_key)

        if expired_keys:
            logger.debug(
                "rate_limit.evicted",
                extra={"evicted": len(expired_keys), "entries": remaining},
            )
        return len(expired_keys)

    def reset(self, key: str) -> bool:
        with self._lock:
            return self._state_by_key.pop(key, None) is not None

    def start_eviction(self) -> None:
        """Start the background eviction thread (idempotent)."""
        if self._eviction_thread is not None and self._eviction_thread.is_alive():
            return
        self._stop_event.clear()
        self._eviction_thread = threading.Thread(
            target=self._eviction_loop,
            name="windowguard-eviction",
            daemon=True,
        )
        self._eviction_thread.start()
        logger.info(
            "rate_limit.eviction_started",
            extra={"interval_s": self._eviction_interval},
        )

    def _eviction_loop(self) -> None:
        while not self._stop_event.wait(self._eviction_interval):
            try:
                self.evict()
            except Exception:  # keep the timer alive; next pass retries
                logger.exception("rate_limit.eviction_failed")

    def close(self) -> None:
        """Stop the eviction thread. Counter state is kept."""
        self._stop_event.set()
        thread = self._eviction_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._eviction_interval + 1.0)
        self._eviction_thread = None

    start = start_eviction

    @property
    def eviction_running(self) -> bool:
        return self._eviction_thread is not None and self._eviction_thread.is_alive()
