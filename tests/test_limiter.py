"""Tests for the limiter core decision logic."""

import threading
from unittest.mock import Mock

import pytest

from windowguard.adapters.rate_limit.base import AbstractWindowStore
from windowguard.adapters.rate_limit.in_memory import InMemoryWindowStore
from windowguard.core.errors import InvalidIdentity, StoreUnavailable, UnknownPolicy
from windowguard.services.limiter import (
    RateLimiter,
    build_rate_limit_key,
    validate_identity,
)
from windowguard.services.policies import Policy, PolicyRegistry

THREE_PER_MINUTE = Policy("scenario", window_ms=60_000, max_requests=3, key_prefix="scenario")


def _unavailable_store() -> Mock:
    store = Mock(spec=AbstractWindowStore)
    store.backend_name = "redis"
    store.observe.side_effect = StoreUnavailable(
        code="rate_limit_store_unavailable",
        message="Redis observe failed: TimeoutError",
    )
    return store


class TestKeySchema:
    def test_prefix_and_identity_joined_with_colon(self) -> None:
        assert build_rate_limit_key("auth:login", "203.0.113.4:anon") == "auth:login:203.0.113.4:anon"

    @pytest.mark.parametrize("identity", ["", "   ", "a\nb", "x" * 513])
    def test_invalid_identities(self, identity: str) -> None:
        with pytest.raises(InvalidIdentity):
            validate_identity(identity)


class TestCheck:
    def test_denies_after_max_requests(self, limiter: RateLimiter) -> None:
        for policy in limiter.registry.values():
            for _ in range(policy.max_requests):
                assert limiter.check("1.2.3.4:anon", policy).allowed is True
            denied = limiter.check("1.2.3.4:anon", policy)
            assert denied.allowed is False, policy.name
            assert denied.remaining == 0

    def test_remaining_decreases_by_one(self, limiter: RateLimiter) -> None:
        remainders = [limiter.check("id", "login").remaining for _ in range(5)]

        assert remainders == [4, 3, 2, 1, 0]

    def test_allows_again_after_reset(self, limiter: RateLimiter, store: InMemoryWindowStore, clock) -> None:
        for _ in range(6):
            limiter.check("id", "otp")
        assert limiter.check("id", "otp").allowed is False

        clock.advance(60)
        decision = limiter.check("id", "otp")

        assert decision.allowed is True
        assert decision.remaining == 2
        assert store.peek("auth:otp:id").count == 1

    def test_scenario_three_per_minute(self, limiter: RateLimiter, store: InMemoryWindowStore, clock) -> None:
        results = []
        for offset in (0, 10, 20, 30):
            clock.current = 1_000.0 + offset
            results.append(limiter.check("k1", THREE_PER_MINUTE))

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[-1].retry_after_seconds == 30
        assert results[-1].reset_at_ms == 1_060_000

        clock.current = 1_061.0
        again = limiter.check("k1", THREE_PER_MINUTE)
        assert again.allowed is True
        assert store.peek("scenario:k1").count == 1
        assert again.reset_at_ms == 1_121_000

    def test_retry_after_rounds_up(self, limiter: RateLimiter, clock) -> None:
        limiter.check("id", "otp")
        limiter.check("id", "otp")
        limiter.check("id", "otp")

        clock.advance(0.4)
        denied = limiter.check("id", "otp")

        assert denied.retry_after_seconds == 60

    def test_denied_requests_still_count(self, limiter: RateLimiter, store: InMemoryWindowStore) -> None:
        for _ in range(5):
            limiter.check("id", "otp")

        assert store.peek("auth:otp:id").count == 5

    def test_policies_do_not_share_windows(self, limiter: RateLimiter) -> None:
        for _ in range(3):
            limiter.check("id", "otp")

        assert limiter.check("id", "otp").allowed is False
        assert limiter.check("id", "signup").allowed is True

    def test_unknown_policy_name_raises(self, limiter: RateLimiter) -> None:
        with pytest.raises(UnknownPolicy):
            limiter.check("id", "does-not-exist")

    def test_invalid_identity_raises(self, limiter: RateLimiter) -> None:
        with pytest.raises(InvalidIdentity):
            limiter.check("", "api")


class TestConcurrency:
    def test_exactly_max_allowed_under_concurrent_checks(self) -> None:
        limiter = RateLimiter(InMemoryWindowStore(), PolicyRegistry.default())
        policy = Policy("burst", window_ms=60_000, max_requests=10, key_prefix="burst")
        workers = 64
        barrier = threading.Barrier(workers)
        decisions = []
        decisions_lock = threading.Lock()

        def fire() -> None:
            barrier.wait()
            decision = limiter.check("fresh-key", policy)
            with decisions_lock:
                decisions.append(decision)

        threads = [threading.Thread(target=fire) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        allowed = [d for d in decisions if d.allowed]
        assert len(decisions) == workers
        assert len(allowed) == 10
        assert sorted(d.remaining for d in allowed) == list(range(10))

    def test_eviction_never_drops_live_increments(self) -> None:
        store = InMemoryWindowStore()
        limiter = RateLimiter(store, PolicyRegistry.default())
        policy = Policy("busy", window_ms=60_000, max_requests=25, key_prefix="busy")
        workers = 16
        per_worker = 40
        barrier = threading.Barrier(workers + 1)
        stop = threading.Event()
        decisions = []
        decisions_lock = threading.Lock()
        evictions = []

        def evict_loop() -> None:
            barrier.wait()
            while not stop.is_set():
                evictions.append(store.evict())

        def fire() -> None:
            barrier.wait()
            local = [limiter.check("live-key", policy) for _ in range(per_worker)]
            with decisions_lock:
                decisions.extend(local)

        evictor = threading.Thread(target=evict_loop)
        threads = [threading.Thread(target=fire) for _ in range(workers)]
        evictor.start()
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        stop.set()
        evictor.join()

        assert evictions
        assert sum(evictions) == 0
        assert store.peek("busy:live-key").count == workers * per_worker
        assert sum(1 for d in decisions if d.allowed) == 25


class TestEviction:
    def test_eviction_matches_natural_expiry(self, clock) -> None:
        evicted_store = InMemoryWindowStore(clock=clock)
        natural_store = InMemoryWindowStore(clock=clock)
        evicted = RateLimiter(evicted_store, clock=clock)
        natural = RateLimiter(natural_store, clock=clock)

        for _ in range(4):
            evicted.check("k", THREE_PER_MINUTE)
            natural.check("k", THREE_PER_MINUTE)

        clock.advance(60)
        assert evicted_store.evict() == 1

        assert evicted.check("k", THREE_PER_MINUTE) == natural.check("k", THREE_PER_MINUTE)

    def test_eviction_keeps_live_windows(self, limiter: RateLimiter, store: InMemoryWindowStore, clock) -> None:
        for _ in range(3):
            limiter.check("k", THREE_PER_MINUTE)

        clock.advance(30)
        store.evict()

        assert limiter.check("k", THREE_PER_MINUTE).allowed is False


class TestStoreUnavailable:
    def test_auth_policy_fails_closed(self, clock) -> None:
        limiter = RateLimiter(_unavailable_store(), clock=clock)

        decision = limiter.check("1.2.3.4:anon", "login")

        assert decision.allowed is False
        assert decision.degraded is True
        assert decision.remaining == 0
        assert decision.retry_after_seconds == 15 * 60

    def test_api_policy_fails_open(self, clock) -> None:
        limiter = RateLimiter(_unavailable_store(), clock=clock)

        decision = limiter.check("1.2.3.4:anon", "api")

        assert decision.allowed is True
        assert decision.degraded is True
        assert decision.remaining == 60

    def test_unknown_policy_still_raises_when_store_down(self, clock) -> None:
        limiter = RateLimiter(_unavailable_store(), clock=clock)

        with pytest.raises(UnknownPolicy):
            limiter.check("id", "nope")


class TestDiagnostics:
    def test_status_does_not_count(self, limiter: RateLimiter) -> None:
        assert limiter.status("id", "api") is None

        limiter.check("id", "api")
        assert limiter.status("id", "api").count == 1
        assert limiter.status("id", "api").count == 1

    def test_reset_starts_fresh_window(self, limiter: RateLimiter) -> None:
        for _ in range(4):
            limiter.check("id", "otp")

        assert limiter.reset("id", "otp") is True
        assert limiter.check("id", "otp").remaining == 2

    def test_deny_builds_closed_decision(self, limiter: RateLimiter) -> None:
        decision = limiter.deny("nope", retry_after=30)

        assert decision.allowed is False
        assert decision.retry_after_seconds == 30
        assert decision.policy == "nope"

    def test_shutdown_closes_store(self) -> None:
        store = Mock(spec=AbstractWindowStore)
        RateLimiter(store).shutdown()

        store.close.assert_called_once()
