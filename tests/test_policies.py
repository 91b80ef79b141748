"""Tests for the policy registry."""

import json

import pytest

from windowguard.core.errors import UnknownPolicy, ValidationAppError
from windowguard.services.policies import (
    DEFAULT_POLICIES,
    FailureMode,
    Policy,
    PolicyRegistry,
)

REQUIRED_POLICIES = {
    "login",
    "signup",
    "otp",
    "password_reset",
    "api",
    "broadcast",
    "webhook",
    "public_form",
    "public_store",
}


class TestDefaultRegistry:
    def test_covers_required_endpoint_classes(self) -> None:
        registry = PolicyRegistry.default()

        assert REQUIRED_POLICIES <= set(registry)

    def test_login_values(self) -> None:
        login = PolicyRegistry.default().get_policy("login")

        assert login.window_ms == 15 * 60 * 1000
        assert login.max_requests == 5
        assert login.key_prefix == "auth:login"

    @pytest.mark.parametrize("name", ["login", "signup", "otp", "password_reset", "auth"])
    def test_auth_policies_fail_closed(self, name: str) -> None:
        assert PolicyRegistry.default()[name].failure_mode is FailureMode.CLOSED

    @pytest.mark.parametrize("name", ["api", "broadcast", "webhook", "public_form", "public_store"])
    def test_other_policies_fail_open(self, name: str) -> None:
        assert PolicyRegistry.default()[name].failure_mode is FailureMode.OPEN

    def test_unknown_policy_raises(self) -> None:
        with pytest.raises(UnknownPolicy) as exc_info:
            PolicyRegistry.default().get_policy("nope")

        assert exc_info.value.code == "rate_limit_unknown_policy"
        assert "login" in exc_info.value.details["known_policies"]

    def test_registry_is_read_only(self) -> None:
        registry = PolicyRegistry.default()

        with pytest.raises(TypeError):
            registry["login"] = DEFAULT_POLICIES[0]  # type: ignore[index]

    def test_policies_are_frozen(self) -> None:
        with pytest.raises(AttributeError):
            DEFAULT_POLICIES[0].max_requests = 100  # type: ignore[misc]


class TestPolicyValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"window_ms": 0, "max_requests": 1, "key_prefix": "x"},
            {"window_ms": 1, "max_requests": 0, "key_prefix": "x"},
            {"window_ms": 1, "max_requests": 1, "key_prefix": ""},
        ],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            Policy("p", **kwargs)

    def test_explicit_failure_mode_wins(self) -> None:
        policy = Policy("p", window_ms=1, max_requests=1, key_prefix="auth:x", failure_mode="open")

        assert policy.failure_mode is FailureMode.OPEN

    def test_duplicate_names_rejected(self) -> None:
        policy = Policy("p", window_ms=1, max_requests=1, key_prefix="x")

        with pytest.raises(ValueError):
            PolicyRegistry([policy, policy])


class TestOverrides:
    def test_json_overrides_applied(self) -> None:
        base = PolicyRegistry.default()
        registry = base.with_overrides(json.dumps({"login": {"max_requests": 10}}))

        assert registry["login"].max_requests == 10
        assert registry["login"].window_ms == base["login"].window_ms
        assert base["login"].max_requests == 5

    def test_empty_overrides_return_same_registry(self) -> None:
        base = PolicyRegistry.default()

        assert base.with_overrides(None) is base
        assert base.with_overrides("") is base

    def test_prefix_change_rederives_failure_mode(self) -> None:
        registry = PolicyRegistry.default().with_overrides({"api": {"key_prefix": "auth:api"}})

        assert registry["api"].failure_mode is FailureMode.CLOSED

    def test_unknown_policy_in_overrides(self) -> None:
        with pytest.raises(UnknownPolicy):
            PolicyRegistry.default().with_overrides({"nope": {"max_requests": 1}})

    @pytest.mark.parametrize(
        "overrides",
        [
            "{not json",
            "[1, 2]",
            {"login": {"name": "other"}},
            {"login": {"max_requests": 0}},
            {"login": {"failure_mode": "sideways"}},
        ],
    )
    def test_invalid_overrides(self, overrides) -> None:
        with pytest.raises(ValidationAppError):
            PolicyRegistry.default().with_overrides(overrides)
