from __future__ import annotations

from fastapi.testclient import TestClient

from windowguard.core.middleware import resolve_request_id
from windowguard.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_rate_limited_response_keeps_request_id():
    for _ in range(3):
        client.post("/v1/rate-limits/otp/check", headers={"X-Real-IP": "192.0.2.77"})

    resp = client.post(
        "/v1/rate-limits/otp/check",
        headers={"X-Real-IP": "192.0.2.77", "X-Request-ID": "req-429"},
    )

    assert resp.status_code == 429
    assert resp.headers.get("X-Request-ID") == "req-429"


def test_replaces_malformed_request_id():
    resp = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") != "bad id with spaces"
    assert len(resp.headers.get("X-Request-ID")) == 36


def test_resolve_request_id_accepts_safe_values():
    assert resolve_request_id("req-abc_123.4:5") == "req-abc_123.4:5"
    assert resolve_request_id("x" * 129) != "x" * 129
    assert resolve_request_id(None)
