from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems. Reports the window store
    backend and, for Redis, whether it answers a ping. An unreachable store
    does not fail the check: policies decide how requests degrade.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return {"status": "ok", "rate_limit_backend": None}

    store = limiter.store
    body: dict = {"status": "ok", "rate_limit_backend": store.backend_name}
    ping = getattr(store, "ping", None)
    if callable(ping):
        body["rate_limit_store_reachable"] = ping()
    return body
