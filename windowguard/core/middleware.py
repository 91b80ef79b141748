"""HTTP middleware for request ID propagation and correlation.

The middleware:
- Reuses a well-formed incoming request ID header or generates a UUID
- Stores request_id in contextvars so rate limit logs can be correlated
- Echoes request_id and total duration in the response headers, 429s included
- Clears context after request completion to prevent context leaks

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import re
import time
import uuid

from fastapi import Request, Response

from windowguard.core.config import settings
from windowguard.core.logging import clear_request_id, set_request_id

DURATION_HEADER = "X-Request-Duration-ms"

# Client-supplied ids end up in every log line of the request.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming: str | None) -> str:
    """Return ``incoming`` when it is a safe correlation id, else a new UUID."""
    if incoming and _REQUEST_ID_PATTERN.match(incoming):
        return incoming
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id and timing header to every response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with the configured request id
            header and ``X-Request-Duration-ms`` added.
    """
    header_name = settings.log.request_id_header
    request_id = resolve_request_id(request.headers.get(header_name))
    started = time.perf_counter()

    set_request_id(request_id)
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers[header_name] = request_id
    if DURATION_HEADER not in response.headers:
        response.headers[DURATION_HEADER] = f"{elapsed_ms:.2f}"
    return response
