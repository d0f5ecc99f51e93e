"""HTTP middleware for request correlation and client identity.

The middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Resolves the hashed client identity once and stores it on request.state
- Stores request_id and ip_hash in contextvars for log correlation
- Injects request_id and duration into response headers
- Clears context after request completion to prevent context leaks

Usage:
    app.middleware("http")(request_context_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from anonchat.core.config import settings
from anonchat.core.identity import resolve_client_identity
from anonchat.core.logging import clear_request_context, set_client_ip_hash, set_request_id


async def request_context_middleware(request: Request, call_next) -> Response:
    """Attach correlation id and client identity to the request lifecycle.

    If the client provides an X-Request-ID header (configurable via
    LOG_REQUEST_ID_HEADER), that value is used. Otherwise, a new UUID is
    generated. The identity is hashed here so raw addresses never reach
    route handlers or logs.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    identity = resolve_client_identity(request)
    request.state.client_identity = identity

    set_request_id(request_id)
    set_client_ip_hash(identity.ip_hash)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_context()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
