"""Request context middleware.

Binds ``request_id`` and the calling user (``X-User``) into the structlog
context for the life of the request, echoes ``X-Request-ID`` and reports
the handling time in ``X-Elapsed-Ms``.  Callback and batch log events can
then be joined to the HTTP call that caused them.
"""

from __future__ import annotations

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from relay.core.logging import bind_context, get_logger, unbind_context

logger = get_logger(__name__)

# Health checks would drown everything else.
QUIET_PREFIXES = ("/health",)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlate one request's log events and time its handling."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        caller = request.headers.get("X-User")
        request.state.request_id = request_id
        bind_context(request_id=request_id, caller=caller)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            if not request.url.path.startswith(QUIET_PREFIXES):
                logger.info(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    elapsed_ms=elapsed_ms,
                )
        finally:
            unbind_context("request_id", "caller")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Elapsed-Ms"] = str(elapsed_ms)
        return response
