"""
Problem+json rendering.

Operation failures reach the client through :func:`problem_response`
(called by ``respond`` in :mod:`relay.api.utils`).  Errors raised before
an operation runs, such as a rejected callback signature inside a
dependency, are :class:`~relay.core.errors.RelayError` instances and are
rendered by :func:`relay_error_handler` with the same ops error codes.

Status table::

    NOT_FOUND          404
    VALIDATION_FAILED  400
    UNAUTHORIZED       401
    CONFLICT           409
    NOT_CANCELLABLE    409
    UNAVAILABLE        503
    INTERNAL           500
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from relay.api.schemas.common import ErrorDetail, ProblemDetail
from relay.core.errors import ConfigError, RelayError
from relay.core.logging import get_logger
from relay.ops.result import error_code

logger = get_logger(__name__)

ERROR_CODE_TO_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "VALIDATION_FAILED": 400,
    "UNAUTHORIZED": 401,
    "CONFLICT": 409,
    "NOT_CANCELLABLE": 409,
    "UNAVAILABLE": 503,
    "INTERNAL": 500,
}


def status_for_error_code(code: str) -> int:
    return ERROR_CODE_TO_STATUS.get(code, 500)


def problem_response(
    *,
    status: int,
    title: str,
    code: str = "INTERNAL",
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    body = ProblemDetail(
        title=title,
        status=status,
        code=code,
        detail=detail,
        instance=instance,
        errors=[ErrorDetail(**e) for e in errors or []],
    )
    return JSONResponse(status_code=status, content=body.model_dump(), media_type="application/problem+json")


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render a :class:`RelayError` raised outside an operation.

    A :class:`ConfigError` at this layer means the server itself is
    misconfigured (e.g. no callback secret), so it is a 500 rather than the
    503 an operation would report for a missing collaborator.
    """
    code = "INTERNAL" if isinstance(exc, ConfigError) else error_code(exc)
    status = status_for_error_code(code)
    log = logger.error if status >= 500 else logger.warning
    log("request_rejected", path=request.url.path, code=code, error=exc.message)
    return problem_response(status=status, title=exc.message, code=code, instance=request.url.path)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=request.url.path,
    )
