"""Turn an :class:`~relay.ops.result.OperationResult` into an HTTP response."""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from relay.api.middleware.errors import problem_response, status_for_error_code
from relay.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from relay.ops.result import OperationResult, PagedResult


def _problem(result: OperationResult[Any], request: Request | None) -> JSONResponse:
    error = result.error
    code = error.code if error else "INTERNAL"
    message = error.message if error else "operation failed"
    field_errors = []
    if error and error.details.get("field"):
        field_errors.append({"code": code, "message": message, "field": str(error.details["field"])})
    return problem_response(
        status=status_for_error_code(code),
        title=message,
        code=code,
        instance=request.url.path if request is not None else "",
        errors=field_errors,
    )


def respond(result: OperationResult[Any], request: Request | None = None) -> Any:
    """Success envelope, paged envelope, or problem+json for a failure."""
    if not result.success:
        return _problem(result, request)
    if isinstance(result, PagedResult):
        page = PageMeta(total=result.total, limit=result.limit, offset=result.offset, has_more=result.has_more)
        return PagedResponse(
            data=result.data or [], page=page, elapsed_ms=result.elapsed_ms, warnings=result.warnings
        )
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms, warnings=result.warnings)
