"""Response envelopes shared by every router.

2xx bodies are ``{"data": ..., "elapsed_ms": ..., "warnings": [...]}``,
with a ``page`` block on listings.  Errors are ``application/problem+json``
bodies shaped like :class:`ProblemDetail`.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorDetail(BaseModel):
    """One rejected input field."""

    code: str
    message: str
    field: str | None = None


class ProblemDetail(BaseModel):
    """RFC 7807 problem body with relay's error ``code`` added.

    ``code`` decides ``status``: NOT_FOUND 404, VALIDATION_FAILED 400,
    UNAUTHORIZED 401, CONFLICT and NOT_CANCELLABLE 409, UNAVAILABLE 503,
    INTERNAL 500.
    """

    type: str = "about:blank"
    title: str = Field(description="The error message, e.g. 'run not found: 6f1c...'")
    status: int
    code: str = "INTERNAL"
    detail: str = ""
    instance: str = Field(default="", description="Request path")
    errors: list[ErrorDetail] = Field(default_factory=list)


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class SuccessResponse(BaseModel, Generic[T]):
    data: T
    elapsed_ms: float = Field(default=0.0, description="Time spent in the operation")
    warnings: list[str] = Field(default_factory=list)


class PagedResponse(BaseModel, Generic[T]):
    data: list[T]
    page: PageMeta
    elapsed_ms: float = 0.0
    warnings: list[str] = Field(default_factory=list)
