"""What every ops function returns.

Ops never raise to their callers: they return an :class:`OperationResult`
(or :class:`PagedResult` for listings) and :func:`fail_from` folds a
raised :class:`~relay.core.errors.RelayError` into one.  The code on a
failed result is what the API turns into an HTTP status and the CLI into
``Error (CODE): message``.

======================  ==================================================
NOT_FOUND               NotFoundError
VALIDATION_FAILED       ValidationError, InvalidTransitionError
NOT_CANCELLABLE         NotCancellableError
CONFLICT                ConflictError (DuplicateSubmissionError included)
UNAUTHORIZED            AuthError
UNAVAILABLE             ConfigError, TransientError, RemoteEngineError,
                        ContentStoreError
INTERNAL                anything else; logged with its traceback
======================  ==================================================
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from relay.core.errors import (
    AuthError,
    ConfigError,
    ConflictError,
    ContentStoreError,
    NotCancellableError,
    NotFoundError,
    RelayError,
    RemoteEngineError,
    TransientError,
    ValidationError,
)
from relay.core.logging import get_logger
from relay.execution.models import InvalidTransitionError

T = TypeVar("T")

logger = get_logger(__name__)

# Checked in order; the first matching class wins.
_CODES: tuple[tuple[tuple[type[BaseException], ...], str], ...] = (
    ((NotFoundError,), "NOT_FOUND"),
    ((ValidationError, InvalidTransitionError), "VALIDATION_FAILED"),
    ((NotCancellableError,), "NOT_CANCELLABLE"),
    ((ConflictError,), "CONFLICT"),
    ((AuthError,), "UNAUTHORIZED"),
    ((ConfigError, TransientError, RemoteEngineError, ContentStoreError), "UNAVAILABLE"),
)

# Error attributes copied into ``details`` when set.
_DETAIL_ATTRS = ("field", "constraint", "status", "existing_id")


@dataclass(frozen=True, slots=True)
class OperationError:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False


@dataclass
class OperationResult(Generic[T]):
    """Either ``data`` (``success`` true) or ``error``; build with :meth:`ok` / :meth:`fail`."""

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @classmethod
    def ok(cls, data: T, *, warnings: list[str] | None = None, elapsed_ms: float = 0.0) -> OperationResult[T]:
        return cls(success=True, data=data, warnings=list(warnings or []), elapsed_ms=elapsed_ms)

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
    ) -> OperationResult[T]:
        error = OperationError(code=code, message=message, details=dict(details or {}), retryable=retryable)
        return cls(success=False, error=error, elapsed_ms=elapsed_ms)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = {"code": self.error.code, "message": self.error.message, "retryable": self.error.retryable}
            if self.error.details:
                out["error"]["details"] = self.error.details
        if self.warnings:
            out["warnings"] = self.warnings
        if self.elapsed_ms:
            out["elapsed_ms"] = round(self.elapsed_ms, 2)
        return out


@dataclass
class PagedResult(OperationResult[list[T]]):
    """One page of a listing plus the size of the whole result set."""

    total: int = 0
    limit: int = 20
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 20,
        offset: int = 0,
        elapsed_ms: float = 0.0,
    ) -> PagedResult[T]:
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
        }


def error_code(exc: BaseException) -> str:
    for classes, code in _CODES:
        if isinstance(exc, classes):
            return code
    return "INTERNAL"


def _details(exc: Exception) -> dict[str, Any]:
    if not isinstance(exc, RelayError):
        return {}
    details = {k: v for k, v in exc.context.to_dict().items() if v is not None}
    for attr in _DETAIL_ATTRS:
        value = getattr(exc, attr, None)
        if value is not None:
            details[attr] = value
    return details


def fail_from(
    exc: Exception,
    op: str,
    *,
    elapsed_ms: float = 0.0,
    result_cls: type[OperationResult[Any]] = OperationResult,
    **log_fields: Any,
) -> OperationResult[Any]:
    """Failed result for *exc* raised inside operation *op*.

    Listings pass ``result_cls=PagedResult`` so callers get the envelope
    type they expect either way.
    """
    code = error_code(exc)
    if code == "INTERNAL":
        logger.exception("op_failed", op=op, error=str(exc), **log_fields)
        return result_cls.fail(code, f"{op} failed: {exc}", elapsed_ms=elapsed_ms)

    logger.info("op_rejected", op=op, code=code, error=str(exc), **log_fields)
    return result_cls.fail(
        code,
        str(exc),
        details=_details(exc),
        retryable=bool(getattr(exc, "retryable", False)),
        elapsed_ms=elapsed_ms,
    )


class Stopwatch:
    __slots__ = ("_started",)

    def __init__(self) -> None:
        self._started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000


def start_timer() -> Stopwatch:
    return Stopwatch()
