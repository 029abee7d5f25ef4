"""
Exception hierarchy for relay.

Every expected failure is a :class:`RelayError` subclass with a category,
a retry flag and an :class:`ErrorContext` of ids that travel into the log.
Ops functions turn them into ``OperationResult`` codes
(:func:`relay.ops.result.error_code`); nothing matches on message text.

Hierarchy::

    RelayError (INTERNAL)
    ├── TransientError (NETWORK, retryable)
    │   └── EngineUnavailableError (ENGINE)
    ├── RemoteEngineError (ENGINE)
    │   └── DeploymentNotFoundError
    ├── ContentStoreError (SOURCE)
    ├── ValidationError (VALIDATION)
    │   └── InvalidSyncTargetError
    ├── NotFoundError (NOT_FOUND)
    ├── ConflictError (CONFLICT)
    │   ├── NotCancellableError
    │   └── DuplicateSubmissionError
    ├── ConfigError (CONFIG)
    └── AuthError (AUTH)
        └── SignatureError

Only the engine client retries, and only errors whose ``retryable`` is set::

    >>> is_retryable(EngineUnavailableError("engine returned 503"))
    True
    >>> err = RemoteEngineError("create_flow_run failed", status_code=422)
    >>> err.context.http_status
    422
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    NETWORK = "NETWORK"
    ENGINE = "ENGINE"
    SOURCE = "SOURCE"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    CONFIG = "CONFIG"
    AUTH = "AUTH"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Ids and remote coordinates attached to an error; unknown keys go to ``metadata``."""

    workflow_key: str | None = None
    run_id: str | None = None
    batch_id: str | None = None
    document_id: int | None = None
    node_id: int | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        out.update(self.metadata)
        return out


class RelayError(Exception):
    """Base class; subclasses override ``default_category`` / ``default_retryable``."""

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelayError:
        known = {f.name for f in fields(self.context)} - {"metadata"}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Log-friendly form: type, message, category, retry flag, context, cause."""
        out: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            out["context"] = context
        if self.cause is not None:
            out["cause"] = str(self.cause)
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class TransientError(RelayError):
    default_category = ErrorCategory.NETWORK
    default_retryable = True


class EngineUnavailableError(TransientError):
    """Engine unreachable, timed out, or answered 502/503/504."""

    default_category = ErrorCategory.ENGINE


class RemoteEngineError(RelayError):
    """Engine answered, but refused: 4xx, other 5xx, or an unusable body."""

    default_category = ErrorCategory.ENGINE

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            self.context.http_status = status_code


class DeploymentNotFoundError(RemoteEngineError):
    def __init__(self, name: str):
        self.deployment_name = name
        super().__init__(f"deployment not found: {name}")


class ContentStoreError(RelayError):
    default_category = ErrorCategory.SOURCE

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.context.http_status = status_code


class ValidationError(RelayError):
    """Bad input.  ``field`` names the offending parameter when there is one."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        if self.field:
            out["field"] = self.field
        if self.value is not None:
            out["value"] = repr(self.value)
        if self.constraint:
            out["constraint"] = self.constraint
        return out


class InvalidSyncTargetError(ValidationError):
    """A document's ``sync_target`` metadata is not a positive node id."""

    def __init__(self, message: str, *, value: Any = None):
        super().__init__(message, field="sync_target", value=value)


class NotFoundError(RelayError):
    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, kind: str, identifier: Any, message: str | None = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} not found: {identifier}")


class ConflictError(RelayError):
    default_category = ErrorCategory.CONFLICT


class NotCancellableError(ConflictError):
    """The record exists, but its ``status`` rules out *action*."""

    def __init__(self, kind: str, identifier: Any, status: str, action: str = "cancel"):
        self.kind = kind
        self.identifier = identifier
        self.status = status
        super().__init__(f"cannot {action} {kind} {identifier} in status {status}")


class DuplicateSubmissionError(ConflictError):
    """The idempotency key already belongs to ``existing_id``."""

    def __init__(self, idempotency_key: str, existing_id: str | None = None):
        self.idempotency_key = idempotency_key
        self.existing_id = existing_id
        super().__init__(f"duplicate submission for key {idempotency_key}")


class ConfigError(RelayError):
    default_category = ErrorCategory.CONFIG


class AuthError(RelayError):
    default_category = ErrorCategory.AUTH


class SignatureError(AuthError):
    """Callback carried no signature, or one that does not match the secret."""


def is_retryable(error: Exception) -> bool:
    if isinstance(error, RelayError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


__all__ = [
    "AuthError",
    "ConfigError",
    "ConflictError",
    "ContentStoreError",
    "DeploymentNotFoundError",
    "DuplicateSubmissionError",
    "EngineUnavailableError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidSyncTargetError",
    "NotCancellableError",
    "NotFoundError",
    "RelayError",
    "RemoteEngineError",
    "SignatureError",
    "TransientError",
    "ValidationError",
    "is_retryable",
]
