"""
Core primitives for relay.

Errors, structured logging, timestamps, hashing, the ``Connection``
protocol, connection factory, repositories and the ORM schema.  Nothing in
this package knows about HTTP, the CLI, or the remote engine.
"""

from relay.core.errors import (
    ConflictError,
    DuplicateSubmissionError,
    ErrorCategory,
    ErrorContext,
    NotFoundError,
    RelayError,
    TransientError,
    ValidationError,
)
from relay.core.logging import LogContext, bind_context, configure_logging, get_logger
from relay.core.protocols import Connection

__all__ = [
    "Connection",
    "ConflictError",
    "DuplicateSubmissionError",
    "ErrorCategory",
    "ErrorContext",
    "LogContext",
    "NotFoundError",
    "RelayError",
    "TransientError",
    "ValidationError",
    "bind_context",
    "configure_logging",
    "get_logger",
]
