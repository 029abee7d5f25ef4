"""
Structured logging for relay (structlog).

Every state change in the orchestrator is a log event named after what
happened (``run_submitted``, ``status_report_discarded``,
``batch_finished``, ``run_force_terminated``) and carries the ids needed to
follow one run or one batch through the log: ``run_id``, ``batch_id``,
``external_run_id``.  HTTP requests add ``request_id`` and ``caller``
through contextvars; batch worker threads bind ``batch_id`` with
:class:`LogContext`.

Output:
    JSON (one object per line) when stdout is not a terminal or
    ``RELAY_LOG_JSON=true``; coloured console lines otherwise::

        {"@timestamp": "2026-01-05T10:00:00.123456Z", "log.level": "info",
         "service.name": "relay-api", "event": "run_submitted",
         "run_id": "6f1c...", "external_run_id": "flow-42"}

The API logs to stdout; the CLI logs to stderr so ``--json`` output stays
parseable.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service_name = "relay"


def _add_service_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service_name)
    return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "relay",
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog (and the stdlib root logger) for this process.

    Args:
        level: Minimum level, e.g. ``"INFO"``.
        json_format: ``None`` picks JSON unless *stream* is a terminal.
        service: Value of ``service.name`` on every event.
        stream: Destination; defaults to stdout.
    """
    global _service_name
    _service_name = service
    stream = stream or sys.stdout
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if json_format is None:
        json_format = not stream.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_name,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, _ecs_field_names, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )
    # uvicorn and httpx log through the stdlib
    logging.basicConfig(format="%(message)s", stream=stream, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    if name is None:
        return structlog.get_logger()
    # initial values keep the proxy lazy, so later configure_logging calls apply
    return structlog.get_logger(logger=name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind keys for the duration of a block.

    Contextvars do not follow work into ``ThreadPoolExecutor`` threads, so
    batch workers enter their own ``LogContext(batch_id=...)``.
    """

    def __init__(self, **kwargs: Any) -> None:
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        unbind_context(*self._context)


__all__ = [
    "LogContext",
    "bind_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
