"""SQLAlchemy engines and the ``Connection`` bridge.

Repositories speak the :class:`~relay.core.protocols.Connection` protocol
with ``?`` placeholders.  For database URLs that are not plain SQLite files,
:func:`relay.core.connection.create_connection` wraps a SQLAlchemy session in
:class:`SAConnectionBridge` so the same repositories run unchanged.

Batch workers open one connection per thread; they all share the engine
(and its pool) for their URL through :func:`engine_for`.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

_PLACEHOLDER = re.compile(r"\?")

_engines: dict[str, Engine] = {}
_engines_lock = threading.Lock()


def create_relay_engine(url: str, *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create an engine; SQLite URLs get WAL and a busy timeout for concurrent workers."""
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
        return create_engine(url, echo=echo, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def engine_for(url: str) -> Engine:
    """Process-wide engine for *url*."""
    with _engines_lock:
        engine = _engines.get(url)
        if engine is None:
            engine = _engines[url] = create_relay_engine(url)
        return engine


def dispose_engines() -> None:
    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()


class RelaySession(Session):
    """Session that keeps loaded attributes after commit."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def _named(sql: str) -> str:
    counter = iter(range(len(sql)))
    return _PLACEHOLDER.sub(lambda _: f":p{next(counter)}", sql)


class SAConnectionBridge:
    """A SQLAlchemy ``Session`` presented as a relay ``Connection``."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._result: Any = None

    @property
    def session(self) -> Session:
        return self._session

    def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> SAConnectionBridge:
        if parameters:
            bound = {f"p{i}": value for i, value in enumerate(parameters)}
            self._result = self._session.execute(text(_named(sql)), bound)
        else:
            self._result = self._session.execute(text(sql))
        return self

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._result is None or not self._result.returns_rows:
            return None
        row = self._result.fetchone()
        return tuple(row) if row is not None else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self._result is None or not self._result.returns_rows:
            return []
        return [tuple(row) for row in self._result.fetchall()]

    @property
    def rowcount(self) -> int:
        return 0 if self._result is None else self._result.rowcount

    @property
    def description(self) -> list[tuple[Any, ...]] | None:
        """Column names in DB-API shape, used to build row dicts."""
        if self._result is None or not self._result.returns_rows:
            return None
        return [(key, None, None, None, None, None, None) for key in self._result.keys()]

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()
