"""Open relay's database from ``RELAY_DATABASE_URL``.

Accepted forms::

    memory | :memory: | None          private in-memory SQLite database
    sqlite:///relay.db | relay.db     SQLite file (relative paths honour data_dir)
    postgresql://user:pw@host/relay   any other SQLAlchemy URL, via SAConnectionBridge

An in-memory database exists only for the connection that created it, so
the batch coordinator and the reaper, which open connections of their own,
need a file or a server.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from relay.core.logging import get_logger

logger = get_logger(__name__)

MEMORY = ":memory:"
_SQLITE_PREFIXES = ("sqlite:///", "sqlite://")


@dataclass(frozen=True)
class ConnectionInfo:
    """Where a connection points; ``resolved_path`` is set for SQLite files only."""

    backend: str
    persistent: bool
    url: str
    resolved_path: str | None = None


def _sqlite_target(db: str | None) -> str | None:
    """The SQLite path *db* names, ``MEMORY``, or ``None`` for a non-SQLite URL."""
    if db is None or db in ("", "memory", MEMORY):
        return MEMORY
    for prefix in _SQLITE_PREFIXES:
        if db.startswith(prefix):
            return db[len(prefix):] or MEMORY
    if "://" in db:
        return None
    return db


def _open_sqlite(target: str, url: str, data_dir: str | None) -> tuple[Any, ConnectionInfo]:
    from relay.ops.sqlite_conn import SqliteConnection

    if target == MEMORY:
        return SqliteConnection(MEMORY), ConnectionInfo(backend="sqlite", persistent=False, url=MEMORY)

    path = Path(target).expanduser()
    if data_dir and not path.is_absolute():
        path = Path(data_dir).expanduser() / path
    path.parent.mkdir(parents=True, exist_ok=True)
    resolved = str(path.resolve())
    return SqliteConnection(resolved), ConnectionInfo(
        backend="sqlite", persistent=True, url=url, resolved_path=resolved
    )


def _open_sqlalchemy(url: str) -> tuple[Any, ConnectionInfo]:
    from relay.core.orm.session import RelaySession, SAConnectionBridge, engine_for

    engine = engine_for(url)
    bridge = SAConnectionBridge(RelaySession(bind=engine))
    return bridge, ConnectionInfo(backend=engine.dialect.name, persistent=True, url=url)


def create_connection(
    db: str | None = None,
    *,
    init_schema: bool = False,
    data_dir: str | None = None,
) -> tuple[Any, ConnectionInfo]:
    """Open a connection for *db* and describe it.

    With ``init_schema`` the relay tables are created first (idempotent).
    """
    target = _sqlite_target(db)
    if target is None:
        conn, info = _open_sqlalchemy(db)
    else:
        conn, info = _open_sqlite(target, db or MEMORY, data_dir)

    if init_schema:
        from relay.core.schema import apply_schema

        apply_schema(conn)

    logger.debug("connection_opened", backend=info.backend, persistent=info.persistent)
    return conn, info


def connection_factory(db: str | None, *, data_dir: str | None = None) -> Callable[[], Any]:
    """A callable that opens a fresh connection each time; the caller closes it."""

    def _open() -> Any:
        return create_connection(db, data_dir=data_dir)[0]

    return _open


def close_connection(conn: Any) -> None:
    close = getattr(conn, "close", None)
    if close is not None:
        close()
