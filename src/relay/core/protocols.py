"""The ``Connection`` protocol every repository is written against.

Implementations:
    relay.ops.sqlite_conn.SqliteConnection   (sqlite3, files and ``:memory:``)
    relay.core.orm.session.SAConnectionBridge (any SQLAlchemy URL)

Run, batch and processing state changes are conditional updates, so
``execute`` must return something with a DB-API ``rowcount``: a change of
exactly one row is how a writer knows it won a race.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Synchronous DB-API-like connection with ``?`` placeholders.

    Example:
        >>> conn.execute("SELECT status FROM workflow_runs WHERE id = ?", (run_id,))
        >>> conn.fetchone()
        ('running',)
    """

    def execute(self, sql: str, params: tuple = ()) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...
