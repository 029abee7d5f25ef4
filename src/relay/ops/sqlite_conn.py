"""sqlite3 behind the :class:`~relay.core.protocols.Connection` protocol.

One cursor per connection, so ``execute`` followed by ``fetchone`` /
``fetchall`` reads the statement just run.  File databases use WAL and a
busy timeout: every batch worker thread opens its own connection to the
same file and they write concurrently.

    >>> conn = SqliteConnection(":memory:")
    >>> conn.execute("SELECT 1").fetchone()[0]
    1
"""

from __future__ import annotations

import sqlite3
from typing import Any

MEMORY = ":memory:"


class SqliteConnection:
    """``sqlite3.Connection`` with connection-level fetches and ``sqlite3.Row`` rows."""

    def __init__(self, path: str = MEMORY, *, busy_timeout: float = 30.0) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False, timeout=busy_timeout)
        self._conn.row_factory = sqlite3.Row
        if path != MEMORY:
            self._conn.execute("PRAGMA journal_mode=WAL")
        # retry_of is ON DELETE SET NULL
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._cursor = self._conn.cursor()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._cursor.execute(sql, params)

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"
