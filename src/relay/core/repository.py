"""Base class for the relay repositories.

Repositories issue plain SQL with ``?`` placeholders through a
:class:`~relay.core.protocols.Connection` and hand rows back as dicts.
They never commit on their own; the service that owns the unit of work
does (state machine, batch progress, definition sync).

JSON columns (``parameters``, ``result``, ``details``, ``options``,
``tags``...) are stored as text and decoded with :func:`load_json`.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from sqlalchemy.exc import IntegrityError as SAIntegrityError

from relay.core.protocols import Connection

# Raised when a unique constraint rejects an insert (processing idempotency keys).
INTEGRITY_ERRORS: tuple[type[Exception], ...] = (sqlite3.IntegrityError, SAIntegrityError)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def load_json(value: Any, default: Any = None) -> Any:
    """Decode a JSON column; drivers with native JSON hand back dicts/lists already."""
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class BaseRepository:
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: tuple = ()) -> Any:
        return self.conn.execute(sql, params)

    def update(self, sql: str, params: tuple = ()) -> int:
        """Run an UPDATE/DELETE and return how many rows it changed.

        A conditional update (``... WHERE id = ? AND status IN (...)``)
        that returns 0 lost its race.
        """
        cursor = self.conn.execute(sql, params)
        return int(getattr(cursor, "rowcount", 0) or 0)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        cursor = self.conn.execute(sql, params)
        rows = cursor.fetchall()
        if not rows:
            return []
        if not isinstance(rows[0], tuple):
            return [dict(row) for row in rows]  # sqlite3.Row
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in rows]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def scalar(self, sql: str, params: tuple = ()) -> Any:
        self.conn.execute(sql, params)
        row = self.conn.fetchone()
        return row[0] if row else None

    def insert(self, table: str, data: dict[str, Any]) -> Any:
        columns = ", ".join(data)
        placeholders = ", ".join(["?"] * len(data))
        return self.conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(data.values()))

    def commit(self) -> None:
        self.conn.commit()


__all__ = [
    "BaseRepository",
    "INTEGRITY_ERRORS",
    "dump_json",
    "load_json",
]
