"""Schema bootstrap.

Compiles the ORM metadata into ``CREATE TABLE IF NOT EXISTS`` /
``CREATE INDEX IF NOT EXISTS`` statements and applies them through the
``Connection`` protocol, so the same bootstrap works for the SQLite adapter
and for the SQLAlchemy bridge.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.schema import CreateIndex, CreateTable

from relay.core.logging import get_logger
from relay.core.orm import RelayBase, SAConnectionBridge
from relay.core.protocols import Connection

logger = get_logger(__name__)

TABLE_NAMES = tuple(RelayBase.metadata.tables.keys())


def schema_statements(dialect: Dialect | None = None) -> list[str]:
    """Return the idempotent DDL for every relay table, in dependency order."""
    dialect = dialect or sqlite.dialect()
    statements: list[str] = []
    for table in RelayBase.metadata.sorted_tables:
        statements.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)).strip())
        for index in sorted(table.indexes, key=lambda ix: ix.name or ""):
            statements.append(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)).strip())
    return statements


def _dialect_for(conn: Any) -> Dialect | None:
    if isinstance(conn, SAConnectionBridge) and conn.session.bind is not None:
        return conn.session.bind.dialect
    return None


def apply_schema(conn: Connection) -> list[str]:
    """Create all tables and indexes that do not exist yet.

    Returns:
        The table names covered by the bootstrap.
    """
    for statement in schema_statements(_dialect_for(conn)):
        conn.execute(statement)
    conn.commit()
    logger.info("schema_applied", tables=len(TABLE_NAMES))
    return list(TABLE_NAMES)


def table_counts(conn: Connection) -> dict[str, int]:
    """Row counts per relay table (used by ``relay db status``)."""
    counts: dict[str, int] = {}
    for name in TABLE_NAMES:
        conn.execute(f"SELECT COUNT(*) FROM {name}")
        row = conn.fetchone()
        counts[name] = int(row[0]) if row else 0
    return counts
