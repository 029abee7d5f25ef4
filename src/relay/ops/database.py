"""
Database operations.

Thin wrappers around ``relay.core.schema`` for table creation, row counts
and health checks.
"""

from __future__ import annotations

from typing import Any

from relay.core.logging import get_logger
from relay.core.schema import TABLE_NAMES, apply_schema, table_counts
from relay.ops.context import OperationContext
from relay.ops.result import OperationResult, fail_from, start_timer

logger = get_logger(__name__)


def initialize_database(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    """Create all relay tables and indexes (idempotent)."""
    timer = start_timer()

    if ctx.dry_run:
        return OperationResult.ok(
            {"tables": list(TABLE_NAMES), "dry_run": True}, elapsed_ms=timer.elapsed_ms
        )

    try:
        tables = apply_schema(ctx.conn)
        return OperationResult.ok({"tables": tables, "dry_run": False}, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "initialize_database", elapsed_ms=timer.elapsed_ms)


def get_table_counts(ctx: OperationContext) -> OperationResult[dict[str, int]]:
    timer = start_timer()
    try:
        return OperationResult.ok(table_counts(ctx.conn), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_table_counts", elapsed_ms=timer.elapsed_ms)


def check_health(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    """Database connectivity plus the reachability of the remote collaborators.

    The operation itself succeeds whenever the database answers; an
    unreachable engine degrades ``status`` instead of failing.
    """
    timer = start_timer()
    checks: dict[str, Any] = {}

    try:
        ctx.conn.execute("SELECT 1")
        ctx.conn.fetchone()
        checks["database"] = "ok"
    except Exception as exc:
        logger.warning("health_database_failed", error=str(exc))
        return OperationResult.fail(
            "UNAVAILABLE", f"database unreachable: {exc}", elapsed_ms=timer.elapsed_ms
        )

    engine = ctx.runtime.engine
    if engine is None:
        checks["engine"] = "not_configured"
    else:
        checks["engine"] = "ok" if engine.health() else "unreachable"
    checks["content_store"] = "configured" if ctx.runtime.content is not None else "not_configured"

    status = "degraded" if checks["engine"] == "unreachable" else "ok"
    return OperationResult.ok({"status": status, "checks": checks}, elapsed_ms=timer.elapsed_ms)
