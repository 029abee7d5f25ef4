"""
Document sync operations.

Trigger a sync for one document, read its status cache, and apply the
sync flow's callback.
"""

from __future__ import annotations

from typing import Any

from relay.core.logging import get_logger
from relay.execution.sync import DocumentSyncer
from relay.ops.context import OperationContext
from relay.ops.requests import SyncCallbackRequest
from relay.ops.result import OperationResult, fail_from, start_timer

logger = get_logger(__name__)


def trigger_sync(ctx: OperationContext, document_id: int) -> OperationResult[dict[str, Any]]:
    """Start a sync attempt, or report the one already in flight."""
    timer = start_timer()
    try:
        outcome = DocumentSyncer(ctx.conn, ctx.runtime).trigger(document_id, created_by=ctx.user)
        return OperationResult.ok(outcome.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "trigger_sync", elapsed_ms=timer.elapsed_ms, document_id=document_id)


def get_sync_status(ctx: OperationContext, document_id: int) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        status = DocumentSyncer(ctx.conn, ctx.runtime).get_status(document_id)
        return OperationResult.ok(status.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_sync_status", elapsed_ms=timer.elapsed_ms, document_id=document_id)


def handle_sync_callback(ctx: OperationContext, request: SyncCallbackRequest) -> OperationResult[dict[str, Any]]:
    """Resolve the pending attempt named by ``event_id``.

    Reports for another event, or for an attempt already resolved, are
    acknowledged with ``applied = false``.
    """
    timer = start_timer()
    if not request.event_id:
        return OperationResult.fail("VALIDATION_FAILED", "event_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        status, applied = DocumentSyncer(ctx.conn, ctx.runtime).handle_callback(
            request.document_id,
            request.event_id,
            request.status,
            error=request.error,
            external_run_id=request.external_run_id,
        )
        return OperationResult.ok({**status.to_dict(), "applied": applied}, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(
            exc,
            "handle_sync_callback",
            elapsed_ms=timer.elapsed_ms,
            document_id=request.document_id,
            event_id=request.event_id,
        )
