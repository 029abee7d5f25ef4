"""
Batch operations.

Preview and fan out a workflow (or document sync) over a node subtree,
then inspect or cancel the resulting batch.  Execution returns as soon as
the batch row exists; submission continues on
:meth:`~relay.execution.runtime.Runtime.dispatch`.
"""

from __future__ import annotations

from typing import Any

from relay.core.logging import get_logger
from relay.core.repositories import BatchRepository
from relay.execution.batch import BatchExecutor, BatchProgress
from relay.execution.models import Batch, BatchKind, BatchStatus, TargetKind
from relay.execution.planner import PlanFilters
from relay.ops.context import OperationContext
from relay.ops.requests import (
    BatchFilters,
    ExecuteBatchRequest,
    ListBatchesRequest,
    PreviewBatchRequest,
    SyncBatchRequest,
)
from relay.ops.result import OperationResult, PagedResult, fail_from, start_timer

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _plan_filters(filters: BatchFilters) -> PlanFilters:
    return PlanFilters(
        include_descendants=filters.include_descendants,
        skip_no_source=filters.skip_no_source,
        skip_no_output=filters.skip_no_output,
        skip_name_contains=filters.skip_name_contains or None,
        skip_doc_types=tuple(filters.skip_doc_types),
    )


def _root_required(root_node_id: int, elapsed_ms: float) -> OperationResult[Any] | None:
    if root_node_id <= 0:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "root_node_id must be a positive integer",
            details={"field": "root_node_id"},
            elapsed_ms=elapsed_ms,
        )
    return None


def preview_batch(ctx: OperationContext, request: PreviewBatchRequest) -> OperationResult[dict[str, Any]]:
    """Eligibility report for every node under the root.  Writes nothing."""
    timer = start_timer()
    if (invalid := _root_required(request.root_node_id, timer.elapsed_ms)) is not None:
        return invalid

    try:
        if request.workflow_key:
            ctx.runtime.launcher(ctx.conn).resolve_definition(request.workflow_key, TargetKind.NODE)
        report = ctx.runtime.planner().preview(request.root_node_id, _plan_filters(request.filters))
        data = report.to_dict()
        data["workflow_key"] = request.workflow_key
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "preview_batch", elapsed_ms=timer.elapsed_ms, root_node_id=request.root_node_id)


def execute_batch(ctx: OperationContext, request: ExecuteBatchRequest) -> OperationResult[dict[str, Any]]:
    """Create a workflow batch and start its submission loop."""
    timer = start_timer()
    if (invalid := _root_required(request.root_node_id, timer.elapsed_ms)) is not None:
        return invalid
    if not request.workflow_key:
        return OperationResult.fail("VALIDATION_FAILED", "workflow_key is required", elapsed_ms=timer.elapsed_ms)

    try:
        batch = BatchExecutor(ctx.runtime).start_workflow_batch(
            ctx.conn,
            root_node_id=request.root_node_id,
            workflow_key=request.workflow_key,
            filters=_plan_filters(request.filters),
            parameters=dict(request.parameters),
            concurrency=request.concurrency,
            created_by=ctx.user,
        )
        return OperationResult.ok(_accepted(ctx, batch), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "execute_batch", elapsed_ms=timer.elapsed_ms, root_node_id=request.root_node_id)


def preview_sync_batch(ctx: OperationContext, request: SyncBatchRequest) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    if (invalid := _root_required(request.root_node_id, timer.elapsed_ms)) is not None:
        return invalid

    try:
        report = ctx.runtime.planner().preview_sync(request.root_node_id, request.include_descendants)
        return OperationResult.ok(report.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "preview_sync_batch", elapsed_ms=timer.elapsed_ms, root_node_id=request.root_node_id)


def execute_sync_batch(ctx: OperationContext, request: SyncBatchRequest) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    if (invalid := _root_required(request.root_node_id, timer.elapsed_ms)) is not None:
        return invalid

    try:
        batch = BatchExecutor(ctx.runtime).start_sync_batch(
            ctx.conn,
            root_node_id=request.root_node_id,
            include_descendants=request.include_descendants,
            concurrency=request.concurrency,
            created_by=ctx.user,
        )
        return OperationResult.ok(_accepted(ctx, batch), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "execute_sync_batch", elapsed_ms=timer.elapsed_ms, root_node_id=request.root_node_id)


def _accepted(ctx: OperationContext, batch: Batch) -> dict[str, Any]:
    # Inline dispatch may already have moved the batch on; report what is stored now.
    current = BatchProgress(ctx.conn).get(batch.batch_id)
    return {
        "batch_id": current.batch_id,
        "kind": current.kind.value,
        "status": current.status.value,
        "total": current.total,
        "concurrency": current.options.get("concurrency"),
        "error_message": current.error_message,
    }


def get_batch(ctx: OperationContext, batch_id: str) -> OperationResult[dict[str, Any]]:
    """Counters, status, progress and the per-target detail list."""
    timer = start_timer()
    if not batch_id:
        return OperationResult.fail("VALIDATION_FAILED", "batch_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        batch = BatchProgress(ctx.conn).get(batch_id)
        return OperationResult.ok(batch.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_batch", elapsed_ms=timer.elapsed_ms, batch_id=batch_id)


def list_batches(ctx: OperationContext, request: ListBatchesRequest) -> PagedResult[dict[str, Any]]:
    """Newest first, without detail lists."""
    timer = start_timer()
    limit = max(1, min(request.limit, MAX_PAGE_SIZE))
    offset = max(0, request.offset)

    if request.kind is not None and request.kind not in {k.value for k in BatchKind}:
        return PagedResult.fail("VALIDATION_FAILED", f"invalid batch kind: {request.kind}", elapsed_ms=timer.elapsed_ms)
    if request.status is not None and request.status not in {s.value for s in BatchStatus}:
        return PagedResult.fail(
            "VALIDATION_FAILED", f"invalid batch status: {request.status}", elapsed_ms=timer.elapsed_ms
        )

    try:
        rows, total = BatchRepository(ctx.conn).list_batches(
            kind=request.kind, status=request.status, limit=limit, offset=offset
        )
        items = [Batch.from_row(row).to_dict(include_details=False) for row in rows]
        return PagedResult.from_items(items, total=total, limit=limit, offset=offset, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "list_batches", elapsed_ms=timer.elapsed_ms, result_cls=PagedResult)


def cancel_batch(ctx: OperationContext, batch_id: str) -> OperationResult[dict[str, Any]]:
    """Stop submitting new targets; spawned runs finish on their own."""
    timer = start_timer()
    if not batch_id:
        return OperationResult.fail("VALIDATION_FAILED", "batch_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        batch = BatchExecutor(ctx.runtime).cancel(ctx.conn, batch_id)
        return OperationResult.ok(batch.to_dict(include_details=False), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "cancel_batch", elapsed_ms=timer.elapsed_ms, batch_id=batch_id)
