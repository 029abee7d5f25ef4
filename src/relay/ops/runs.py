"""
Run operations.

Trigger, inspect and control individual workflow runs.  These wrap
:class:`~relay.execution.launcher.RunLauncher` and
:class:`~relay.execution.state_machine.RunStateMachine` with typed
request contracts and the :class:`OperationResult` envelope.
"""

from __future__ import annotations

from typing import Any

from relay.core.logging import get_logger
from relay.core.repositories import RunRepository
from relay.execution.launcher import LaunchRequest
from relay.execution.lineage import build_lineage, create_retry
from relay.execution.models import TERMINAL_RUN_STATUSES, ObservedStatus, RunStatus, RunTarget, WorkflowRun
from relay.execution.polling import sync_run_status
from relay.execution.reaper import StuckRunReaper
from relay.execution.retention import CleanupFilters
from relay.execution.retention import cleanup_runs as _cleanup_runs
from relay.ops.context import OperationContext
from relay.ops.requests import (
    CleanupRunsRequest,
    ListRunsRequest,
    ReapRequest,
    RetryRunRequest,
    RunCallbackRequest,
    TriggerRunRequest,
)
from relay.ops.result import OperationResult, PagedResult, fail_from, start_timer

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100
CALLBACK_STATUSES = frozenset({RunStatus.RUNNING, *TERMINAL_RUN_STATUSES})


def _parse_statuses(values: tuple[str, ...] | list[str]) -> tuple[RunStatus, ...]:
    try:
        return tuple(RunStatus(v) for v in values)
    except ValueError:
        allowed = ", ".join(s.value for s in RunStatus)
        raise ValueError(f"invalid status in {list(values)}; expected one of: {allowed}") from None


def trigger_run(ctx: OperationContext, request: TriggerRunRequest) -> OperationResult[dict[str, Any]]:
    """Create a run for a node or document and submit it to the engine.

    Validation failures (unknown or disabled workflow, wrong target kind,
    bad ``retry_of``) write nothing.  A submission failure still returns
    the run, now ``failed`` with the engine error recorded on it.
    """
    timer = start_timer()

    if not request.workflow_key:
        return OperationResult.fail("VALIDATION_FAILED", "workflow_key is required", elapsed_ms=timer.elapsed_ms)
    if (request.node_id is None) == (request.document_id is None):
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "exactly one of node_id or document_id is required",
            elapsed_ms=timer.elapsed_ms,
        )

    target = RunTarget.node(request.node_id) if request.node_id is not None else RunTarget.document(request.document_id)
    try:
        outcome = ctx.runtime.launcher(ctx.conn).launch(
            LaunchRequest(
                workflow_key=request.workflow_key,
                target=target,
                parameters=dict(request.parameters),
                retry_of=request.retry_of,
                created_by=ctx.user,
            )
        )
        return OperationResult.ok(outcome.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "trigger_run", elapsed_ms=timer.elapsed_ms, workflow_key=request.workflow_key)


def get_run(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    """Return full detail for a single run."""
    timer = start_timer()

    if not run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        run = ctx.runtime.state_machine(ctx.conn).get(run_id)
        return OperationResult.ok(run.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_run", elapsed_ms=timer.elapsed_ms, run_id=run_id)


def list_runs(ctx: OperationContext, request: ListRunsRequest) -> PagedResult[dict[str, Any]]:
    """List runs newest first, each annotated with its retry summary."""
    timer = start_timer()
    limit = max(1, min(request.limit, MAX_PAGE_SIZE))
    offset = max(0, request.offset)

    try:
        statuses = _parse_statuses(request.statuses)
    except ValueError as exc:
        return PagedResult.fail("VALIDATION_FAILED", str(exc), elapsed_ms=timer.elapsed_ms)

    try:
        repo = RunRepository(ctx.conn)
        rows, total = repo.list_runs(
            node_id=request.node_id,
            document_id=request.document_id,
            workflow_key=request.workflow_key,
            statuses=[s.value for s in statuses],
            batch_id=request.batch_id,
            limit=limit,
            offset=offset,
        )
        runs = [WorkflowRun.from_row(row) for row in rows]
        stats = repo.retry_stats([run.id for run in runs])
        items = []
        for run in runs:
            entry = stats.get(run.id, {})
            items.append(
                {
                    **run.to_dict(),
                    "retry_count": entry.get("retry_count", 0),
                    "latest_retry_status": entry.get("latest_retry_status"),
                }
            )
        return PagedResult.from_items(items, total=total, limit=limit, offset=offset, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "list_runs", elapsed_ms=timer.elapsed_ms, result_cls=PagedResult)


def cancel_run(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    """Cancel a pending run locally, or a running run through the engine."""
    timer = start_timer()

    if not run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        machine = ctx.runtime.state_machine(ctx.conn)
        if ctx.dry_run:
            return OperationResult.ok(machine.get(run_id).to_dict(), elapsed_ms=timer.elapsed_ms)
        run = machine.cancel(run_id)
        return OperationResult.ok(run.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "cancel_run", elapsed_ms=timer.elapsed_ms, run_id=run_id)


def force_terminate_run(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    """Mark a run stuck past the zombie threshold as failed."""
    timer = start_timer()

    if not run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        run = ctx.runtime.state_machine(ctx.conn).force_terminate(run_id)
        return OperationResult.ok(run.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "force_terminate_run", elapsed_ms=timer.elapsed_ms, run_id=run_id)


def retry_run(ctx: OperationContext, request: RetryRunRequest) -> OperationResult[dict[str, Any]]:
    """Create a new attempt for a failed or cancelled run."""
    timer = start_timer()

    if not request.run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms)

    try:
        outcome = create_retry(
            ctx.runtime.launcher(ctx.conn),
            request.run_id,
            parameters=dict(request.parameters),
            created_by=ctx.user,
        )
        data = outcome.to_dict()
        data["retry_of"] = request.run_id
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "retry_run", elapsed_ms=timer.elapsed_ms, run_id=request.run_id)


def get_lineage(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        return OperationResult.ok(build_lineage(ctx.conn, run_id).to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_lineage", elapsed_ms=timer.elapsed_ms, run_id=run_id)


def refresh_run(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    """Poll the engine for a run's flow state and apply it."""
    timer = start_timer()
    try:
        outcome = sync_run_status(ctx.runtime.state_machine(ctx.conn), ctx.runtime.engine, run_id)
        data = {**outcome.run.to_dict(), "applied": outcome.applied, "reason": outcome.reason}
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "refresh_run", elapsed_ms=timer.elapsed_ms, run_id=run_id)


def handle_run_callback(ctx: OperationContext, request: RunCallbackRequest) -> OperationResult[dict[str, Any]]:
    """Apply a flow's status report.

    Reports for runs already in a terminal state are acknowledged and
    change nothing.
    """
    timer = start_timer()

    try:
        status = RunStatus(request.status)
    except ValueError:
        status = None
    if status not in CALLBACK_STATUSES:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"invalid callback status: {request.status!r}",
            details={"field": "status"},
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        outcome = ctx.runtime.state_machine(ctx.conn).apply(
            ObservedStatus(
                run_id=request.run_id,
                status=status,
                result=request.result,
                error_message=request.error_message,
                external_run_id=request.external_run_id,
                source="callback",
            )
        )
        logger.info(
            "run_callback_received",
            run_id=request.run_id,
            status=status.value,
            applied=outcome.applied,
            reason=outcome.reason,
        )
        return OperationResult.ok(
            {
                "run_id": outcome.run.id,
                "status": outcome.run.status.value,
                "applied": outcome.applied,
                "reason": outcome.reason,
            },
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        return fail_from(exc, "handle_run_callback", elapsed_ms=timer.elapsed_ms, run_id=request.run_id)


def reap_runs(ctx: OperationContext, request: ReapRequest) -> OperationResult[dict[str, Any]]:
    """Force-terminate runs stuck longer than the threshold."""
    timer = start_timer()

    if request.threshold_minutes is not None and request.threshold_minutes < 1:
        return OperationResult.fail(
            "VALIDATION_FAILED", "threshold_minutes must be >= 1", elapsed_ms=timer.elapsed_ms
        )

    try:
        reaper = StuckRunReaper(ctx.runtime.state_machine(ctx.conn), engine=ctx.runtime.engine)
        report = reaper.reap(request.threshold_minutes)
        return OperationResult.ok(report.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "reap_runs", elapsed_ms=timer.elapsed_ms)


def cleanup_runs(ctx: OperationContext, request: CleanupRunsRequest) -> OperationResult[dict[str, Any]]:
    """Delete old runs matching the filters (optionally reclassifying zombies first)."""
    timer = start_timer()

    try:
        statuses = _parse_statuses(request.statuses)
    except ValueError as exc:
        return OperationResult.fail("VALIDATION_FAILED", str(exc), elapsed_ms=timer.elapsed_ms)

    filters = CleanupFilters(
        before=request.before,
        statuses=statuses,
        workflow_key=request.workflow_key,
        node_id=request.node_id,
        document_id=request.document_id,
        include_zombie=request.include_zombie,
        force_cleanup_active=request.force_cleanup_active,
        dry_run=request.dry_run or ctx.dry_run,
    )
    try:
        report = _cleanup_runs(ctx.runtime.state_machine(ctx.conn), filters)
        return OperationResult.ok(report.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "cleanup_runs", elapsed_ms=timer.elapsed_ms)
