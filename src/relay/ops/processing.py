"""
Document processing operations.

Trigger configured pipelines against documents, apply their callbacks,
and inspect or cancel the resulting jobs.  Triggering is keyed by
``(document, version, pipeline, dry_run)``: a repeated trigger returns
the existing job with ``deduplicated = true``.
"""

from __future__ import annotations

from typing import Any

from relay.core.logging import get_logger
from relay.execution.processing import ProcessingService
from relay.ops.context import OperationContext
from relay.ops.requests import ListJobsRequest, ProcessingCallbackRequest, TriggerProcessingRequest
from relay.ops.result import OperationResult, PagedResult, fail_from, start_timer

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _service(ctx: OperationContext) -> ProcessingService:
    return ProcessingService(ctx.conn, ctx.runtime)


def list_pipelines(ctx: OperationContext) -> OperationResult[list[dict[str, Any]]]:
    timer = start_timer()
    pipelines = [p.model_dump() for p in _service(ctx).pipelines()]
    return OperationResult.ok(pipelines, elapsed_ms=timer.elapsed_ms)


def trigger_processing(ctx: OperationContext, request: TriggerProcessingRequest) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    if not request.pipeline:
        return OperationResult.fail("VALIDATION_FAILED", "pipeline is required", elapsed_ms=timer.elapsed_ms)

    try:
        outcome = _service(ctx).trigger(
            request.document_id,
            request.pipeline,
            dry_run=request.dry_run,
            parameters=dict(request.parameters),
            created_by=ctx.user,
        )
        return OperationResult.ok(outcome.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(
            exc,
            "trigger_processing",
            elapsed_ms=timer.elapsed_ms,
            document_id=request.document_id,
            pipeline=request.pipeline,
        )


def get_job(ctx: OperationContext, job_id: str) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        return OperationResult.ok(_service(ctx).get(job_id).to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_job", elapsed_ms=timer.elapsed_ms, job_id=job_id)


def list_jobs(ctx: OperationContext, request: ListJobsRequest) -> PagedResult[dict[str, Any]]:
    timer = start_timer()
    limit = max(1, min(request.limit, MAX_PAGE_SIZE))
    offset = max(0, request.offset)
    try:
        jobs, total = _service(ctx).list_for_document(request.document_id, limit=limit, offset=offset)
        return PagedResult.from_items(
            [job.to_dict() for job in jobs], total=total, limit=limit, offset=offset, elapsed_ms=timer.elapsed_ms
        )
    except Exception as exc:
        return fail_from(exc, "list_jobs", elapsed_ms=timer.elapsed_ms, result_cls=PagedResult)


def handle_processing_callback(
    ctx: OperationContext, request: ProcessingCallbackRequest
) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        job, applied = _service(ctx).handle_callback(
            request.job_id,
            request.status,
            result=request.result,
            error_message=request.error_message,
            progress=request.progress,
        )
        return OperationResult.ok({**job.to_dict(), "applied": applied}, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "handle_processing_callback", elapsed_ms=timer.elapsed_ms, job_id=request.job_id)


def cancel_job(ctx: OperationContext, job_id: str) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        return OperationResult.ok(_service(ctx).cancel(job_id).to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "cancel_job", elapsed_ms=timer.elapsed_ms, job_id=job_id)
