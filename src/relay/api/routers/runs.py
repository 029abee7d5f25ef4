"""
Runs router: inspect, cancel, terminate, retry and clean up workflow runs.

Endpoints:
    GET    /runs                          List runs with filtering/pagination
    DELETE /runs                          Delete old runs (retention)
    POST   /runs/reap                     Force-terminate stuck runs
    GET    /runs/{run_id}                 Get full run detail
    POST   /runs/{run_id}/cancel          Cancel a pending or running run
    POST   /runs/{run_id}/force-terminate Fail a run stuck past the zombie threshold
    POST   /runs/{run_id}/retry           Create a new attempt for a failed run
    GET    /runs/{run_id}/lineage         Original run and every retry
    POST   /runs/{run_id}/refresh         Poll the engine and apply its state

Runs are created through the target routes
(``/nodes/{id}/workflows/{key}/runs``, ``/documents/{id}/workflows/{key}/runs``).

Tags:
    relay, api, runs, lifecycle

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Path, Query, Request
from pydantic import BaseModel, Field

from relay.api.deps import OpContext
from relay.api.schemas.common import PagedResponse, SuccessResponse
from relay.api.utils import respond
from relay.ops import runs as run_ops
from relay.ops.requests import CleanupRunsRequest, ListRunsRequest, ReapRequest, RetryRunRequest

router = APIRouter(prefix="/runs")


class RetryBody(BaseModel):
    """Parameter overrides for the new attempt (merged over the original's)."""

    parameters: dict[str, Any] = Field(default_factory=dict)


class ReapBody(BaseModel):
    threshold_minutes: int | None = Field(default=None, ge=1, description="Defaults to the zombie threshold")


@router.get("", response_model=PagedResponse[dict[str, Any]])
def list_runs(
    ctx: OpContext,
    request: Request,
    node_id: int | None = Query(None),
    document_id: int | None = Query(None),
    workflow_key: str | None = Query(None),
    status: list[str] | None = Query(None, description="Repeatable: pending|running|success|failed|cancelled"),
    batch_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List runs newest first.  Each item carries ``retry_count`` and ``latest_retry_status``."""
    result = run_ops.list_runs(
        ctx,
        ListRunsRequest(
            node_id=node_id,
            document_id=document_id,
            workflow_key=workflow_key,
            statuses=tuple(status or ()),
            batch_id=batch_id,
            limit=limit,
            offset=offset,
        ),
    )
    return respond(result, request)


@router.delete("", response_model=SuccessResponse[dict[str, Any]])
def cleanup_runs(
    ctx: OpContext,
    request: Request,
    before_date: datetime | None = Query(None, description="Only runs created before this instant"),
    status: list[str] | None = Query(None, description="Defaults to success, failed, cancelled"),
    workflow_key: str | None = Query(None),
    node_id: int | None = Query(None),
    document_id: int | None = Query(None),
    include_zombie: bool = Query(False, description="Fail stuck active runs first, then delete them"),
    force_cleanup_active: bool = Query(False, description="Allow deleting pending/running runs as-is"),
    dry_run: bool = Query(False),
):
    """Delete runs matching the filters.

    Response: ``{deleted_count, zombie_count, dry_run}``.
    """
    result = run_ops.cleanup_runs(
        ctx,
        CleanupRunsRequest(
            before=before_date,
            statuses=tuple(status or ()),
            workflow_key=workflow_key,
            node_id=node_id,
            document_id=document_id,
            include_zombie=include_zombie,
            force_cleanup_active=force_cleanup_active,
            dry_run=dry_run,
        ),
    )
    return respond(result, request)


@router.post("/reap", response_model=SuccessResponse[dict[str, Any]])
def reap_runs(ctx: OpContext, request: Request, body: ReapBody | None = None):
    body = body or ReapBody()
    return respond(run_ops.reap_runs(ctx, ReapRequest(threshold_minutes=body.threshold_minutes)), request)


@router.get("/{run_id}", response_model=SuccessResponse[dict[str, Any]])
def get_run(ctx: OpContext, request: Request, run_id: str = Path(..., description="Run UUID")):
    return respond(run_ops.get_run(ctx, run_id), request)


@router.post("/{run_id}/cancel", response_model=SuccessResponse[dict[str, Any]])
def cancel_run(ctx: OpContext, request: Request, run_id: str = Path(..., description="Run UUID")):
    """Cancel a run.

    Raises:
        404 NOT_FOUND: no such run.
        409 NOT_CANCELLABLE: the run is already terminal.
        503 UNAVAILABLE: the run is running and the engine could not be reached.
    """
    return respond(run_ops.cancel_run(ctx, run_id), request)


@router.post("/{run_id}/force-terminate", response_model=SuccessResponse[dict[str, Any]])
def force_terminate_run(ctx: OpContext, request: Request, run_id: str = Path(..., description="Run UUID")):
    return respond(run_ops.force_terminate_run(ctx, run_id), request)


@router.post("/{run_id}/retry", response_model=SuccessResponse[dict[str, Any]], status_code=201)
def retry_run(ctx: OpContext, request: Request, run_id: str = Path(...), body: RetryBody | None = None):
    body = body or RetryBody()
    return respond(run_ops.retry_run(ctx, RetryRunRequest(run_id=run_id, parameters=body.parameters)), request)


@router.get("/{run_id}/lineage", response_model=SuccessResponse[dict[str, Any]])
def get_lineage(ctx: OpContext, request: Request, run_id: str = Path(...)):
    return respond(run_ops.get_lineage(ctx, run_id), request)


@router.post("/{run_id}/refresh", response_model=SuccessResponse[dict[str, Any]])
def refresh_run(ctx: OpContext, request: Request, run_id: str = Path(...)):
    return respond(run_ops.refresh_run(ctx, run_id), request)
