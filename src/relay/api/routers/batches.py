"""
Batches router: preview and fan out a workflow (or sync) over a subtree.

Endpoints:
    POST /batch/preview           Eligibility report, no side effects
    POST /batch/execute           Start a workflow batch (202)
    POST /batch/sync/preview      Sync eligibility report
    POST /batch/sync/execute      Start a sync batch (202)
    GET  /batches                 List batches (newest first)
    GET  /batches/{batch_id}      Counters, status, progress and details
    POST /batches/{batch_id}/cancel  Stop submitting new targets

Example:
    POST /api/v1/batch/execute
    {"root_node_id": 1, "workflow_key": "summarize", "concurrency": 2}

    Response (202):
    {"data": {"batch_id": "…", "status": "pending", "total": 10, …}}

Tags:
    relay, api, batches, fan-out

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, Request
from pydantic import BaseModel, Field

from relay.api.deps import OpContext
from relay.api.schemas.common import PagedResponse, SuccessResponse
from relay.api.utils import respond
from relay.ops import batches as batch_ops
from relay.ops.requests import (
    BatchFilters,
    ExecuteBatchRequest,
    ListBatchesRequest,
    PreviewBatchRequest,
    SyncBatchRequest,
)

router = APIRouter()


class PreviewBody(BaseModel):
    """Eligibility filters shared by preview and execute."""

    root_node_id: int = Field(ge=1)
    workflow_key: str | None = None
    include_descendants: bool = True
    skip_no_source: bool = Field(default=True, description="Skip nodes without source documents")
    skip_no_output: bool = Field(default=False, description="Skip nodes with no non-source documents")
    skip_name_contains: str | None = Field(default=None, description="Skip nodes whose name contains this")
    skip_doc_types: list[str] = Field(default_factory=list, description="Skip nodes with documents of these types")

    def filters(self) -> BatchFilters:
        return BatchFilters(
            include_descendants=self.include_descendants,
            skip_no_source=self.skip_no_source,
            skip_no_output=self.skip_no_output,
            skip_name_contains=self.skip_name_contains,
            skip_doc_types=tuple(self.skip_doc_types),
        )


class ExecuteBody(PreviewBody):
    workflow_key: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    concurrency: int | None = Field(default=None, description="Concurrent submissions; <= 0 uses the default")


class SyncBody(BaseModel):
    root_node_id: int = Field(ge=1)
    include_descendants: bool = True
    concurrency: int | None = None


@router.post("/batch/preview", response_model=SuccessResponse[dict[str, Any]])
def preview_batch(ctx: OpContext, request: Request, body: PreviewBody):
    """Report ``total_nodes``, ``can_execute``, ``will_skip`` and every node's verdict."""
    result = batch_ops.preview_batch(
        ctx,
        PreviewBatchRequest(root_node_id=body.root_node_id, workflow_key=body.workflow_key, filters=body.filters()),
    )
    return respond(result, request)


@router.post("/batch/execute", response_model=SuccessResponse[dict[str, Any]], status_code=202)
def execute_batch(ctx: OpContext, request: Request, body: ExecuteBody):
    """Create the batch and return immediately; submission continues in the background."""
    result = batch_ops.execute_batch(
        ctx,
        ExecuteBatchRequest(
            root_node_id=body.root_node_id,
            workflow_key=body.workflow_key,
            filters=body.filters(),
            parameters=body.parameters,
            concurrency=body.concurrency,
        ),
    )
    return respond(result, request)


@router.post("/batch/sync/preview", response_model=SuccessResponse[dict[str, Any]])
def preview_sync_batch(ctx: OpContext, request: Request, body: SyncBody):
    result = batch_ops.preview_sync_batch(
        ctx, SyncBatchRequest(root_node_id=body.root_node_id, include_descendants=body.include_descendants)
    )
    return respond(result, request)


@router.post("/batch/sync/execute", response_model=SuccessResponse[dict[str, Any]], status_code=202)
def execute_sync_batch(ctx: OpContext, request: Request, body: SyncBody):
    result = batch_ops.execute_sync_batch(
        ctx,
        SyncBatchRequest(
            root_node_id=body.root_node_id,
            include_descendants=body.include_descendants,
            concurrency=body.concurrency,
        ),
    )
    return respond(result, request)


@router.get("/batches", response_model=PagedResponse[dict[str, Any]])
def list_batches(
    ctx: OpContext,
    request: Request,
    kind: str | None = Query(None, description="workflow | sync"),
    status: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    result = batch_ops.list_batches(ctx, ListBatchesRequest(kind=kind, status=status, limit=limit, offset=offset))
    return respond(result, request)


@router.get("/batches/{batch_id}", response_model=SuccessResponse[dict[str, Any]])
def get_batch(ctx: OpContext, request: Request, batch_id: str = Path(...)):
    return respond(batch_ops.get_batch(ctx, batch_id), request)


@router.post("/batches/{batch_id}/cancel", response_model=SuccessResponse[dict[str, Any]])
def cancel_batch(ctx: OpContext, request: Request, batch_id: str = Path(...)):
    """Targets not yet processed are skipped with reason ``batch_cancelled``."""
    return respond(batch_ops.cancel_batch(ctx, batch_id), request)
