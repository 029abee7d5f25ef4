"""
Target router: trigger a workflow against one node or one document.

Endpoints:
    POST /nodes/{node_id}/workflows/{workflow_key}/runs
    POST /documents/{document_id}/workflows/{workflow_key}/runs
    GET  /nodes/{node_id}/runs
    GET  /documents/{document_id}/runs

Example:
    POST /api/v1/nodes/42/workflows/summarize/runs
    {"parameters": {"depth": 2}}

    Response (201):
    {"data": {"run_id": "…", "status": "running", "submitted": true, …}}
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, Request
from pydantic import BaseModel, Field

from relay.api.deps import OpContext
from relay.api.schemas.common import PagedResponse, SuccessResponse
from relay.api.utils import respond
from relay.ops import runs as run_ops
from relay.ops.requests import ListRunsRequest, TriggerRunRequest

router = APIRouter()


class TriggerBody(BaseModel):
    parameters: dict[str, Any] = Field(default_factory=dict, description="User flow parameters")
    retry_of_id: str | None = Field(default=None, description="Failed or cancelled run this one retries")


@router.post(
    "/nodes/{node_id}/workflows/{workflow_key}/runs",
    response_model=SuccessResponse[dict[str, Any]],
    status_code=201,
)
def trigger_node_run(
    ctx: OpContext,
    request: Request,
    node_id: int = Path(..., ge=1),
    workflow_key: str = Path(...),
    body: TriggerBody | None = None,
):
    body = body or TriggerBody()
    result = run_ops.trigger_run(
        ctx,
        TriggerRunRequest(
            workflow_key=workflow_key,
            node_id=node_id,
            parameters=body.parameters,
            retry_of=body.retry_of_id,
        ),
    )
    return respond(result, request)


@router.post(
    "/documents/{document_id}/workflows/{workflow_key}/runs",
    response_model=SuccessResponse[dict[str, Any]],
    status_code=201,
)
def trigger_document_run(
    ctx: OpContext,
    request: Request,
    document_id: int = Path(..., ge=1),
    workflow_key: str = Path(...),
    body: TriggerBody | None = None,
):
    body = body or TriggerBody()
    result = run_ops.trigger_run(
        ctx,
        TriggerRunRequest(
            workflow_key=workflow_key,
            document_id=document_id,
            parameters=body.parameters,
            retry_of=body.retry_of_id,
        ),
    )
    return respond(result, request)


@router.get("/nodes/{node_id}/runs", response_model=PagedResponse[dict[str, Any]])
def list_node_runs(
    ctx: OpContext,
    request: Request,
    node_id: int = Path(..., ge=1),
    workflow_key: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    result = run_ops.list_runs(
        ctx, ListRunsRequest(node_id=node_id, workflow_key=workflow_key, limit=limit, offset=offset)
    )
    return respond(result, request)


@router.get("/documents/{document_id}/runs", response_model=PagedResponse[dict[str, Any]])
def list_document_runs(
    ctx: OpContext,
    request: Request,
    document_id: int = Path(..., ge=1),
    workflow_key: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    result = run_ops.list_runs(
        ctx, ListRunsRequest(document_id=document_id, workflow_key=workflow_key, limit=limit, offset=offset)
    )
    return respond(result, request)
