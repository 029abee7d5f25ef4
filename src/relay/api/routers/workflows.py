"""
Workflows router: workflow definition administration.

Endpoints:
    GET   /workflows                    List definitions (filters: source, type, sync_status, enabled)
    POST  /workflows                    Register or update a manual definition
    POST  /workflows/sync               Reconcile against the engine's deployments
    GET   /workflows/{workflow_key}     Get one definition
    POST  /workflows/{workflow_key}/enable
    POST  /workflows/{workflow_key}/disable
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, Request
from pydantic import BaseModel, Field

from relay.api.deps import OpContext
from relay.api.schemas.common import PagedResponse, SuccessResponse
from relay.api.utils import respond
from relay.ops import workflows as workflow_ops
from relay.ops.requests import ListWorkflowsRequest, RegisterWorkflowRequest

router = APIRouter(prefix="/workflows")


class RegisterBody(BaseModel):
    workflow_key: str
    deployment_name: str = Field(description="flow/deployment name on the engine")
    workflow_type: str = Field(default="node", description="node | document")
    name: str | None = None
    description: str | None = None
    deployment_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    parameter_schema: dict[str, Any] | None = None
    enabled: bool = True


@router.get("", response_model=PagedResponse[dict[str, Any]])
def list_workflows(
    ctx: OpContext,
    request: Request,
    source: str | None = Query(None, description="engine | manual"),
    type: str | None = Query(None, description="node | document"),
    sync_status: str | None = Query(None, description="active | missing | error"),
    enabled: bool | None = Query(None),
):
    result = workflow_ops.list_workflows(
        ctx,
        ListWorkflowsRequest(source=source, workflow_type=type, sync_status=sync_status, enabled=enabled),
    )
    return respond(result, request)


@router.post("", response_model=SuccessResponse[dict[str, Any]], status_code=201)
def register_workflow(ctx: OpContext, request: Request, body: RegisterBody):
    result = workflow_ops.register_workflow(ctx, RegisterWorkflowRequest(**body.model_dump()))
    return respond(result, request)


@router.post("/sync", response_model=SuccessResponse[dict[str, Any]])
def sync_workflows(ctx: OpContext, request: Request):
    """Returns ``{created, updated, unchanged, missing, errors}``; 409 while another sync runs."""
    return respond(workflow_ops.sync_workflows(ctx), request)


@router.get("/{workflow_key}", response_model=SuccessResponse[dict[str, Any]])
def get_workflow(ctx: OpContext, request: Request, workflow_key: str = Path(...)):
    return respond(workflow_ops.get_workflow(ctx, workflow_key), request)


@router.post("/{workflow_key}/enable", response_model=SuccessResponse[dict[str, Any]])
def enable_workflow(ctx: OpContext, request: Request, workflow_key: str = Path(...)):
    return respond(workflow_ops.set_workflow_enabled(ctx, workflow_key, True), request)


@router.post("/{workflow_key}/disable", response_model=SuccessResponse[dict[str, Any]])
def disable_workflow(ctx: OpContext, request: Request, workflow_key: str = Path(...)):
    return respond(workflow_ops.set_workflow_enabled(ctx, workflow_key, False), request)
