"""
Processing router: document pipelines.

Endpoints:
    GET  /processing/pipelines
    POST /processing/jobs                 Trigger (deduplicated by content)
    GET  /processing/jobs?document_id=…   List a document's jobs
    GET  /processing/jobs/{job_id}
    POST /processing/jobs/{job_id}/cancel
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, Request
from pydantic import BaseModel, Field

from relay.api.deps import OpContext
from relay.api.schemas.common import PagedResponse, SuccessResponse
from relay.api.utils import respond
from relay.ops import processing as processing_ops
from relay.ops.requests import ListJobsRequest, TriggerProcessingRequest

router = APIRouter(prefix="/processing")


class TriggerBody(BaseModel):
    document_id: int = Field(ge=1)
    pipeline: str
    dry_run: bool = False
    parameters: dict[str, Any] = Field(default_factory=dict)


@router.get("/pipelines", response_model=SuccessResponse[list[dict[str, Any]]])
def list_pipelines(ctx: OpContext, request: Request):
    return respond(processing_ops.list_pipelines(ctx), request)


@router.post("/jobs", response_model=SuccessResponse[dict[str, Any]])
def trigger_job(ctx: OpContext, request: Request, body: TriggerBody):
    """A repeat of an earlier trigger returns that job with ``deduplicated = true``."""
    result = processing_ops.trigger_processing(
        ctx,
        TriggerProcessingRequest(
            document_id=body.document_id,
            pipeline=body.pipeline,
            dry_run=body.dry_run,
            parameters=body.parameters,
        ),
    )
    return respond(result, request)


@router.get("/jobs", response_model=PagedResponse[dict[str, Any]])
def list_jobs(
    ctx: OpContext,
    request: Request,
    document_id: int = Query(..., ge=1),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    result = processing_ops.list_jobs(ctx, ListJobsRequest(document_id=document_id, limit=limit, offset=offset))
    return respond(result, request)


@router.get("/jobs/{job_id}", response_model=SuccessResponse[dict[str, Any]])
def get_job(ctx: OpContext, request: Request, job_id: str = Path(...)):
    return respond(processing_ops.get_job(ctx, job_id), request)


@router.post("/jobs/{job_id}/cancel", response_model=SuccessResponse[dict[str, Any]])
def cancel_job(ctx: OpContext, request: Request, job_id: str = Path(...)):
    return respond(processing_ops.cancel_job(ctx, job_id), request)
