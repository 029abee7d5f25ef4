"""
Callbacks router: status reports pushed by remote flows.

Endpoints:
    POST /callback/{run_id}                Workflow run report
    POST /sync/callback                    Document sync report
    POST /processing/callback/{job_id}     Processing pipeline report

Every callback must prove knowledge of ``callback_secret``, either with an
HMAC of the raw body in ``X-Webhook-Signature: sha256=<hex>`` or with the
secret itself in ``X-Webhook-Secret``.  Reports for records that are
already terminal are acknowledged with 200 and ``applied = false``.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Request
from pydantic import BaseModel, Field

from relay.api.deps import OpContext, Settings
from relay.api.schemas.common import SuccessResponse
from relay.api.utils import respond
from relay.core.signing import SECRET_HEADER, SIGNATURE_HEADER, verify_callback
from relay.ops import processing as processing_ops
from relay.ops import runs as run_ops
from relay.ops import sync as sync_ops
from relay.ops.requests import ProcessingCallbackRequest, RunCallbackRequest, SyncCallbackRequest


async def verify_signature(request: Request, settings: Settings) -> None:
    """Reject the request unless it proves knowledge of the callback secret.

    Raises :class:`~relay.core.errors.SignatureError` (401) or, with no
    secret configured, :class:`~relay.core.errors.ConfigError` (500).
    """
    verify_callback(
        settings.callback_secret,
        await request.body(),
        signature=request.headers.get(SIGNATURE_HEADER),
        provided_secret=request.headers.get(SECRET_HEADER),
    )


router = APIRouter(dependencies=[Depends(verify_signature)])


class RunCallbackBody(BaseModel):
    status: str = Field(description="running | success | failed | cancelled")
    result: Any = None
    error_message: str | None = None
    external_run_id: str | None = None


class SyncCallbackBody(BaseModel):
    event_id: str
    document_id: int
    status: str = Field(description="success | failed | skipped")
    error: str | None = None
    external_run_id: str | None = None


class ProcessingCallbackBody(BaseModel):
    status: str
    result: Any = None
    error_message: str | None = None
    progress: Annotated[int | None, Field(ge=0, le=100)] = None


@router.post("/callback/{run_id}", response_model=SuccessResponse[dict[str, Any]])
def run_callback(ctx: OpContext, request: Request, body: RunCallbackBody, run_id: str = Path(...)):
    result = run_ops.handle_run_callback(
        ctx,
        RunCallbackRequest(
            run_id=run_id,
            status=body.status,
            result=body.result,
            error_message=body.error_message,
            external_run_id=body.external_run_id,
        ),
    )
    return respond(result, request)


@router.post("/sync/callback", response_model=SuccessResponse[dict[str, Any]])
def sync_callback(ctx: OpContext, request: Request, body: SyncCallbackBody):
    result = sync_ops.handle_sync_callback(
        ctx,
        SyncCallbackRequest(
            document_id=body.document_id,
            event_id=body.event_id,
            status=body.status,
            error=body.error,
            external_run_id=body.external_run_id,
        ),
    )
    return respond(result, request)


@router.post("/processing/callback/{job_id}", response_model=SuccessResponse[dict[str, Any]])
def processing_callback(ctx: OpContext, request: Request, body: ProcessingCallbackBody, job_id: str = Path(...)):
    result = processing_ops.handle_processing_callback(
        ctx,
        ProcessingCallbackRequest(
            job_id=job_id,
            status=body.status,
            result=body.result,
            error_message=body.error_message,
            progress=body.progress,
        ),
    )
    return respond(result, request)
