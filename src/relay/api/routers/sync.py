"""
Sync router: per-document sync.

Endpoints:
    POST /documents/{document_id}/sync          Start (or report the in-flight) sync
    GET  /documents/{document_id}/sync-status   Last attempt for the document
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Request

from relay.api.deps import OpContext
from relay.api.schemas.common import SuccessResponse
from relay.api.utils import respond
from relay.ops import sync as sync_ops

router = APIRouter(prefix="/documents")


@router.post("/{document_id}/sync", response_model=SuccessResponse[dict[str, Any]], status_code=202)
def trigger_sync(ctx: OpContext, request: Request, document_id: int = Path(..., ge=1)):
    return respond(sync_ops.trigger_sync(ctx, document_id), request)


@router.get("/{document_id}/sync-status", response_model=SuccessResponse[dict[str, Any]])
def get_sync_status(ctx: OpContext, request: Request, document_id: int = Path(..., ge=1)):
    return respond(sync_ops.get_sync_status(ctx, document_id), request)
