"""
Health router.

``/health`` reports database, engine and content-store status;
``/health/live`` only proves the process answers.  Both are mounted at the
root (no API prefix) for container health checks.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from relay.api.deps import OpContext
from relay.api.schemas.common import SuccessResponse
from relay.api.utils import respond
from relay.ops.database import check_health, get_table_counts

router = APIRouter()


@router.get("/health", response_model=SuccessResponse[dict[str, Any]])
def health(ctx: OpContext, request: Request):
    return respond(check_health(ctx), request)


@router.get("/health/live")
def liveness() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/health/tables", response_model=SuccessResponse[dict[str, int]])
def table_counts(ctx: OpContext, request: Request):
    return respond(get_table_counts(ctx), request)
