"""
Workflow definition operations.

List, inspect, register and toggle workflow definitions, and reconcile
engine-sourced definitions against the engine's deployment list.
"""

from __future__ import annotations

from typing import Any

from relay.core.errors import EngineUnavailableError
from relay.core.logging import get_logger
from relay.execution import definitions
from relay.ops.context import OperationContext
from relay.ops.requests import ListWorkflowsRequest, RegisterWorkflowRequest
from relay.ops.result import OperationResult, PagedResult, fail_from, start_timer

logger = get_logger(__name__)


def list_workflows(ctx: OperationContext, request: ListWorkflowsRequest) -> PagedResult[dict[str, Any]]:
    timer = start_timer()
    try:
        items = [
            d.to_dict()
            for d in definitions.list_definitions(
                ctx.conn,
                source=request.source,
                workflow_type=request.workflow_type,
                sync_status=request.sync_status,
                enabled=request.enabled,
            )
        ]
        return PagedResult.from_items(
            items, total=len(items), limit=max(len(items), 1), elapsed_ms=timer.elapsed_ms
        )
    except Exception as exc:
        return fail_from(exc, "list_workflows", elapsed_ms=timer.elapsed_ms, result_cls=PagedResult)


def get_workflow(ctx: OperationContext, workflow_key: str) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    if not workflow_key:
        return OperationResult.fail("VALIDATION_FAILED", "workflow_key is required", elapsed_ms=timer.elapsed_ms)
    try:
        definition = definitions.get_definition(ctx.conn, workflow_key)
        return OperationResult.ok(definition.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "get_workflow", elapsed_ms=timer.elapsed_ms, workflow_key=workflow_key)


def register_workflow(ctx: OperationContext, request: RegisterWorkflowRequest) -> OperationResult[dict[str, Any]]:
    """Create or update a manually managed definition."""
    timer = start_timer()
    try:
        definition = definitions.register_definition(
            ctx.conn,
            {
                "workflow_key": request.workflow_key,
                "deployment_name": request.deployment_name,
                "workflow_type": request.workflow_type,
                "name": request.name,
                "description": request.description,
                "deployment_id": request.deployment_id,
                "tags": list(request.tags),
                "parameter_schema": request.parameter_schema,
                "enabled": request.enabled,
            },
        )
        return OperationResult.ok(definition.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "register_workflow", elapsed_ms=timer.elapsed_ms, workflow_key=request.workflow_key)


def set_workflow_enabled(ctx: OperationContext, workflow_key: str, enabled: bool) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        definition = definitions.set_enabled(ctx.conn, workflow_key, enabled)
        return OperationResult.ok(definition.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "set_workflow_enabled", elapsed_ms=timer.elapsed_ms, workflow_key=workflow_key)


def sync_workflows(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    """Reconcile engine-sourced definitions with the engine's deployments."""
    timer = start_timer()
    try:
        if ctx.runtime.engine is None:
            raise EngineUnavailableError("engine not configured; cannot sync workflow definitions")
        report = definitions.sync_definitions(
            ctx.conn, ctx.runtime.engine, tag_prefix=ctx.settings.definition_tag_prefix
        )
        return OperationResult.ok(report.to_dict(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        return fail_from(exc, "sync_workflows", elapsed_ms=timer.elapsed_ms)
