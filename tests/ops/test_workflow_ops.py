"""Tests for relay.ops.workflows."""

from relay.execution.engine import Deployment
from relay.ops.requests import ListWorkflowsRequest, RegisterWorkflowRequest
from relay.ops.workflows import (
    get_workflow,
    list_workflows,
    register_workflow,
    set_workflow_enabled,
    sync_workflows,
)


class TestWorkflowOps:
    def test_register_and_get(self, ctx):
        result = register_workflow(
            ctx, RegisterWorkflowRequest(workflow_key="translate", deployment_name="translate/default", workflow_type="document")
        )
        assert result.success, result.error
        data = get_workflow(ctx, "translate").data
        assert data["workflow_type"] == "document"
        assert data["source"] == "manual"

    def test_register_invalid(self, ctx):
        result = register_workflow(ctx, RegisterWorkflowRequest(workflow_key="x"))
        assert result.error.code == "VALIDATION_FAILED"

    def test_get_unknown(self, ctx):
        assert get_workflow(ctx, "ghost").error.code == "NOT_FOUND"

    def test_list_filters(self, ctx, register_workflow):
        register_workflow("a")
        register_workflow("b", workflow_type="document")
        set_workflow_enabled(ctx, "a", False)

        assert list_workflows(ctx, ListWorkflowsRequest()).total == 2
        enabled = list_workflows(ctx, ListWorkflowsRequest(enabled=True)).data
        assert [d["workflow_key"] for d in enabled] == ["b"]
        documents = list_workflows(ctx, ListWorkflowsRequest(workflow_type="document")).data
        assert [d["workflow_key"] for d in documents] == ["b"]

    def test_sync(self, ctx, engine):
        engine.deployments = [Deployment(id="d-1", name="summarize/prod", tags=("relay:key=summarize",))]
        assert sync_workflows(ctx).data["created"] == ["summarize"]

    def test_sync_without_engine(self, ctx, runtime):
        runtime.engine = None
        assert sync_workflows(ctx).error.code == "UNAVAILABLE"
