"""Tests for relay.ops.batches."""

import pytest

from relay.ops.batches import (
    cancel_batch,
    execute_batch,
    execute_sync_batch,
    get_batch,
    list_batches,
    preview_batch,
    preview_sync_batch,
)
from relay.ops.requests import (
    BatchFilters,
    ExecuteBatchRequest,
    ListBatchesRequest,
    PreviewBatchRequest,
    SyncBatchRequest,
)


@pytest.fixture
def tree(content):
    content.add_node(1, "root", sources=[10])
    content.add_node(2, "a", parent=1, sources=[20])
    content.add_node(3, "drafts", parent=1)
    content.add_document(30, node=2, metadata={"sync_target": 5})


class TestPreview:
    def test_preview(self, ctx, tree, register_workflow):
        register_workflow()
        data = preview_batch(ctx, PreviewBatchRequest(root_node_id=1, workflow_key="summarize")).data
        assert data["total_nodes"] == 3
        assert data["can_execute"] == 2
        assert data["will_skip"] == 1
        assert data["workflow_key"] == "summarize"

    def test_preview_name_filter(self, ctx, tree):
        request = PreviewBatchRequest(root_node_id=1, filters=BatchFilters(skip_name_contains="a"))
        data = preview_batch(ctx, request).data
        skipped = {n["node_id"]: n["skip_reason"] for n in data["nodes"] if not n["can_execute"]}
        assert skipped[2] == "name_filter"

    def test_preview_unknown_workflow(self, ctx, tree):
        result = preview_batch(ctx, PreviewBatchRequest(root_node_id=1, workflow_key="ghost"))
        assert result.error.code == "VALIDATION_FAILED"

    def test_root_must_be_positive(self, ctx):
        assert preview_batch(ctx, PreviewBatchRequest(root_node_id=0)).error.code == "VALIDATION_FAILED"
        assert preview_sync_batch(ctx, SyncBatchRequest(root_node_id=-1)).error.code == "VALIDATION_FAILED"

    def test_sync_preview(self, ctx, tree):
        data = preview_sync_batch(ctx, SyncBatchRequest(root_node_id=1)).data
        assert data["can_sync"] == 1
        assert data["total_documents"] == data["can_sync"] + data["will_skip"]


class TestExecute:
    def test_execute_and_get(self, ctx, tree, register_workflow, engine):
        register_workflow()
        ctx.user = "bob"
        accepted = execute_batch(ctx, ExecuteBatchRequest(root_node_id=1, workflow_key="summarize"))
        assert accepted.success, accepted.error
        assert accepted.data["kind"] == "workflow"
        assert accepted.data["total"] == 3
        assert len(engine.submitted) == 2

        detail = get_batch(ctx, accepted.data["batch_id"]).data
        assert detail["skipped_count"] == 1
        assert detail["created_by"] == "bob"
        assert len(detail["details"]) == 3

    def test_execute_requires_workflow(self, ctx, tree):
        result = execute_batch(ctx, ExecuteBatchRequest(root_node_id=1))
        assert result.error.code == "VALIDATION_FAILED"

    def test_execute_sync(self, ctx, tree, register_workflow, engine):
        accepted = execute_sync_batch(ctx, SyncBatchRequest(root_node_id=1))
        assert accepted.success, accepted.error
        assert accepted.data["kind"] == "sync"
        assert accepted.data["concurrency"] == 10

    def test_list_and_filters(self, ctx, tree, register_workflow):
        register_workflow()
        execute_batch(ctx, ExecuteBatchRequest(root_node_id=1, workflow_key="summarize"))
        execute_sync_batch(ctx, SyncBatchRequest(root_node_id=1))

        assert list_batches(ctx, ListBatchesRequest()).total == 2
        workflow_only = list_batches(ctx, ListBatchesRequest(kind="workflow"))
        assert workflow_only.total == 1
        assert "details" not in workflow_only.data[0]

    def test_list_invalid_kind(self, ctx):
        assert list_batches(ctx, ListBatchesRequest(kind="bulk")).error.code == "VALIDATION_FAILED"

    def test_get_unknown(self, ctx):
        assert get_batch(ctx, "nope").error.code == "NOT_FOUND"

    def test_cancel(self, ctx, tree, register_workflow):
        register_workflow()
        batch_id = execute_batch(ctx, ExecuteBatchRequest(root_node_id=1, workflow_key="summarize")).data["batch_id"]
        result = cancel_batch(ctx, batch_id)
        assert result.success
        assert result.data["cancel_requested"] is True
