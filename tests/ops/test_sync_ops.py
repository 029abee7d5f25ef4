"""Tests for relay.ops.sync."""

import pytest

from relay.ops.requests import SyncCallbackRequest
from relay.ops.sync import get_sync_status, handle_sync_callback, trigger_sync


@pytest.fixture
def document(content):
    content.add_document(42, metadata={"sync_target": 3})


class TestSyncOps:
    def test_trigger_then_status(self, ctx, document):
        started = trigger_sync(ctx, 42).data
        assert started["started"] is True
        status = get_sync_status(ctx, 42).data
        assert status["last_event_id"] == started["event_id"]
        assert status["sync_target"] == {"record_id": 3}

    def test_callback(self, ctx, document):
        event_id = trigger_sync(ctx, 42).data["event_id"]
        result = handle_sync_callback(ctx, SyncCallbackRequest(document_id=42, event_id=event_id, status="success"))
        assert result.data["applied"] is True
        assert result.data["last_status"] == "success"

    def test_callback_requires_event(self, ctx):
        result = handle_sync_callback(ctx, SyncCallbackRequest(document_id=42, status="success"))
        assert result.error.code == "VALIDATION_FAILED"

    def test_status_unknown(self, ctx):
        assert get_sync_status(ctx, 99).error.code == "NOT_FOUND"

    def test_missing_target(self, ctx, content):
        content.add_document(43)
        assert trigger_sync(ctx, 43).error.code == "VALIDATION_FAILED"
