"""Tests for relay.ops.processing."""

import pytest

from relay.ops.processing import (
    cancel_job,
    get_job,
    handle_processing_callback,
    list_jobs,
    list_pipelines,
    trigger_processing,
)
from relay.ops.requests import ListJobsRequest, ProcessingCallbackRequest, TriggerProcessingRequest


@pytest.fixture
def document(content):
    content.add_document(7, version=2)


class TestProcessingOps:
    def test_list_pipelines(self, ctx):
        names = [p["name"] for p in list_pipelines(ctx).data]
        assert names == ["generate_knowledge_overview", "polish_document"]

    def test_trigger_and_dedupe(self, ctx, document):
        first = trigger_processing(ctx, TriggerProcessingRequest(document_id=7, pipeline="polish_document"))
        second = trigger_processing(ctx, TriggerProcessingRequest(document_id=7, pipeline="polish_document"))
        assert first.data["deduplicated"] is False
        assert second.data["deduplicated"] is True
        assert second.data["id"] == first.data["id"]

    def test_pipeline_required(self, ctx):
        result = trigger_processing(ctx, TriggerProcessingRequest(document_id=7))
        assert result.error.code == "VALIDATION_FAILED"

    def test_callback_and_get(self, ctx, document):
        job_id = trigger_processing(ctx, TriggerProcessingRequest(document_id=7, pipeline="polish_document")).data["id"]
        result = handle_processing_callback(ctx, ProcessingCallbackRequest(job_id=job_id, status="success"))
        assert result.data["applied"] is True
        assert get_job(ctx, job_id).data["status"] == "success"

    def test_list_jobs(self, ctx, document):
        trigger_processing(ctx, TriggerProcessingRequest(document_id=7, pipeline="polish_document"))
        assert list_jobs(ctx, ListJobsRequest(document_id=7)).total == 1
        assert list_jobs(ctx, ListJobsRequest(document_id=8)).total == 0

    def test_cancel_unknown(self, ctx):
        assert cancel_job(ctx, "ghost").error.code == "NOT_FOUND"
