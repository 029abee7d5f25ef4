"""
Tests for document processing jobs: deduplication, submission and
callback handling.
"""

from __future__ import annotations

import pytest

from relay.core.errors import ConfigError, NotCancellableError, NotFoundError, ValidationError
from relay.core.settings import PipelineConfig
from relay.execution.models import RunStatus
from relay.execution.processing import ProcessingService
from relay.execution.runtime import Runtime


@pytest.fixture
def service(conn, runtime, content):
    content.add_document(7, doc_type="markdown", version=3)
    return ProcessingService(conn, runtime)


class TestTrigger:
    def test_creates_and_submits(self, service, engine):
        outcome = service.trigger(7, "polish_document")
        assert outcome.deduplicated is False
        assert outcome.job.status is RunStatus.RUNNING
        assert outcome.job.document_version == 3
        assert outcome.job.external_run_id == "flow-1"

        _, params = engine.submitted[0]
        assert params["doc_path"] == "@doc:7"
        assert params["dry_run"] is False
        assert params["callback_url"] == f"http://relay.test/api/v1/processing/callback/{outcome.job.id}"

    def test_same_content_is_deduplicated(self, service, engine):
        first = service.trigger(7, "polish_document")
        second = service.trigger(7, "polish_document")
        assert second.deduplicated is True
        assert second.job.id == first.job.id
        assert len(engine.submitted) == 1

    def test_losing_insert_returns_winner(self, service, engine, monkeypatch):
        winner = service.trigger(7, "polish_document")
        lookup = service._existing
        calls = []

        def miss_first(key):
            # the pre-insert lookup misses, as if the winner committed right after it
            calls.append(key)
            return None if len(calls) == 1 else lookup(key)

        monkeypatch.setattr(service, "_existing", miss_first)

        loser = service.trigger(7, "polish_document")

        assert loser.deduplicated is True
        assert loser.job.id == winner.job.id
        assert len(engine.submitted) == 1
        _, total = service.list_for_document(7)
        assert total == 1

    def test_dry_run_is_a_separate_job(self, service):
        real = service.trigger(7, "polish_document")
        dry = service.trigger(7, "polish_document", dry_run=True)
        assert dry.deduplicated is False
        assert dry.job.id != real.job.id
        assert dry.job.dry_run is True

    def test_new_version_is_a_separate_job(self, service, content):
        first = service.trigger(7, "polish_document")
        content.add_document(7, doc_type="markdown", version=4)
        second = service.trigger(7, "polish_document")
        assert second.job.id != first.job.id

    def test_failed_submission_recorded(self, service, engine):
        engine.fail_submit = True
        outcome = service.trigger(7, "polish_document")
        assert outcome.job.status is RunStatus.FAILED
        assert outcome.error is not None
        assert outcome.to_dict()["submission_error"] == outcome.error

    def test_unknown_pipeline(self, service):
        with pytest.raises(ValidationError, match="unknown pipeline"):
            service.trigger(7, "nope")

    def test_dry_run_unsupported(self, conn, settings, engine, content):
        settings.pipelines = [PipelineConfig(name="strict", label="Strict", deployment_name="strict/d", supports_dry_run=False)]
        content.add_document(7)
        runtime = Runtime(settings, open_connection=lambda: conn, engine=engine, content=content, background=False)
        with pytest.raises(ValidationError, match="dry runs"):
            ProcessingService(conn, runtime).trigger(7, "strict", dry_run=True)

    def test_doc_type_restriction(self, conn, settings, engine, content):
        settings.pipelines = [
            PipelineConfig(name="pdf_only", label="PDF", deployment_name="pdf/d", doc_types=["pdf"])
        ]
        content.add_document(7, doc_type="markdown")
        runtime = Runtime(settings, open_connection=lambda: conn, engine=engine, content=content, background=False)
        with pytest.raises(ValidationError, match="does not accept"):
            ProcessingService(conn, runtime).trigger(7, "pdf_only")

    def test_requires_content_store(self, conn, settings, engine):
        runtime = Runtime(settings, open_connection=lambda: conn, engine=engine, content=None)
        with pytest.raises(ConfigError):
            ProcessingService(conn, runtime).trigger(7, "polish_document")


class TestCallback:
    def test_progress_then_success(self, service):
        job = service.trigger(7, "polish_document").job
        job, applied = service.handle_callback(job.id, "running", progress=40)
        assert applied is True
        assert job.progress == 40

        job, applied = service.handle_callback(job.id, "success", result={"changes": 2})
        assert applied is True
        assert job.status is RunStatus.SUCCESS
        assert job.progress == 100
        assert job.result == {"changes": 2}
        assert job.finished_at is not None

    def test_late_report_ignored(self, service):
        job = service.trigger(7, "polish_document").job
        service.handle_callback(job.id, "failed", error_message="llm timeout")
        job, applied = service.handle_callback(job.id, "success")
        assert applied is False
        assert job.status is RunStatus.FAILED
        assert job.error_message == "llm timeout"

    def test_invalid_status(self, service):
        job = service.trigger(7, "polish_document").job
        with pytest.raises(ValidationError):
            service.handle_callback(job.id, "done")
        with pytest.raises(ValidationError):
            service.handle_callback(job.id, "pending")

    def test_unknown_job(self, service):
        with pytest.raises(NotFoundError):
            service.handle_callback("ghost", "success")


class TestCancel:
    def test_cancel_running_job(self, service, engine):
        job = service.trigger(7, "polish_document").job
        cancelled = service.cancel(job.id)
        assert cancelled.status is RunStatus.CANCELLED
        assert engine.cancelled == [job.external_run_id]

    def test_cancel_finished_job(self, service):
        job = service.trigger(7, "polish_document").job
        service.handle_callback(job.id, "success")
        with pytest.raises(NotCancellableError):
            service.cancel(job.id)


class TestList:
    def test_list_for_document(self, service):
        service.trigger(7, "polish_document")
        service.trigger(7, "generate_knowledge_overview")
        jobs, total = service.list_for_document(7)
        assert total == 2
        assert {j.pipeline for j in jobs} == {"polish_document", "generate_knowledge_overview"}
