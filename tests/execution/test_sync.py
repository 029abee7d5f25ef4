"""
Tests for per-document sync: target parsing, in-flight protection, stale
attempt expiry and callback resolution.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from relay.core.errors import InvalidSyncTargetError, NotFoundError, ValidationError
from relay.core.repositories import DocSyncStatusRepository
from relay.core.timestamps import to_iso8601, utc_now
from relay.execution.models import RunStatus, SyncStatus
from relay.execution.sync import DocumentSyncer
from relay.execution.sync_target import parse_sync_target


class TestParseSyncTarget:
    @pytest.mark.parametrize("metadata", [None, {}, {"sync_target": None}, {"sync_target": "  "}])
    def test_absent(self, metadata):
        assert parse_sync_target(metadata) is None

    def test_integer(self):
        assert parse_sync_target({"sync_target": 12}).record_id == 12

    def test_json_string(self):
        target = parse_sync_target({"sync_target": '{"record_id": 5, "table": "notes"}'})
        assert target.to_dict() == {"record_id": 5, "table": "notes"}

    def test_mapping(self):
        target = parse_sync_target({"sync_target": {"record_id": 9, "field": "body"}})
        assert target.record_id == 9
        assert target.field == "body"

    @pytest.mark.parametrize(
        "raw",
        [
            True,
            0,
            "{broken",
            "[1, 2]",
            {"table": "notes"},
            {"record_id": 3, "table": "drop table"},
        ],
    )
    def test_malformed(self, raw):
        with pytest.raises(InvalidSyncTargetError):
            parse_sync_target({"sync_target": raw})


@pytest.fixture
def syncer(conn, runtime, content):
    content.add_document(42, version=2, metadata={"sync_target": {"record_id": 7}})
    content.add_document(43, metadata={})
    return DocumentSyncer(conn, runtime)


class TestTrigger:
    def test_starts_attempt(self, syncer, engine):
        outcome = syncer.trigger(42)
        data = outcome.to_dict()
        assert data["started"] is True
        assert data["status"] == "pending"
        assert data["event_id"]
        assert outcome.run.status is RunStatus.RUNNING
        assert outcome.run.document_id == 42

        deployment_id, params = engine.submitted[0]
        assert deployment_id == "dep-sync-document/default"
        assert params["event_id"] == data["event_id"]
        assert params["doc_version"] == 2
        assert params["sync_target"] == {"record_id": 7}
        assert params["callback_url"] == "http://relay.test/api/v1/sync/callback"

    def test_second_trigger_reports_in_progress(self, syncer, engine):
        first = syncer.trigger(42)
        second = syncer.trigger(42)
        assert second.started is False
        assert second.message == "sync task already in progress"
        assert second.status.last_event_id == first.status.last_event_id
        assert len(engine.submitted) == 1

    def test_concurrent_trigger_loses_claim(self, conn, syncer, engine, monkeypatch):
        first = syncer.trigger(42)
        lookup = syncer.statuses.get
        calls = []

        def miss_first(document_id):
            # the in-flight check misses, as if both triggers read before either wrote
            calls.append(document_id)
            return None if len(calls) == 1 else lookup(document_id)

        monkeypatch.setattr(syncer.statuses, "get", miss_first)
        second = syncer.trigger(42)

        assert second.started is False
        assert second.message == "sync task already in progress"
        assert second.status.last_event_id == first.status.last_event_id
        assert second.run.id == first.run.id
        conn.execute("SELECT COUNT(*) FROM workflow_runs WHERE document_id = ?", (42,))
        assert conn.fetchone()[0] == 1
        assert len(engine.submitted) == 1

    def test_stale_attempt_expires(self, conn, syncer, engine):
        first = syncer.trigger(42)
        stale = to_iso8601(utc_now() - timedelta(minutes=5))
        conn.execute(
            "UPDATE doc_sync_statuses SET last_attempt_at = ? WHERE document_id = ?", (stale, 42)
        )
        conn.commit()

        second = syncer.trigger(42)
        assert second.started is True
        assert second.status.last_event_id != first.status.last_event_id
        expired = syncer.machine.get(first.run.id)
        assert expired.status is RunStatus.FAILED
        assert expired.error_message == "sync task timeout (exceeded 60s)"

    def test_missing_target(self, syncer):
        with pytest.raises(ValidationError, match="no sync_target"):
            syncer.trigger(43)

    def test_submission_failure(self, syncer, engine):
        engine.fail_submit = True
        outcome = syncer.trigger(42)
        assert outcome.status.last_status is SyncStatus.FAILED
        assert outcome.run.status is RunStatus.FAILED
        assert outcome.error is not None

    def test_registered_definition_is_used(self, syncer, engine, register_workflow):
        register_workflow("sync_document", workflow_type="document", deployment_id="dep-custom")
        syncer.trigger(42)
        deployment_id, _ = engine.submitted[0]
        assert deployment_id == "dep-custom"


class TestCallback:
    def test_success_resolves_attempt_and_run(self, syncer):
        outcome = syncer.trigger(42)
        status, applied = syncer.handle_callback(42, outcome.status.last_event_id, "success")
        assert applied is True
        assert status.last_status is SyncStatus.SUCCESS
        assert syncer.machine.get(outcome.run.id).status is RunStatus.SUCCESS

    def test_skipped_cancels_run(self, syncer):
        outcome = syncer.trigger(42)
        syncer.handle_callback(42, outcome.status.last_event_id, "skipped")
        assert syncer.machine.get(outcome.run.id).status is RunStatus.CANCELLED

    def test_superseded_event_ignored(self, syncer):
        outcome = syncer.trigger(42)
        status, applied = syncer.handle_callback(42, "other-event", "failed", error="boom")
        assert applied is False
        assert status.last_status is SyncStatus.PENDING

    def test_duplicate_callback_ignored(self, syncer):
        outcome = syncer.trigger(42)
        event_id = outcome.status.last_event_id
        syncer.handle_callback(42, event_id, "success")
        status, applied = syncer.handle_callback(42, event_id, "failed", error="late")
        assert applied is False
        assert status.last_status is SyncStatus.SUCCESS

    def test_invalid_status(self, syncer):
        outcome = syncer.trigger(42)
        with pytest.raises(ValidationError):
            syncer.handle_callback(42, outcome.status.last_event_id, "pending")

    def test_unknown_document(self, syncer):
        with pytest.raises(NotFoundError):
            syncer.handle_callback(999, "evt", "success")


class TestStatusRow:
    def test_get_status_unknown(self, syncer):
        with pytest.raises(NotFoundError):
            syncer.get_status(42)

    def test_row_tracks_version(self, conn, syncer):
        syncer.trigger(42)
        row = DocSyncStatusRepository(conn).get(42)
        assert row["last_status"] == "pending"
        assert row["last_version"] == 2


class TestClaimAttempt:
    def test_pending_attempt_blocks_claim(self, conn):
        repo = DocSyncStatusRepository(conn)
        assert repo.claim_attempt(5, event_id="e-1", version=1, sync_target={"record_id": 1}) is True
        assert repo.claim_attempt(5, event_id="e-2", version=1, sync_target={"record_id": 1}) is False
        assert repo.get(5)["last_event_id"] == "e-1"

    def test_resolved_attempt_can_be_replaced(self, conn):
        repo = DocSyncStatusRepository(conn)
        repo.claim_attempt(5, event_id="e-1", version=1, sync_target={"record_id": 1})
        repo.attach_run(5, "e-1", "run-1")
        assert repo.resolve(5, "e-1", "failed", error="boom") is True

        assert repo.claim_attempt(5, event_id="e-2", version=2, sync_target={"record_id": 1}) is True
        row = repo.get(5)
        assert row["last_event_id"] == "e-2"
        assert row["last_status"] == "pending"
        assert row["last_run_id"] is None
        assert row["last_error"] is None
