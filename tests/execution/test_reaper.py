"""
Tests for stuck-run reaping and run retention cleanup.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from relay.core.errors import ValidationError
from relay.core.timestamps import utc_now
from relay.execution.models import RunStatus
from relay.execution.reaper import ReaperThread, StuckRunReaper
from relay.execution.retention import CleanupFilters, cleanup_runs


class TestStuckRunReaper:
    def test_threshold(self, machine, engine, make_run):
        old_running = make_run(status="running", age_minutes=45, external_run_id="flow-1")
        old_pending = make_run(status="pending", age_minutes=45)
        young = make_run(status="running", age_minutes=5)
        done = make_run(status="success", age_minutes=90)

        report = StuckRunReaper(machine, engine=engine).reap(30)

        assert sorted(report.terminated) == sorted([old_running, old_pending])
        assert machine.get(old_running).status is RunStatus.FAILED
        assert machine.get(old_running).error_message == "forced termination (exceeded 30m)"
        assert machine.get(old_pending).status is RunStatus.FAILED
        assert machine.get(young).status is RunStatus.RUNNING
        assert machine.get(done).status is RunStatus.SUCCESS
        assert engine.cancelled == ["flow-1"]

    def test_default_threshold_from_machine(self, machine, make_run):
        make_run(status="running", age_minutes=31)
        report = StuckRunReaper(machine).reap()
        assert report.threshold_minutes == 30
        assert report.count == 1

    def test_remote_cancel_failure_still_terminates(self, machine, engine, make_run):
        engine.fail_cancel = True
        run_id = make_run(status="running", age_minutes=60, external_run_id="flow-1")
        report = StuckRunReaper(machine, engine=engine).reap(30)
        assert report.terminated == [run_id]
        assert report.remote_cancel_failures == [run_id]
        assert machine.get(run_id).status is RunStatus.FAILED

    def test_report_dict(self, machine, make_run):
        run_id = make_run(status="running", age_minutes=60)
        data = StuckRunReaper(machine).reap(10).to_dict()
        assert data == {
            "threshold_minutes": 10,
            "terminated_count": 1,
            "terminated_run_ids": [run_id],
            "remote_cancel_failures": [],
        }

    def test_thread_run_once(self, runtime, machine, make_run):
        run_id = make_run(status="running", age_minutes=60)
        thread = ReaperThread(
            runtime.open_connection, runtime.state_machine, interval_seconds=60, threshold_minutes=30
        )
        report = thread.run_once()
        assert report.terminated == [run_id]
        assert thread.running is False


class TestCleanup:
    def test_default_deletes_terminal_only(self, machine, make_run):
        done = make_run(status="success", age_minutes=100)
        failed = make_run(status="failed", age_minutes=100)
        active = make_run(status="running", age_minutes=100)

        report = cleanup_runs(machine, CleanupFilters())
        assert report.deleted_count == 2
        assert machine.runs.get(done) is None
        assert machine.runs.get(failed) is None
        assert machine.runs.get(active) is not None

    def test_before_cutoff(self, machine, make_run):
        old = make_run(status="success", age_minutes=60 * 48)
        recent = make_run(status="success", age_minutes=5)
        report = cleanup_runs(machine, CleanupFilters(before=utc_now() - timedelta(days=1)))
        assert report.deleted_count == 1
        assert machine.runs.get(old) is None
        assert machine.runs.get(recent) is not None

    def test_dry_run_counts_without_deleting(self, machine, make_run):
        run_id = make_run(status="success")
        report = cleanup_runs(machine, CleanupFilters(dry_run=True))
        assert report.to_dict() == {"deleted_count": 1, "zombie_count": 0, "dry_run": True}
        assert machine.runs.get(run_id) is not None

    def test_active_statuses_need_flag(self, machine):
        with pytest.raises(ValidationError):
            cleanup_runs(machine, CleanupFilters(statuses=(RunStatus.RUNNING,)))

    def test_include_zombie_terminates_then_deletes(self, machine, make_run):
        zombie = make_run(status="running", age_minutes=120)
        young = make_run(status="running", age_minutes=1)
        report = cleanup_runs(machine, CleanupFilters(include_zombie=True))
        assert report.zombie_count == 1
        assert machine.runs.get(zombie) is None
        assert machine.get(young).status is RunStatus.RUNNING

    def test_include_zombie_keeps_unrequested_failed_runs(self, machine, make_run):
        genuine = make_run(status="failed", age_minutes=5)
        zombie = make_run(status="running", age_minutes=120)
        report = cleanup_runs(
            machine, CleanupFilters(statuses=(RunStatus.RUNNING,), include_zombie=True)
        )
        assert report.to_dict() == {"deleted_count": 1, "zombie_count": 1, "dry_run": False}
        assert machine.runs.get(zombie) is None
        assert machine.get(genuine).status is RunStatus.FAILED

    @pytest.mark.parametrize("force", [False, True])
    def test_dry_run_count_matches_real_delete(self, machine, make_run, force):
        make_run(status="running", age_minutes=120)
        make_run(status="running", age_minutes=1)
        make_run(status="failed", age_minutes=10)
        filters = dict(statuses=(RunStatus.RUNNING, RunStatus.FAILED), include_zombie=True, force_cleanup_active=force)

        preview = cleanup_runs(machine, CleanupFilters(dry_run=True, **filters))
        report = cleanup_runs(machine, CleanupFilters(**filters))

        assert preview.deleted_count == report.deleted_count
        assert report.deleted_count == (3 if force else 2)

    def test_force_cleanup_active(self, machine, make_run):
        active = make_run(status="pending")
        report = cleanup_runs(
            machine, CleanupFilters(statuses=(RunStatus.PENDING,), force_cleanup_active=True)
        )
        assert report.deleted_count == 1
        assert machine.runs.get(active) is None

    def test_target_filter(self, machine, make_run):
        keep = make_run(status="success", node_id=1)
        drop = make_run(status="success", node_id=2)
        cleanup_runs(machine, CleanupFilters(node_id=2))
        assert machine.runs.get(keep) is not None
        assert machine.runs.get(drop) is None

    def test_retry_link_cleared_when_original_deleted(self, machine, make_run):
        original = make_run(status="failed", age_minutes=60 * 48)
        retry = make_run(status="running", retry_of=original)
        cleanup_runs(machine, CleanupFilters(before=utc_now() - timedelta(days=1)))
        assert machine.runs.get(original) is None
        assert machine.get(retry).retry_of is None
