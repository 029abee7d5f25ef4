"""
Tests for the run state machine: conditional transitions, idempotent
status reports, cancellation and forced termination.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from relay.core.errors import EngineUnavailableError, NotCancellableError, NotFoundError, ValidationError
from relay.core.timestamps import utc_now
from relay.execution.models import (
    InvalidTransitionError,
    ObservedStatus,
    RunStatus,
    validate_run_transition,
)


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            (RunStatus.PENDING, RunStatus.RUNNING),
            (RunStatus.PENDING, RunStatus.FAILED),
            (RunStatus.PENDING, RunStatus.CANCELLED),
            (RunStatus.RUNNING, RunStatus.SUCCESS),
            (RunStatus.RUNNING, RunStatus.FAILED),
            (RunStatus.RUNNING, RunStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        validate_run_transition(current, target)

    @pytest.mark.parametrize("terminal", [RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.CANCELLED])
    def test_terminal_states_have_no_exit(self, terminal):
        for target in RunStatus:
            with pytest.raises(InvalidTransitionError):
                validate_run_transition(terminal, target)

    def test_pending_cannot_jump_to_success(self):
        with pytest.raises(InvalidTransitionError):
            validate_run_transition(RunStatus.PENDING, RunStatus.SUCCESS)


class TestApply:
    def test_unknown_run_raises(self, machine):
        with pytest.raises(NotFoundError):
            machine.apply(ObservedStatus("missing", RunStatus.SUCCESS))

    def test_success_sets_result_and_finished_at(self, machine, make_run):
        run_id = make_run(status="running")
        outcome = machine.apply(ObservedStatus(run_id, RunStatus.SUCCESS, result={"pages": 3}))
        assert outcome.applied is True
        assert outcome.run.status is RunStatus.SUCCESS
        assert outcome.run.result == {"pages": 3}
        assert outcome.run.finished_at is not None

    def test_failure_without_message_gets_default(self, machine, make_run):
        run_id = make_run(status="running")
        outcome = machine.apply(ObservedStatus(run_id, RunStatus.FAILED))
        assert outcome.run.status is RunStatus.FAILED
        assert outcome.run.error_message == "remote execution failed"

    def test_pending_run_is_promoted_first(self, machine, make_run):
        run_id = make_run(status="pending")
        outcome = machine.apply(ObservedStatus(run_id, RunStatus.SUCCESS, external_run_id="flow-9"))
        assert outcome.applied is True
        assert outcome.run.status is RunStatus.SUCCESS
        assert outcome.run.started_at is not None
        assert outcome.run.external_run_id == "flow-9"

    def test_running_report_on_running_run_keeps_it_active(self, machine, make_run):
        run_id = make_run(status="running")
        outcome = machine.apply(ObservedStatus(run_id, RunStatus.RUNNING))
        assert outcome.applied is True
        assert outcome.run.status is RunStatus.RUNNING
        assert outcome.run.finished_at is None

    def test_pending_report_is_not_progress(self, machine, make_run):
        run_id = make_run(status="running")
        outcome = machine.apply(ObservedStatus(run_id, RunStatus.PENDING))
        assert outcome.applied is False
        assert outcome.reason == "not_progress"

    def test_duplicate_report_is_discarded(self, machine, make_run):
        run_id = make_run(status="running")
        first = machine.apply(ObservedStatus(run_id, RunStatus.SUCCESS, result={"v": 1}))
        second = machine.apply(ObservedStatus(run_id, RunStatus.FAILED, error_message="late"))
        assert first.applied is True
        assert second.applied is False
        assert second.reason == "terminal"
        assert second.run.status is RunStatus.SUCCESS
        assert second.run.error_message is None
        assert second.run.finished_at == first.run.finished_at

    def test_terminal_listener_called_once(self, conn, runtime, make_run):
        seen = []
        machine = runtime.state_machine(conn)
        machine.listeners.append(lambda _conn, run: seen.append(run.id))
        run_id = make_run(status="running")
        machine.apply(ObservedStatus(run_id, RunStatus.SUCCESS))
        machine.apply(ObservedStatus(run_id, RunStatus.SUCCESS))
        assert seen == [run_id]

    def test_failing_listener_does_not_undo_transition(self, conn, runtime, make_run):
        def boom(_conn, _run):
            raise RuntimeError("listener broke")

        machine = runtime.state_machine(conn)
        machine.listeners.append(boom)
        run_id = make_run(status="running")
        outcome = machine.apply(ObservedStatus(run_id, RunStatus.CANCELLED))
        assert outcome.applied is True
        assert machine.get(run_id).status is RunStatus.CANCELLED


class TestFinishedAt:
    def test_set_iff_terminal(self, machine, make_run):
        pending = make_run(status="pending")
        running = make_run(status="running")
        assert machine.get(pending).finished_at is None
        assert machine.get(running).finished_at is None

        machine.cancel(pending)
        machine.apply(ObservedStatus(running, RunStatus.FAILED, error_message="boom"))
        for run_id in (pending, running):
            run = machine.get(run_id)
            assert run.is_terminal
            assert run.finished_at is not None


class TestSubmission:
    def test_mark_submitted(self, machine, make_run):
        run_id = make_run(status="pending")
        assert machine.mark_submitted(run_id, "flow-1", "dep-1") is True
        run = machine.get(run_id)
        assert run.status is RunStatus.RUNNING
        assert run.external_run_id == "flow-1"
        assert run.deployment_id == "dep-1"

    def test_mark_submitted_loses_race_quietly(self, machine, make_run):
        run_id = make_run(status="cancelled")
        assert machine.mark_submitted(run_id, "flow-1") is False
        assert machine.get(run_id).status is RunStatus.CANCELLED

    def test_mark_submission_failed_records_error(self, machine, make_run):
        run_id = make_run(status="pending")
        assert machine.mark_submission_failed(run_id, "deployment not found: x") is True
        run = machine.get(run_id)
        assert run.status is RunStatus.FAILED
        assert run.error_message == "deployment not found: x"


class TestCancel:
    def test_pending_cancels_locally(self, machine, engine, make_run):
        run_id = make_run(status="pending")
        run = machine.cancel(run_id)
        assert run.status is RunStatus.CANCELLED
        assert engine.cancelled == []

    def test_running_cancels_remotely(self, machine, engine, make_run):
        run_id = make_run(status="running", external_run_id="flow-7")
        run = machine.cancel(run_id)
        assert run.status is RunStatus.CANCELLED
        assert engine.cancelled == ["flow-7"]

    def test_engine_failure_leaves_run_running(self, machine, engine, make_run):
        engine.fail_cancel = True
        run_id = make_run(status="running", external_run_id="flow-7")
        with pytest.raises(EngineUnavailableError):
            machine.cancel(run_id)
        assert machine.get(run_id).status is RunStatus.RUNNING

    def test_running_without_engine(self, conn, make_run):
        from relay.execution.state_machine import RunStateMachine

        machine = RunStateMachine(conn, engine=None)
        run_id = make_run(status="running", external_run_id="flow-7")
        with pytest.raises(EngineUnavailableError):
            machine.cancel(run_id)

    @pytest.mark.parametrize("status", ["success", "failed", "cancelled"])
    def test_terminal_not_cancellable(self, machine, make_run, status):
        run_id = make_run(status=status)
        with pytest.raises(NotCancellableError):
            machine.cancel(run_id)


class TestForceTerminate:
    def test_old_running_run_fails_with_zombie_message(self, machine, make_run):
        run_id = make_run(status="running", age_minutes=45)
        run = machine.force_terminate(run_id)
        assert run.status is RunStatus.FAILED
        assert run.error_message == "forced termination (exceeded 30m)"
        assert run.finished_at is not None

    def test_young_run_rejected(self, machine, make_run):
        run_id = make_run(status="running", age_minutes=5)
        with pytest.raises(ValidationError):
            machine.force_terminate(run_id)
        assert machine.get(run_id).status is RunStatus.RUNNING

    def test_custom_threshold(self, machine, make_run):
        run_id = make_run(status="pending", age_minutes=6)
        run = machine.force_terminate(run_id, threshold_minutes=5)
        assert run.error_message == "forced termination (exceeded 5m)"

    def test_explicit_now(self, machine, make_run):
        run_id = make_run(status="running", age_minutes=1)
        later = utc_now() + timedelta(hours=2)
        assert machine.force_terminate(run_id, now=later).status is RunStatus.FAILED

    def test_terminal_run_rejected(self, machine, make_run):
        run_id = make_run(status="success", age_minutes=120)
        with pytest.raises(NotCancellableError):
            machine.force_terminate(run_id)


class TestExpire:
    def test_expire_active_run(self, machine, make_run):
        run_id = make_run(status="pending")
        run = machine.expire(run_id, "sync task timeout (exceeded 60s)")
        assert run is not None
        assert run.status is RunStatus.FAILED

    def test_expire_terminal_run_is_noop(self, machine, make_run):
        run_id = make_run(status="success")
        assert machine.expire(run_id, "late") is None
