"""
Tests for batch execution: skip accounting, the concurrency bound,
counter folding from terminal runs, and cooperative cancellation.
"""

from __future__ import annotations

import time

import pytest

from relay.core.errors import NotCancellableError, ValidationError
from relay.core.repositories import RunRepository
from relay.execution.batch import BatchExecutor, BatchProgress, resolve_concurrency
from relay.execution.models import BatchStatus, ObservedStatus, RunStatus, WorkflowRun
from relay.execution.planner import PlanFilters


@pytest.fixture
def executor(runtime):
    return BatchExecutor(runtime)


def _batch_runs(conn, batch_id) -> list[WorkflowRun]:
    rows, _ = RunRepository(conn).list_runs(batch_id=batch_id, limit=100)
    return [WorkflowRun.from_row(row) for row in rows]


class TestResolveConcurrency:
    @pytest.mark.parametrize(
        "requested,expected",
        [(None, 1), (0, 1), (-3, 1), (4, 4), (50, 20)],
    )
    def test_bounds(self, requested, expected):
        assert resolve_concurrency(requested, 1, 20) == expected


class TestWorkflowBatch:
    def test_skips_nodes_without_sources(self, conn, executor, content, register_workflow):
        register_workflow()
        content.add_node(1, "root", sources=[101])
        content.add_node(2, "a", parent=1, sources=[102])
        content.add_node(3, "b", parent=1)
        content.add_node(4, "c", parent=1, sources=[104])
        content.add_node(5, "d", parent=1)

        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize")
        batch = BatchProgress(conn).get(batch.batch_id)

        assert batch.total == 5
        assert batch.skipped_count == 2
        assert batch.status is BatchStatus.RUNNING
        skipped = [d for d in batch.details if d["status"] == "skipped"]
        assert {d["node_id"] for d in skipped} == {3, 5}
        assert all(d["reason"] == "no_source" for d in skipped)
        assert len(_batch_runs(conn, batch.batch_id)) == 3

    def test_concurrency_bound_and_final_counts(self, conn, runtime, executor, engine, content, register_workflow):
        register_workflow()
        engine.submit_delay = 0.05
        content.add_node(1, "root", sources=[100])
        for node_id in range(2, 11):
            content.add_node(node_id, f"n{node_id}", parent=1, sources=[100 + node_id])

        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize", concurrency=2)
        assert batch.total == 10
        assert engine.max_in_flight <= 2
        assert len(engine.submitted) == 10

        machine = runtime.state_machine(conn)
        for run in _batch_runs(conn, batch.batch_id):
            machine.apply(ObservedStatus(run.id, RunStatus.SUCCESS))

        final = BatchProgress(conn).get(batch.batch_id)
        assert final.success_count + final.failed_count + final.skipped_count == 10
        assert final.success_count == 10
        assert final.status is BatchStatus.COMPLETED
        assert final.finished_at is not None

    def test_worker_error_stops_queued_targets(self, conn, executor, content, register_workflow, monkeypatch):
        register_workflow()
        content.add_node(1, "root", sources=[100])
        for node_id in range(2, 21):
            content.add_node(node_id, f"n{node_id}", parent=1, sources=[node_id * 10])
        processed = []

        def process(batch_id, planned, *args):
            processed.append(planned)
            if len(processed) == 1:
                raise RuntimeError("content store exploded")
            time.sleep(0.05)

        monkeypatch.setattr(executor, "_process_node", process)
        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize", concurrency=1)

        final = BatchProgress(conn).get(batch.batch_id)
        assert final.status is BatchStatus.FAILED
        assert final.error_message == "batch aborted: content store exploded"
        assert len(processed) < 5

    def test_submission_failures_count_immediately(self, conn, executor, engine, content, register_workflow):
        register_workflow()
        engine.fail_submit = True
        content.add_node(1, "root", sources=[101])
        content.add_node(2, "a", parent=1, sources=[102])

        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize")
        final = BatchProgress(conn).get(batch.batch_id)
        assert final.failed_count == 2
        assert final.status is BatchStatus.COMPLETED
        assert all("engine unavailable" in d["error"] for d in final.details)

    def test_duplicate_callback_does_not_double_count(self, conn, runtime, executor, content, register_workflow):
        register_workflow()
        content.add_node(1, "root", sources=[101])
        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize")
        (run,) = _batch_runs(conn, batch.batch_id)

        machine = runtime.state_machine(conn)
        machine.apply(ObservedStatus(run.id, RunStatus.SUCCESS))
        machine.apply(ObservedStatus(run.id, RunStatus.SUCCESS))
        final = BatchProgress(conn).get(batch.batch_id)
        assert final.success_count == 1
        assert final.status is BatchStatus.COMPLETED

    def test_unknown_workflow_writes_nothing(self, conn, executor, content):
        content.add_node(1, "root", sources=[101])
        with pytest.raises(ValidationError):
            executor.start_workflow_batch(conn, root_node_id=1, workflow_key="ghost")
        from relay.core.repositories import BatchRepository

        assert BatchRepository(conn).list_batches()[1] == 0

    def test_unreachable_root_fails_batch(self, conn, executor, register_workflow):
        register_workflow()
        batch = executor.start_workflow_batch(conn, root_node_id=404, workflow_key="summarize")
        assert batch.status is BatchStatus.FAILED
        assert "failed to collect nodes" in batch.error_message

    def test_source_fetch_failure_is_a_failed_item(self, conn, executor, content, register_workflow):
        register_workflow()
        content.add_node(1, "root", sources=[101])
        content.fail_sources.add(1)
        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize")
        final = BatchProgress(conn).get(batch.batch_id)
        assert final.failed_count == 1
        assert final.details[0]["reason"] == "source_fetch_failed"

    def test_options_recorded(self, conn, executor, content, register_workflow):
        register_workflow()
        content.add_node(1, "root", sources=[101])
        batch = executor.start_workflow_batch(
            conn,
            root_node_id=1,
            workflow_key="summarize",
            filters=PlanFilters(skip_name_contains="tmp"),
            parameters={"depth": 1},
            concurrency=3,
        )
        assert batch.options["concurrency"] == 3
        assert batch.options["parameters"] == {"depth": 1}
        assert batch.options["filters"]["skip_name_contains"] == "tmp"


class TestCancel:
    def test_cancel_running_batch_finishes_when_runs_end(self, conn, runtime, executor, content, register_workflow):
        register_workflow()
        content.add_node(1, "root", sources=[101])
        batch = executor.start_workflow_batch(conn, root_node_id=1, workflow_key="summarize")

        cancelled = executor.cancel(conn, batch.batch_id)
        assert cancelled.cancel_requested is True
        assert cancelled.status is BatchStatus.RUNNING

        (run,) = _batch_runs(conn, batch.batch_id)
        runtime.state_machine(conn).apply(ObservedStatus(run.id, RunStatus.SUCCESS))
        assert BatchProgress(conn).get(batch.batch_id).status is BatchStatus.CANCELLED

    def test_cancel_terminal_batch_rejected(self, conn, executor, content, register_workflow):
        register_workflow()
        batch = executor.start_workflow_batch(conn, root_node_id=404, workflow_key="summarize")
        with pytest.raises(NotCancellableError):
            executor.cancel(conn, batch.batch_id)


class TestSyncBatch:
    def test_sync_batch_counts(self, conn, executor, content):
        content.add_node(1, "root", sources=[101])
        content.add_document(201, node=1, metadata={"sync_target": {"record_id": 7}})
        content.add_document(202, node=1)
        batch = executor.start_sync_batch(conn, root_node_id=1)
        final = BatchProgress(conn).get(batch.batch_id)
        assert final.total == 2
        assert final.skipped_count == 1
        assert final.status is BatchStatus.RUNNING
        running = [d for d in final.details if d["status"] == "running"]
        assert [d["document_id"] for d in running] == [201]
        assert batch.options["concurrency"] == 10
