"""Batch executor - fan a workflow (or a document sync) out over a tree.

A batch is created synchronously: the target list is collected, the batch
row is written with its ``total`` and the caller gets the ``batch_id``
back.  Submission then happens off the request path with at most
``concurrency`` submissions in flight; the batch never waits for remote
execution.  Runs that finish later are folded into the batch by the
terminal listener registered on the run state machine.

Manifesto:
    - **Every target is accounted for:** each collected target ends up as
      exactly one detail item, skipped, failed or linked to a run
    - **Counters only grow:** an item increments a counter once, when it
      first resolves; ``success + failed + skipped == total`` once the
      batch is terminal
    - **Optimistic folding:** counter/detail updates are read-modify-write
      guarded by the batch ``revision``; a stale write re-reads and folds
      again

Architecture:
    ::

        start_workflow_batch()                       request thread
          ├─ resolve definition (validation errors propagate)
          ├─ collect nodes (failure → batch failed, returned)
          └─ INSERT batch(pending, total) + COMMIT → dispatch

        run_workflow_batch()                         background thread
          ├─ started_at
          ├─ ThreadPoolExecutor(max_workers=concurrency)
          │     per node: cancel check → evaluate → launch → record_item
          └─ close_submission(): all resolved → completed|cancelled
                                 otherwise    → running

        fold_terminal_run(conn, run)                 run state machine
          └─ item := run status, counter += 1 → finalize when all resolved

Tags:
    batch, concurrency, thread-pool, optimistic-concurrency, relay

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any

from relay.core.connection import close_connection
from relay.core.errors import (
    ConflictError,
    ContentStoreError,
    NotCancellableError,
    NotFoundError,
    RelayError,
)
from relay.core.logging import LogContext, get_logger
from relay.core.repositories import BatchRepository
from relay.core.timestamps import now_iso
from relay.execution.launcher import LaunchRequest
from relay.execution.models import (
    Batch,
    BatchKind,
    BatchStatus,
    ItemStatus,
    RunTarget,
    SkipReason,
    TargetKind,
    WorkflowRun,
    item_status_for,
    validate_batch_transition,
)
from relay.execution.planner import PlanFilters, PlannedDocument, PlannedNode
from relay.execution.sync import DocumentSyncer

if TYPE_CHECKING:
    from relay.execution.runtime import Runtime

logger = get_logger(__name__)

MAX_FOLD_ATTEMPTS = 50

_COUNTER_FOR: dict[ItemStatus, str] = {
    ItemStatus.SUCCESS: "success_count",
    ItemStatus.FAILED: "failed_count",
    ItemStatus.CANCELLED: "failed_count",
    ItemStatus.SKIPPED: "skipped_count",
}


def resolve_concurrency(requested: int | None, default: int, maximum: int) -> int:
    """Non-positive or missing values use *default*; the result is capped at *maximum*."""
    value = default if requested is None or requested <= 0 else requested
    return max(1, min(value, maximum))


# =============================================================================
# Progress folding
# =============================================================================


class BatchProgress:
    """Revision-guarded updates of one batch row's counters and details."""

    def __init__(self, conn: Any) -> None:
        self.conn = conn
        self.repo = BatchRepository(conn)

    def get(self, batch_id: str) -> Batch:
        row = self.repo.get(batch_id)
        if row is None:
            raise NotFoundError("batch", batch_id)
        return Batch.from_row(row)

    def _fold(self, batch_id: str, change: Callable[[Batch], dict[str, Any] | None]) -> Batch | None:
        """Apply *change* until its write lands on the revision it read.

        *change* returns the fields to write, or ``None`` when there is
        nothing to do.  Returns the updated batch, or ``None`` if nothing
        was written.
        """
        for _ in range(MAX_FOLD_ATTEMPTS):
            batch = self.get(batch_id)
            fields = change(batch)
            if fields is None:
                self.conn.commit()
                return None
            saved = self.repo.save_if_revision(batch_id, batch.revision, **fields)
            self.conn.commit()
            if saved:
                return self.get(batch_id)
        raise ConflictError(f"batch {batch_id} is too contended to update")

    @staticmethod
    def _counter_fields(batch: Batch, status: ItemStatus) -> dict[str, Any]:
        counter = _COUNTER_FOR.get(status)
        if counter is None:
            return {}
        return {counter: getattr(batch, counter) + 1}

    @staticmethod
    def _terminal_fields(batch: Batch, details: Sequence[dict[str, Any]], closed: bool) -> dict[str, Any]:
        """Finalize fields once submission is *closed* and every item resolved."""
        if not closed or len(details) < batch.total:
            return {}
        if not all(ItemStatus(item["status"]).is_resolved for item in details):
            return {}
        target = BatchStatus.CANCELLED if batch.cancel_requested else BatchStatus.COMPLETED
        validate_batch_transition(batch.status, target)
        return {"status": target.value, "finished_at": now_iso()}

    def record_item(self, batch_id: str, item: dict[str, Any]) -> Batch | None:
        """Append one target's outcome."""
        status = ItemStatus(item["status"])

        def change(batch: Batch) -> dict[str, Any] | None:
            if batch.status.is_terminal:
                return None
            return {"details": [*batch.details, item], **self._counter_fields(batch, status)}

        return self._fold(batch_id, change)

    def fold_run(self, run: WorkflowRun) -> Batch | None:
        """Resolve the item linked to a terminal *run*; a no-op if already resolved."""
        if run.batch_id is None or not run.is_terminal:
            return None
        status = item_status_for(run.status)

        def change(batch: Batch) -> dict[str, Any] | None:
            if batch.status.is_terminal:
                return None
            details = [dict(item) for item in batch.details]
            for item in details:
                if item.get("run_id") != run.id:
                    continue
                if ItemStatus(item["status"]).is_resolved:
                    return None
                item["status"] = status.value
                if run.error_message:
                    item["error"] = run.error_message
                closed = batch.status is BatchStatus.RUNNING
                return {
                    "details": details,
                    **self._counter_fields(batch, status),
                    **self._terminal_fields(batch, details, closed),
                }
            return None

        updated = self._fold(run.batch_id, change)
        if updated is not None and updated.status.is_terminal:
            logger.info(
                "batch_finished",
                batch_id=updated.batch_id,
                status=updated.status.value,
                success=updated.success_count,
                failed=updated.failed_count,
                skipped=updated.skipped_count,
            )
        return updated

    def set_total(self, batch_id: str, total: int) -> Batch | None:
        return self._fold(batch_id, lambda batch: {"total": total})

    def mark_started(self, batch_id: str) -> Batch | None:
        def change(batch: Batch) -> dict[str, Any] | None:
            if batch.status is not BatchStatus.PENDING or batch.started_at is not None:
                return None
            return {"started_at": now_iso()}

        return self._fold(batch_id, change)

    def close_submission(self, batch_id: str) -> Batch | None:
        """Every target was visited: finalize now or move to ``running``."""

        def change(batch: Batch) -> dict[str, Any] | None:
            if batch.status is not BatchStatus.PENDING:
                return None
            validate_batch_transition(batch.status, BatchStatus.RUNNING)
            final = self._terminal_fields(batch, batch.details, True)
            return final or {"status": BatchStatus.RUNNING.value}

        return self._fold(batch_id, change)

    def fail(self, batch_id: str, message: str) -> Batch | None:
        """Terminate as failed; unresolved items count as failed."""

        def change(batch: Batch) -> dict[str, Any] | None:
            if batch.status.is_terminal:
                return None
            validate_batch_transition(batch.status, BatchStatus.FAILED)
            return {
                "status": BatchStatus.FAILED.value,
                "error_message": message,
                "failed_count": batch.total - batch.success_count - batch.skipped_count,
                "finished_at": now_iso(),
            }

        return self._fold(batch_id, change)


def fold_terminal_run(conn: Any, run: WorkflowRun) -> None:
    """Terminal listener: fold a finished run into its batch."""
    if run.batch_id is None:
        return
    BatchProgress(conn).fold_run(run)


# =============================================================================
# Detail items
# =============================================================================


def node_item(planned: PlannedNode, status: ItemStatus, **extra: Any) -> dict[str, Any]:
    node = planned.node
    item: dict[str, Any] = {
        "node_id": node.id,
        "node_name": node.name,
        "node_path": node.path,
        "depth": planned.depth,
        "status": status.value,
    }
    item.update({k: v for k, v in extra.items() if v is not None})
    return item


def document_item(planned: PlannedDocument, status: ItemStatus, **extra: Any) -> dict[str, Any]:
    doc = planned.document
    item: dict[str, Any] = {
        "document_id": doc.id,
        "document_name": doc.title,
        "document_type": doc.type,
        "node_id": planned.node_id,
        "node_path": planned.node_path,
        "status": status.value,
    }
    item.update({k: v for k, v in extra.items() if v is not None})
    return item


def run_item_fields(run: WorkflowRun, error: str | None = None) -> dict[str, Any]:
    return {
        "run_id": run.id,
        "external_run_id": run.external_run_id,
        "error": error or run.error_message,
    }


# =============================================================================
# Executor
# =============================================================================


class BatchExecutor:
    """Creates batches and drives their submission loops.

    Args:
        runtime: Supplies settings, collaborators, connections and the
            dispatch policy (background thread or inline).
    """

    def __init__(self, runtime: Runtime) -> None:
        self.runtime = runtime
        self.settings = runtime.settings

    # -- creation ----------------------------------------------------------

    def _create(
        self,
        conn: Any,
        *,
        kind: BatchKind,
        root_node_id: int,
        workflow_key: str | None,
        options: dict[str, Any],
        created_by: str | None,
    ) -> str:
        batch_id = str(uuid.uuid4())
        now = now_iso()
        BatchRepository(conn).create(
            {
                "batch_id": batch_id,
                "kind": kind.value,
                "workflow_key": workflow_key,
                "root_node_id": root_node_id,
                "status": BatchStatus.PENDING.value,
                "total": 0,
                "success_count": 0,
                "failed_count": 0,
                "skipped_count": 0,
                "details": [],
                "options": options,
                "cancel_requested": False,
                "revision": 0,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            }
        )
        conn.commit()
        return batch_id

    def start_workflow_batch(
        self,
        conn: Any,
        *,
        root_node_id: int,
        workflow_key: str,
        filters: PlanFilters | None = None,
        parameters: dict[str, Any] | None = None,
        concurrency: int | None = None,
        created_by: str | None = None,
    ) -> Batch:
        """Validate, collect nodes, record the batch and start submitting.

        Raises :class:`~relay.core.errors.ValidationError` for an unusable
        workflow (nothing is written).  A content store failure while
        collecting nodes yields a ``failed`` batch instead of an error.
        """
        filters = filters or PlanFilters()
        self.runtime.launcher(conn).resolve_definition(workflow_key, TargetKind.NODE)
        planner = self.runtime.planner()
        workers = resolve_concurrency(
            concurrency, self.settings.default_batch_concurrency, self.settings.max_batch_concurrency
        )
        options = {"filters": filters.to_dict(), "parameters": parameters or {}, "concurrency": workers}
        batch_id = self._create(
            conn,
            kind=BatchKind.WORKFLOW,
            root_node_id=root_node_id,
            workflow_key=workflow_key,
            options=options,
            created_by=created_by,
        )
        progress = BatchProgress(conn)
        try:
            nodes = planner.collect_nodes(root_node_id, filters.include_descendants)
        except ContentStoreError as exc:
            logger.warning("batch_collect_failed", batch_id=batch_id, error=str(exc))
            progress.fail(batch_id, f"failed to collect nodes: {exc}")
            return progress.get(batch_id)

        progress.set_total(batch_id, len(nodes))
        logger.info(
            "batch_created",
            batch_id=batch_id,
            kind=BatchKind.WORKFLOW.value,
            workflow_key=workflow_key,
            root_node_id=root_node_id,
            total=len(nodes),
            concurrency=workers,
        )
        self.runtime.dispatch(
            f"batch-{batch_id}",
            self.run_workflow_batch,
            batch_id,
            nodes,
            workflow_key=workflow_key,
            filters=filters,
            parameters=parameters or {},
            concurrency=workers,
            created_by=created_by,
        )
        return progress.get(batch_id)

    def start_sync_batch(
        self,
        conn: Any,
        *,
        root_node_id: int,
        include_descendants: bool = True,
        concurrency: int | None = None,
        created_by: str | None = None,
    ) -> Batch:
        """Sync every eligible document under *root_node_id*."""
        planner = self.runtime.planner()
        workers = resolve_concurrency(
            concurrency, self.settings.default_sync_concurrency, self.settings.max_batch_concurrency
        )
        options = {"include_descendants": include_descendants, "concurrency": workers}
        batch_id = self._create(
            conn,
            kind=BatchKind.SYNC,
            root_node_id=root_node_id,
            workflow_key=self.settings.sync_workflow_key,
            options=options,
            created_by=created_by,
        )
        progress = BatchProgress(conn)
        try:
            documents = planner.collect_documents(root_node_id, include_descendants)
        except ContentStoreError as exc:
            logger.warning("batch_collect_failed", batch_id=batch_id, error=str(exc))
            progress.fail(batch_id, f"failed to collect documents: {exc}")
            return progress.get(batch_id)

        progress.set_total(batch_id, len(documents))
        logger.info(
            "batch_created",
            batch_id=batch_id,
            kind=BatchKind.SYNC.value,
            root_node_id=root_node_id,
            total=len(documents),
            concurrency=workers,
        )
        self.runtime.dispatch(
            f"batch-{batch_id}",
            self.run_sync_batch,
            batch_id,
            documents,
            concurrency=workers,
            created_by=created_by,
        )
        return progress.get(batch_id)

    # -- submission loops --------------------------------------------------

    def _drive(self, batch_id: str, targets: Sequence[Any], concurrency: int, worker: Callable[[Any], None]) -> None:
        with LogContext(batch_id=batch_id):
            self._drive_loop(batch_id, targets, concurrency, worker)

    def _drive_loop(self, batch_id: str, targets: Sequence[Any], concurrency: int, worker: Callable[[Any], None]) -> None:
        conn = self.runtime.open_connection()
        progress = BatchProgress(conn)
        try:
            progress.mark_started(batch_id)
            pool = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"batch-{batch_id[:8]}")
            try:
                for future in as_completed([pool.submit(worker, target) for target in targets]):
                    future.result()
            finally:
                # after a worker raises, queued targets are dropped rather than submitted
                pool.shutdown(wait=True, cancel_futures=True)
            final = progress.close_submission(batch_id)
            if final is not None:
                logger.info("batch_submission_closed", batch_id=batch_id, status=final.status.value)
        except Exception as exc:
            conn.rollback()
            logger.exception("batch_aborted", batch_id=batch_id)
            progress.fail(batch_id, f"batch aborted: {exc}")
        finally:
            close_connection(conn)

    def run_workflow_batch(
        self,
        batch_id: str,
        nodes: Sequence[PlannedNode],
        *,
        workflow_key: str,
        filters: PlanFilters,
        parameters: dict[str, Any],
        concurrency: int,
        created_by: str | None = None,
    ) -> None:
        def worker(planned: PlannedNode) -> None:
            with LogContext(batch_id=batch_id):
                self._process_node(batch_id, planned, workflow_key, filters, parameters, created_by)

        self._drive(batch_id, nodes, concurrency, worker)

    def run_sync_batch(
        self,
        batch_id: str,
        documents: Sequence[PlannedDocument],
        *,
        concurrency: int,
        created_by: str | None = None,
    ) -> None:
        def worker(planned: PlannedDocument) -> None:
            with LogContext(batch_id=batch_id):
                self._process_document(batch_id, planned, created_by)

        self._drive(batch_id, documents, concurrency, worker)

    # -- per target --------------------------------------------------------

    def _record_run_item(
        self, conn: Any, progress: BatchProgress, batch_id: str, item: dict[str, Any], run: WorkflowRun
    ) -> None:
        progress.record_item(batch_id, item)
        current = self.runtime.state_machine(conn).get(run.id)
        if current.is_terminal:
            # The run may have finished before its item existed.
            progress.fold_run(current)

    def _process_node(
        self,
        batch_id: str,
        planned: PlannedNode,
        workflow_key: str,
        filters: PlanFilters,
        parameters: dict[str, Any],
        created_by: str | None,
    ) -> None:
        conn = self.runtime.open_connection()
        progress = BatchProgress(conn)
        try:
            if progress.get(batch_id).cancel_requested:
                progress.record_item(
                    batch_id, node_item(planned, ItemStatus.SKIPPED, reason=SkipReason.BATCH_CANCELLED.value)
                )
                return

            verdict = self.runtime.planner().evaluate(planned, filters)
            if verdict.fetch_failed:
                progress.record_item(
                    batch_id,
                    node_item(planned, ItemStatus.FAILED, reason=verdict.skip_reason.value, error=verdict.error),
                )
                return
            if not verdict.can_execute:
                progress.record_item(
                    batch_id, node_item(planned, ItemStatus.SKIPPED, reason=verdict.skip_reason.value)
                )
                return

            try:
                outcome = self.runtime.launcher(conn).launch(
                    LaunchRequest(
                        workflow_key=workflow_key,
                        target=RunTarget.node(planned.node.id),
                        parameters=dict(parameters),
                        created_by=created_by,
                        batch_id=batch_id,
                        source_doc_ids=verdict.source_doc_ids,
                    )
                )
            except RelayError as exc:
                conn.rollback()
                logger.warning("batch_item_failed", batch_id=batch_id, node_id=planned.node.id, error=str(exc))
                progress.record_item(batch_id, node_item(planned, ItemStatus.FAILED, error=str(exc)))
                return

            run = outcome.run
            item = node_item(planned, item_status_for(run.status), **run_item_fields(run, outcome.error))
            self._record_run_item(conn, progress, batch_id, item, run)
        finally:
            close_connection(conn)

    def _process_document(self, batch_id: str, planned: PlannedDocument, created_by: str | None) -> None:
        conn = self.runtime.open_connection()
        progress = BatchProgress(conn)
        try:
            if progress.get(batch_id).cancel_requested:
                progress.record_item(
                    batch_id, document_item(planned, ItemStatus.SKIPPED, reason=SkipReason.BATCH_CANCELLED.value)
                )
                return

            verdict = self.runtime.planner().evaluate_document(planned)
            if verdict.skip_reason is SkipReason.INVALID_SYNC_TARGET:
                progress.record_item(
                    batch_id,
                    document_item(planned, ItemStatus.FAILED, reason=verdict.skip_reason.value, error=verdict.error),
                )
                return
            if not verdict.can_sync:
                progress.record_item(
                    batch_id, document_item(planned, ItemStatus.SKIPPED, reason=verdict.skip_reason.value)
                )
                return

            try:
                outcome = DocumentSyncer(conn, self.runtime).trigger(
                    planned.document.id, created_by=created_by, batch_id=batch_id
                )
            except RelayError as exc:
                conn.rollback()
                logger.warning(
                    "batch_item_failed", batch_id=batch_id, document_id=planned.document.id, error=str(exc)
                )
                progress.record_item(batch_id, document_item(planned, ItemStatus.FAILED, error=str(exc)))
                return

            if outcome.run is None or not outcome.started:
                progress.record_item(
                    batch_id,
                    document_item(planned, ItemStatus.SKIPPED, reason=SkipReason.SYNC_IN_PROGRESS.value),
                )
                return
            run = outcome.run
            item = document_item(planned, item_status_for(run.status), **run_item_fields(run, outcome.error))
            self._record_run_item(conn, progress, batch_id, item, run)
        finally:
            close_connection(conn)

    # -- control -----------------------------------------------------------

    def cancel(self, conn: Any, batch_id: str) -> Batch:
        """Request cooperative cancellation.

        Targets not yet visited are recorded as skipped; submitted runs are
        left alone and the batch becomes ``cancelled`` once they finish.
        """
        progress = BatchProgress(conn)
        batch = progress.get(batch_id)
        if batch.status.is_terminal:
            raise NotCancellableError("batch", batch_id, batch.status.value)
        if not progress.repo.request_cancel(batch_id):
            conn.commit()
            current = progress.get(batch_id)
            raise NotCancellableError("batch", batch_id, current.status.value)
        conn.commit()
        logger.info("batch_cancel_requested", batch_id=batch_id)
        return progress.get(batch_id)
