"""Run state machine - the only writer of ``workflow_runs.status``.

Every transition is a compare-and-swap against the stored status; losing a
race is a no-op, never an error.  Remote reports (callbacks and polls)
arrive as :class:`~relay.execution.models.ObservedStatus` and go through one
idempotent function, so duplicate or out-of-order reports are harmless.

Architecture:

    .. code-block:: text

        RunStateMachine
        ┌─────────────────────────────────────────────────────────────┐
        │  mark_submitted()          pending → running                 │
        │  mark_submission_failed()  pending → failed                  │
        │  apply(ObservedStatus)     pending|running → reported        │
        │                            terminal → discarded (logged)     │
        │  cancel()                  pending → cancelled (local)       │
        │                            running → cancelled (remote ack)  │
        │  force_terminate()         pending|running → failed (zombie) │
        ├─────────────────────────────────────────────────────────────┤
        │  on terminal: listener(conn, run) for each listener          │
        │  (batch progress folding)                                    │
        └─────────────────────────────────────────────────────────────┘

Example:
    >>> machine = RunStateMachine(conn, engine=engine)
    >>> machine.apply(ObservedStatus(run_id, RunStatus.SUCCESS, result={"ok": 1}))
    TransitionOutcome(applied=True, ...)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from relay.core.errors import EngineUnavailableError, NotCancellableError, NotFoundError, ValidationError
from relay.core.logging import get_logger
from relay.core.repositories import RunRepository
from relay.core.timestamps import now_iso, to_iso8601, utc_now
from relay.execution.engine import RemoteEngine
from relay.execution.models import (
    ObservedStatus,
    RunStatus,
    WorkflowRun,
    validate_run_transition,
)

logger = get_logger(__name__)

TerminalListener = Callable[[Any, WorkflowRun], None]
"""Called as ``listener(conn, run)`` after a run reaches a terminal status."""


def zombie_message(threshold_minutes: int) -> str:
    return f"forced termination (exceeded {threshold_minutes}m)"


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    """Result of applying one event to one run."""

    run: WorkflowRun
    applied: bool
    reason: str | None = None


class RunStateMachine:
    """Applies lifecycle events to runs through conditional updates.

    Args:
        conn: Connection used for reads and writes; committed after each
            applied transition.
        engine: Remote engine, needed only to cancel a running run.
        listeners: Terminal listeners, invoked after the commit.
        zombie_threshold_minutes: Minimum age for :meth:`force_terminate`.
    """

    def __init__(
        self,
        conn: Any,
        *,
        engine: RemoteEngine | None = None,
        listeners: Sequence[TerminalListener] = (),
        zombie_threshold_minutes: int = 30,
    ) -> None:
        self.conn = conn
        self.engine = engine
        self.listeners = list(listeners)
        self.zombie_threshold_minutes = zombie_threshold_minutes
        self.runs = RunRepository(conn)

    # -- reads -------------------------------------------------------------

    def get(self, run_id: str) -> WorkflowRun:
        row = self.runs.get(run_id)
        if row is None:
            raise NotFoundError("run", run_id)
        return WorkflowRun.from_row(row)

    # -- internals ---------------------------------------------------------

    def _swap(self, run_id: str, expected: Sequence[RunStatus], target: RunStatus, **fields: Any) -> bool:
        for status in expected:
            validate_run_transition(status, target)
        changed = self.runs.transition(run_id, [s.value for s in expected], target.value, **fields)
        self.conn.commit()
        return changed

    def _notify(self, run: WorkflowRun) -> None:
        for listener in self.listeners:
            try:
                listener(self.conn, run)
            except Exception:
                self.conn.rollback()
                logger.exception("terminal_listener_failed", run_id=run.id, listener=repr(listener))

    def _finish(
        self,
        run_id: str,
        expected: Sequence[RunStatus],
        target: RunStatus,
        **fields: Any,
    ) -> WorkflowRun | None:
        """Move to a terminal status; returns the new run or None if the swap lost."""
        if not self._swap(run_id, expected, target, finished_at=now_iso(), **fields):
            return None
        run = self.get(run_id)
        logger.info("run_finished", run_id=run_id, status=target.value, batch_id=run.batch_id)
        self._notify(run)
        return run

    # -- submission --------------------------------------------------------

    def mark_submitted(self, run_id: str, external_run_id: str, deployment_id: str | None = None) -> bool:
        """Record a successful submission (``pending -> running``)."""
        changed = self._swap(
            run_id,
            [RunStatus.PENDING],
            RunStatus.RUNNING,
            external_run_id=external_run_id,
            deployment_id=deployment_id,
            started_at=now_iso(),
        )
        if changed:
            logger.info("run_submitted", run_id=run_id, external_run_id=external_run_id)
        else:
            logger.warning("run_submit_lost_race", run_id=run_id, external_run_id=external_run_id)
        return changed

    def mark_submission_failed(self, run_id: str, message: str) -> bool:
        """Record a failed submission (``pending -> failed``)."""
        run = self._finish(run_id, [RunStatus.PENDING], RunStatus.FAILED, error_message=message)
        if run is not None:
            logger.warning("run_submission_failed", run_id=run_id, error=message)
        return run is not None

    # -- remote reports ----------------------------------------------------

    def apply(self, observed: ObservedStatus) -> TransitionOutcome:
        """Apply a remote status report; terminal runs discard it."""
        run = self.get(observed.run_id)
        if run.is_terminal:
            logger.info(
                "status_report_discarded",
                run_id=run.id,
                current=run.status.value,
                reported=observed.status.value,
                source=observed.source,
            )
            return TransitionOutcome(run, False, "terminal")

        if observed.status is RunStatus.PENDING:
            return TransitionOutcome(run, False, "not_progress")

        if run.status is RunStatus.PENDING:
            promoted = self._swap(
                run.id,
                [RunStatus.PENDING],
                RunStatus.RUNNING,
                started_at=now_iso(),
                external_run_id=observed.external_run_id,
            )
            if not promoted:
                return self._lost(run.id, observed)
        elif observed.external_run_id and run.external_run_id is None:
            self.runs.attach_external_ref(run.id, observed.external_run_id, None)
            self.conn.commit()

        if observed.status is RunStatus.RUNNING:
            return TransitionOutcome(self.get(run.id), True)

        fields: dict[str, Any] = {}
        if observed.status is RunStatus.SUCCESS:
            fields["result"] = observed.result
        elif observed.status is RunStatus.FAILED:
            fields["error_message"] = observed.error_message or "remote execution failed"
        finished = self._finish(run.id, [RunStatus.RUNNING], observed.status, **fields)
        if finished is None:
            return self._lost(run.id, observed)
        return TransitionOutcome(finished, True)

    def _lost(self, run_id: str, observed: ObservedStatus) -> TransitionOutcome:
        run = self.get(run_id)
        logger.info(
            "transition_lost_race",
            run_id=run_id,
            current=run.status.value,
            reported=observed.status.value,
        )
        return TransitionOutcome(run, False, "lost_race")

    # -- operator actions --------------------------------------------------

    def cancel(self, run_id: str) -> WorkflowRun:
        """Cancel a run.

        A pending run has nothing remote to stop and is cancelled locally.  A
        running run is cancelled only after the engine accepts the request;
        if the engine call fails the run is left untouched and the error
        propagates.
        """
        run = self.get(run_id)
        if run.status is RunStatus.PENDING:
            cancelled = self._finish(run.id, [RunStatus.PENDING], RunStatus.CANCELLED)
            if cancelled is not None:
                return cancelled
            run = self.get(run_id)

        if run.status is not RunStatus.RUNNING:
            raise NotCancellableError("run", run_id, run.status.value)

        if run.external_run_id:
            if self.engine is None:
                raise EngineUnavailableError("engine not configured; cannot cancel a running run")
            self.engine.cancel(run.external_run_id)

        cancelled = self._finish(run.id, [RunStatus.RUNNING], RunStatus.CANCELLED)
        if cancelled is None:
            current = self.get(run_id)
            raise NotCancellableError("run", run_id, current.status.value)
        return cancelled

    def expire(self, run_id: str, message: str) -> WorkflowRun | None:
        """Fail an active run whose owner gave up on it (stale sync attempts)."""
        run = self._finish(
            run_id, [RunStatus.PENDING, RunStatus.RUNNING], RunStatus.FAILED, error_message=message
        )
        if run is not None:
            logger.warning("run_expired", run_id=run_id, error=message)
        return run

    def active_since(self, run: WorkflowRun) -> datetime | None:
        return run.started_at or run.created_at

    def force_terminate(
        self,
        run_id: str,
        *,
        threshold_minutes: int | None = None,
        now: datetime | None = None,
    ) -> WorkflowRun:
        """Mark a stuck run failed without asking the engine.

        Only runs active for longer than the zombie threshold qualify; a
        younger run must go through :meth:`cancel`.
        """
        minutes = self.zombie_threshold_minutes if threshold_minutes is None else threshold_minutes
        run = self.get(run_id)
        if run.is_terminal:
            raise NotCancellableError("run", run_id, run.status.value, action="terminate")

        since = self.active_since(run)
        cutoff = (now or utc_now()) - timedelta(minutes=minutes)
        if since is not None and since > cutoff:
            raise ValidationError(
                f"run has been active for less than {minutes}m; use cancel instead",
                field="run_id",
                value=run_id,
                constraint=f"active >= {minutes}m",
            )

        terminated = self._finish(
            run.id,
            [RunStatus.PENDING, RunStatus.RUNNING],
            RunStatus.FAILED,
            error_message=zombie_message(minutes),
        )
        if terminated is None:
            current = self.get(run_id)
            raise NotCancellableError("run", run_id, current.status.value, action="terminate")
        logger.warning(
            "run_force_terminated",
            run_id=run_id,
            active_since=to_iso8601(since),
            threshold_minutes=minutes,
        )
        return terminated
