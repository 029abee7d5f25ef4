"""Stuck-run reaper.

Reclassifies runs that stopped making progress: ``running`` runs whose
``started_at`` is older than the threshold, and ``pending`` runs (orphaned
before submission) whose ``created_at`` is older than the threshold.  Each
is force-terminated through the state machine, so batch progress folds as
for any other terminal run.  Runs with an external reference also get a
best-effort remote cancel; a failed cancel is logged and never blocks the
local termination.

Running it twice in a row terminates nothing the second time.

Example:
    >>> report = StuckRunReaper(machine, engine=engine).reap(30)
    >>> report.count
    2
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from relay.core.connection import close_connection
from relay.core.errors import NotCancellableError, RelayError
from relay.core.logging import get_logger
from relay.core.timestamps import to_iso8601, utc_now
from relay.execution.engine import RemoteEngine
from relay.execution.models import RunStatus, WorkflowRun
from relay.execution.state_machine import RunStateMachine

logger = get_logger(__name__)


@dataclass
class ReapReport:
    threshold_minutes: int
    terminated: list[str] = field(default_factory=list)
    remote_cancel_failures: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.terminated)

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold_minutes": self.threshold_minutes,
            "terminated_count": self.count,
            "terminated_run_ids": self.terminated,
            "remote_cancel_failures": self.remote_cancel_failures,
        }


class StuckRunReaper:
    def __init__(self, machine: RunStateMachine, *, engine: RemoteEngine | None = None) -> None:
        self.machine = machine
        self.engine = engine

    def stale_runs(self, threshold_minutes: int, now: datetime | None = None) -> list[WorkflowRun]:
        cutoff = to_iso8601((now or utc_now()) - timedelta(minutes=threshold_minutes)) or ""
        rows = [
            *self.machine.runs.find_stale(RunStatus.RUNNING.value, "started_at", cutoff),
            *self.machine.runs.find_stale(RunStatus.PENDING.value, "created_at", cutoff),
        ]
        return [WorkflowRun.from_row(row) for row in rows]

    def _cancel_remote(self, run: WorkflowRun, report: ReapReport) -> None:
        if not run.external_run_id or self.engine is None:
            return
        try:
            self.engine.cancel(run.external_run_id)
        except RelayError as exc:
            report.remote_cancel_failures.append(run.id)
            logger.warning(
                "reaper_remote_cancel_failed",
                run_id=run.id,
                external_run_id=run.external_run_id,
                error=str(exc),
            )

    def reap(self, threshold_minutes: int | None = None, *, now: datetime | None = None) -> ReapReport:
        """Force-terminate every run active for longer than the threshold."""
        minutes = self.machine.zombie_threshold_minutes if threshold_minutes is None else threshold_minutes
        now = now or utc_now()
        report = ReapReport(threshold_minutes=minutes)
        for run in self.stale_runs(minutes, now):
            try:
                self.machine.force_terminate(run.id, threshold_minutes=minutes, now=now)
            except NotCancellableError:
                # Finished between the scan and the swap.
                continue
            report.terminated.append(run.id)
            self._cancel_remote(run, report)
        if report.count:
            logger.warning("reaper_terminated_runs", count=report.count, threshold_minutes=minutes)
        return report


class ReaperThread:
    """Runs the reaper every ``interval_seconds`` on a daemon thread.

    Each pass opens its own connection through *open_connection*.
    """

    def __init__(
        self,
        open_connection: Callable[[], Any],
        make_machine: Callable[[Any], RunStateMachine],
        *,
        interval_seconds: int,
        threshold_minutes: int,
        engine: RemoteEngine | None = None,
    ) -> None:
        self.open_connection = open_connection
        self.make_machine = make_machine
        self.interval_seconds = interval_seconds
        self.threshold_minutes = threshold_minutes
        self.engine = engine
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> ReapReport:
        conn = self.open_connection()
        try:
            reaper = StuckRunReaper(self.make_machine(conn), engine=self.engine)
            return reaper.reap(self.threshold_minutes)
        finally:
            close_connection(conn)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("reaper_pass_failed")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="relay-reaper", daemon=True)
        self._thread.start()
        logger.info("reaper_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("reaper_stopped")
