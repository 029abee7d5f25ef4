"""Retry linker and lineage queries.

A retry is a fresh run whose ``retry_of`` points at a failed or cancelled
run.  The original is never mutated; "what happened in the end" is read by
walking the chain.

Example::

    original (failed) ← retry 1 (failed) ← retry 2 (success)

    build_lineage(conn, "retry-1").latest_status  → success
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from relay.core.errors import NotFoundError
from relay.core.repositories import RunRepository
from relay.execution.launcher import LaunchOutcome, LaunchRequest, RunLauncher
from relay.execution.models import RunStatus, WorkflowRun


@dataclass(frozen=True, slots=True)
class Lineage:
    root: WorkflowRun
    attempts: list[WorkflowRun]

    @property
    def latest(self) -> WorkflowRun:
        return self.attempts[-1]

    @property
    def latest_status(self) -> RunStatus:
        return self.latest.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_run_id": self.root.id,
            "attempt_count": len(self.attempts),
            "latest_run_id": self.latest.id,
            "latest_status": self.latest_status.value,
            "attempts": [run.to_dict() for run in self.attempts],
        }


def create_retry(
    launcher: RunLauncher,
    run_id: str,
    *,
    parameters: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> LaunchOutcome:
    """Create a new run retrying *run_id* (must be failed or cancelled).

    The target and parameters are copied; *parameters* override individual
    keys.  Status checks happen in :meth:`RunLauncher.validate_retry_of`.
    """
    row = launcher.runs.get(run_id)
    if row is None:
        raise NotFoundError("run", run_id)
    original = WorkflowRun.from_row(row)
    return launcher.launch(
        LaunchRequest(
            workflow_key=original.workflow_key,
            target=original.target,
            parameters={**original.parameters, **(parameters or {})},
            retry_of=original.id,
            created_by=created_by,
        )
    )


def find_root(repo: RunRepository, run: WorkflowRun) -> WorkflowRun:
    seen = {run.id}
    current = run
    while current.retry_of and current.retry_of not in seen:
        parent = repo.get(current.retry_of)
        if parent is None:
            break
        current = WorkflowRun.from_row(parent)
        seen.add(current.id)
    return current


def build_lineage(conn: Any, run_id: str) -> Lineage:
    """Root original, every attempt in creation order, and the latest status."""
    repo = RunRepository(conn)
    row = repo.get(run_id)
    if row is None:
        raise NotFoundError("run", run_id)
    root = find_root(repo, WorkflowRun.from_row(row))
    retries = [WorkflowRun.from_row(r) for r in repo.list_retries(root.id)]
    return Lineage(root=root, attempts=[root, *retries])
