"""Run retention cleanup.

Runs are only ever deleted here.  Terminal runs are the default target;
deleting active runs has to be asked for explicitly, either by reclassifying
stuck ones first (``include_zombie``) or by forcing (``force_cleanup_active``).

What gets deleted::

    requested statuses    pending/running dropped unless force_cleanup_active
    + zombies             with include_zombie, active runs past the zombie
                          threshold; force-terminated, then deleted by id

A dry run counts the same union and writes nothing.  An empty status set
after dropping the active statuses deletes zombies only, never "everything".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from relay.core.errors import NotCancellableError, ValidationError
from relay.core.logging import get_logger
from relay.core.timestamps import to_iso8601, utc_now
from relay.execution.models import ACTIVE_RUN_STATUSES, TERMINAL_RUN_STATUSES, RunStatus, WorkflowRun
from relay.execution.state_machine import RunStateMachine

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CleanupFilters:
    before: datetime | None = None
    statuses: tuple[RunStatus, ...] = ()
    workflow_key: str | None = None
    node_id: int | None = None
    document_id: int | None = None
    include_zombie: bool = False
    force_cleanup_active: bool = False
    dry_run: bool = False

    def target_filters(self) -> dict[str, Any]:
        return {
            "workflow_key": self.workflow_key,
            "node_id": self.node_id,
            "document_id": self.document_id,
        }


@dataclass(frozen=True, slots=True)
class CleanupReport:
    deleted_count: int
    zombie_count: int
    dry_run: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "zombie_count": self.zombie_count,
            "dry_run": self.dry_run,
        }


def _requested_statuses(filters: CleanupFilters) -> set[RunStatus]:
    statuses = set(filters.statuses) or set(TERMINAL_RUN_STATUSES)
    if statuses & ACTIVE_RUN_STATUSES and not (filters.include_zombie or filters.force_cleanup_active):
        raise ValidationError(
            "deleting pending or running runs requires include_zombie or force_cleanup_active",
            field="status",
            value=sorted(s.value for s in statuses),
        )
    return statuses


def _find_zombies(machine: RunStateMachine, filters: CleanupFilters, now: datetime) -> list[WorkflowRun]:
    cutoff = to_iso8601(now - timedelta(minutes=machine.zombie_threshold_minutes)) or ""
    rows = machine.runs.find_active_before(cutoff, filters=filters.target_filters())
    return [WorkflowRun.from_row(row) for row in rows]


def cleanup_runs(machine: RunStateMachine, filters: CleanupFilters, *, now: datetime | None = None) -> CleanupReport:
    """Delete runs matching *filters*; see the module docstring for what matches."""
    statuses = _requested_statuses(filters)
    if not filters.force_cleanup_active:
        statuses -= ACTIVE_RUN_STATUSES
    now = now or utc_now()
    repo = machine.runs
    before = to_iso8601(filters.before)
    status_values = sorted(s.value for s in statuses)
    delete_filters = {**filters.target_filters(), "status": status_values}

    zombies = _find_zombies(machine, filters, now) if filters.include_zombie else []

    if filters.dry_run:
        count = repo.count_matching(delete_filters, before) if status_values else 0
        # zombies the status filter already counts
        count += sum(
            1
            for z in zombies
            if not (z.status in statuses and (before is None or to_iso8601(z.created_at) < before))
        )
        logger.info("cleanup_dry_run", would_delete=count, zombies=len(zombies))
        return CleanupReport(deleted_count=count, zombie_count=len(zombies), dry_run=True)

    terminated: list[str] = []
    for zombie in zombies:
        try:
            machine.force_terminate(zombie.id, now=now)
        except NotCancellableError:
            continue
        terminated.append(zombie.id)

    deleted = repo.delete_matching(delete_filters, before) if status_values else 0
    deleted += repo.delete_ids(terminated)
    machine.conn.commit()
    logger.info(
        "cleanup_completed",
        deleted_count=deleted,
        zombie_count=len(terminated),
        statuses=status_values,
        before=before,
    )
    return CleanupReport(deleted_count=deleted, zombie_count=len(terminated), dry_run=False)
