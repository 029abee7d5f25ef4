"""Execution domain models.

Defines the core data structures of the orchestrator:

- WorkflowDefinition: an operation kind mapped to a remote deployment
- RunTarget: tagged variant naming the node *or* document a run applies to
- WorkflowRun: one attempt of one workflow against one target
- ProcessingJob: a document-pipeline run keyed by content
- Batch / ItemStatus: a fan-out over a tree and its per-target outcomes
- DocSyncStatus: latest sync attempt for one document
- ObservedStatus: a remote status report, from a callback or a poll

Status enums carry explicit transition tables; ``validate_*_transition``
raises :class:`InvalidTransitionError` for anything not listed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from relay.core.timestamps import parse_timestamp, to_iso8601, utc_now


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return utc_now()


class InvalidTransitionError(ValueError):
    """Raised when an illegal state transition is attempted.

    Terminal statuses accept nothing; callers that may legitimately race
    (callbacks, the reaper) check ``is_terminal`` first and treat the
    terminal case as a no-op instead of catching this.
    """

    def __init__(self, current: str, target: str, enum_name: str = "Status") -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid {enum_name} transition: {current} → {target}"
        )


# =============================================================================
# Runs
# =============================================================================


class RunStatus(str, Enum):
    """Status of a workflow run or processing job.

    Valid transition graph::

        PENDING  → RUNNING | FAILED | CANCELLED
        RUNNING  → SUCCESS | FAILED | CANCELLED
        SUCCESS  → (terminal)
        FAILED   → (terminal)
        CANCELLED → (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RUN_STATUSES


TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.CANCELLED})
ACTIVE_RUN_STATUSES = frozenset({RunStatus.PENDING, RunStatus.RUNNING})

RUN_VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({
        RunStatus.RUNNING,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    }),
    RunStatus.RUNNING: frozenset({
        RunStatus.SUCCESS,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    }),
    RunStatus.SUCCESS: frozenset(),  # terminal
    RunStatus.FAILED: frozenset(),  # terminal
    RunStatus.CANCELLED: frozenset(),  # terminal
}


def validate_run_transition(current: RunStatus, target: RunStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current* → *target* is not allowed."""
    allowed = RUN_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "RunStatus")


class TargetKind(str, Enum):
    NODE = "node"
    DOCUMENT = "document"


@dataclass(frozen=True, slots=True)
class RunTarget:
    """The node or the document a run applies to (never both)."""

    kind: TargetKind
    id: int

    @classmethod
    def node(cls, node_id: int) -> RunTarget:
        return cls(TargetKind.NODE, int(node_id))

    @classmethod
    def document(cls, document_id: int) -> RunTarget:
        return cls(TargetKind.DOCUMENT, int(document_id))

    @property
    def node_id(self) -> int | None:
        return self.id if self.kind is TargetKind.NODE else None

    @property
    def document_id(self) -> int | None:
        return self.id if self.kind is TargetKind.DOCUMENT else None

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def _ts(value: Any) -> datetime | None:
    return parse_timestamp(value)


@dataclass
class WorkflowRun:
    """One attempt of one workflow against one target."""

    id: str
    workflow_key: str
    target: RunTarget
    status: RunStatus = RunStatus.PENDING
    parameters: dict[str, Any] = field(default_factory=dict)
    external_run_id: str | None = None
    deployment_id: str | None = None
    result: Any = None
    error_message: str | None = None
    created_by: str | None = None
    retry_of: str | None = None
    batch_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> WorkflowRun:
        if row.get("node_id") is not None:
            target = RunTarget.node(row["node_id"])
        else:
            target = RunTarget.document(row["document_id"])
        return cls(
            id=row["id"],
            workflow_key=row["workflow_key"],
            target=target,
            status=RunStatus(row["status"]),
            parameters=row.get("parameters") or {},
            external_run_id=row.get("external_run_id"),
            deployment_id=row.get("deployment_id"),
            result=row.get("result"),
            error_message=row.get("error_message"),
            created_by=row.get("created_by"),
            retry_of=row.get("retry_of"),
            batch_id=row.get("batch_id"),
            created_at=_ts(row.get("created_at")),
            updated_at=_ts(row.get("updated_at")),
            started_at=_ts(row.get("started_at")),
            finished_at=_ts(row.get("finished_at")),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def node_id(self) -> int | None:
        return self.target.node_id

    @property
    def document_id(self) -> int | None:
        return self.target.document_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_key": self.workflow_key,
            "target_kind": self.target.kind.value,
            "node_id": self.node_id,
            "document_id": self.document_id,
            "status": self.status.value,
            "parameters": self.parameters,
            "external_run_id": self.external_run_id,
            "deployment_id": self.deployment_id,
            "result": self.result,
            "error_message": self.error_message,
            "created_by": self.created_by,
            "retry_of": self.retry_of,
            "batch_id": self.batch_id,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
        }


@dataclass(frozen=True, slots=True)
class ObservedStatus:
    """A status report for one run, from a callback or from polling.

    Both transports feed the same transition function, so the order and
    number of reports for a run does not matter.
    """

    run_id: str
    status: RunStatus
    result: Any = None
    error_message: str | None = None
    external_run_id: str | None = None
    source: str = "callback"


# =============================================================================
# Workflow definitions
# =============================================================================


class WorkflowType(str, Enum):
    NODE = "node"
    DOCUMENT = "document"


class DefinitionSource(str, Enum):
    ENGINE = "engine"
    MANUAL = "manual"


class DefinitionSyncStatus(str, Enum):
    ACTIVE = "active"
    MISSING = "missing"
    ERROR = "error"


@dataclass
class WorkflowDefinition:
    """An operation kind: display metadata plus the deployment it runs on."""

    workflow_key: str
    name: str
    deployment_name: str
    description: str | None = None
    deployment_id: str | None = None
    deployment_version: str | None = None
    tags: list[str] = field(default_factory=list)
    parameter_schema: dict[str, Any] = field(default_factory=dict)
    source: DefinitionSource = DefinitionSource.MANUAL
    workflow_type: WorkflowType = WorkflowType.NODE
    sync_status: DefinitionSyncStatus = DefinitionSyncStatus.ACTIVE
    enabled: bool = True
    spec_hash: str | None = None
    last_synced_at: datetime | None = None
    last_seen_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> WorkflowDefinition:
        return cls(
            workflow_key=row["workflow_key"],
            name=row["name"],
            deployment_name=row["deployment_name"],
            description=row.get("description"),
            deployment_id=row.get("deployment_id"),
            deployment_version=row.get("deployment_version"),
            tags=list(row.get("tags") or []),
            parameter_schema=dict(row.get("parameter_schema") or {}),
            source=DefinitionSource(row.get("source") or "manual"),
            workflow_type=WorkflowType(row.get("workflow_type") or "node"),
            sync_status=DefinitionSyncStatus(row.get("sync_status") or "active"),
            enabled=bool(row.get("enabled")),
            spec_hash=row.get("spec_hash"),
            last_synced_at=_ts(row.get("last_synced_at")),
            last_seen_at=_ts(row.get("last_seen_at")),
            created_at=_ts(row.get("created_at")),
            updated_at=_ts(row.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_key": self.workflow_key,
            "name": self.name,
            "description": self.description,
            "deployment_name": self.deployment_name,
            "deployment_id": self.deployment_id,
            "deployment_version": self.deployment_version,
            "tags": self.tags,
            "parameter_schema": self.parameter_schema,
            "source": self.source.value,
            "workflow_type": self.workflow_type.value,
            "sync_status": self.sync_status.value,
            "enabled": self.enabled,
            "spec_hash": self.spec_hash,
            "last_synced_at": to_iso8601(self.last_synced_at),
            "last_seen_at": to_iso8601(self.last_seen_at),
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
        }


# =============================================================================
# Processing jobs
# =============================================================================


@dataclass
class ProcessingJob:
    """A document pipeline run, unique per idempotency key."""

    id: str
    document_id: int
    document_version: int
    pipeline: str
    dry_run: bool
    idempotency_key: str
    status: RunStatus = RunStatus.PENDING
    external_run_id: str | None = None
    deployment_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error_message: str | None = None
    progress: int = 0
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ProcessingJob:
        return cls(
            id=row["id"],
            document_id=int(row["document_id"]),
            document_version=int(row["document_version"]),
            pipeline=row["pipeline"],
            dry_run=bool(row.get("dry_run")),
            idempotency_key=row["idempotency_key"],
            status=RunStatus(row["status"]),
            external_run_id=row.get("external_run_id"),
            deployment_id=row.get("deployment_id"),
            parameters=row.get("parameters") or {},
            result=row.get("result"),
            error_message=row.get("error_message"),
            progress=int(row.get("progress") or 0),
            created_by=row.get("created_by"),
            created_at=_ts(row.get("created_at")),
            updated_at=_ts(row.get("updated_at")),
            started_at=_ts(row.get("started_at")),
            finished_at=_ts(row.get("finished_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "document_version": self.document_version,
            "pipeline": self.pipeline,
            "dry_run": self.dry_run,
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "external_run_id": self.external_run_id,
            "deployment_id": self.deployment_id,
            "parameters": self.parameters,
            "result": self.result,
            "error_message": self.error_message,
            "progress": self.progress,
            "created_by": self.created_by,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
        }


# =============================================================================
# Batches
# =============================================================================


class BatchStatus(str, Enum):
    """Status of a batch.

    Valid transition graph::

        PENDING  → RUNNING | COMPLETED | FAILED | CANCELLED
        RUNNING  → COMPLETED | FAILED | CANCELLED
        COMPLETED / FAILED / CANCELLED → (terminal)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


BATCH_VALID_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({
        BatchStatus.RUNNING,
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }),
    BatchStatus.RUNNING: frozenset({
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }),
    BatchStatus.COMPLETED: frozenset(),  # terminal
    BatchStatus.FAILED: frozenset(),  # terminal
    BatchStatus.CANCELLED: frozenset(),  # terminal
}


def validate_batch_transition(current: BatchStatus, target: BatchStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current* → *target* is not allowed."""
    allowed = BATCH_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "BatchStatus")


class BatchKind(str, Enum):
    WORKFLOW = "workflow"
    SYNC = "sync"


class ItemStatus(str, Enum):
    """Outcome of one target inside a batch."""

    SKIPPED = "skipped"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_resolved(self) -> bool:
        return self in (ItemStatus.SKIPPED, ItemStatus.SUCCESS, ItemStatus.FAILED, ItemStatus.CANCELLED)


class SkipReason(str, Enum):
    """Why a target was not submitted.  Checked in declaration order."""

    NAME_FILTER = "name_filter"
    SOURCE_FETCH_FAILED = "source_fetch_failed"
    NO_SOURCE = "no_source"
    OUTPUT_FETCH_FAILED = "output_fetch_failed"
    NO_OUTPUT = "no_output"
    NO_SYNC_TARGET = "no_sync_target"
    INVALID_SYNC_TARGET = "invalid_sync_target"
    SYNC_IN_PROGRESS = "sync_in_progress"
    BATCH_CANCELLED = "batch_cancelled"


def item_status_for(run_status: RunStatus) -> ItemStatus:
    return ItemStatus(run_status.value)


@dataclass
class Batch:
    """Aggregate record for one batch invocation."""

    batch_id: str
    kind: BatchKind
    root_node_id: int
    status: BatchStatus = BatchStatus.PENDING
    workflow_key: str | None = None
    total: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    cancel_requested: bool = False
    revision: int = 0
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Batch:
        return cls(
            batch_id=row["batch_id"],
            kind=BatchKind(row["kind"]),
            root_node_id=int(row["root_node_id"]),
            status=BatchStatus(row["status"]),
            workflow_key=row.get("workflow_key"),
            total=int(row.get("total") or 0),
            success_count=int(row.get("success_count") or 0),
            failed_count=int(row.get("failed_count") or 0),
            skipped_count=int(row.get("skipped_count") or 0),
            details=list(row.get("details") or []),
            options=dict(row.get("options") or {}),
            error_message=row.get("error_message"),
            cancel_requested=bool(row.get("cancel_requested")),
            revision=int(row.get("revision") or 0),
            created_by=row.get("created_by"),
            created_at=_ts(row.get("created_at")),
            updated_at=_ts(row.get("updated_at")),
            started_at=_ts(row.get("started_at")),
            finished_at=_ts(row.get("finished_at")),
        )

    @property
    def resolved(self) -> int:
        return self.success_count + self.failed_count + self.skipped_count

    @property
    def progress(self) -> float:
        if self.total <= 0:
            return 100.0
        return round(self.resolved / self.total * 100, 2)

    def to_dict(self, *, include_details: bool = True) -> dict[str, Any]:
        data = {
            "batch_id": self.batch_id,
            "kind": self.kind.value,
            "workflow_key": self.workflow_key,
            "root_node_id": self.root_node_id,
            "status": self.status.value,
            "total": self.total,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "progress": self.progress,
            "options": self.options,
            "error_message": self.error_message,
            "cancel_requested": self.cancel_requested,
            "created_by": self.created_by,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
        }
        if include_details:
            data["details"] = self.details
        return data


# =============================================================================
# Document sync
# =============================================================================


class SyncStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


SYNC_TO_RUN_STATUS: dict[SyncStatus, RunStatus] = {
    SyncStatus.SUCCESS: RunStatus.SUCCESS,
    SyncStatus.FAILED: RunStatus.FAILED,
    SyncStatus.SKIPPED: RunStatus.CANCELLED,
}


@dataclass
class DocSyncStatus:
    """Latest sync attempt for one document (current state, not history)."""

    document_id: int
    last_event_id: str | None = None
    last_version: int | None = None
    last_status: SyncStatus | None = None
    last_error: str | None = None
    last_external_run_id: str | None = None
    last_run_id: str | None = None
    sync_target: Any = None
    last_attempt_at: datetime | None = None
    last_synced_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> DocSyncStatus:
        status = row.get("last_status")
        return cls(
            document_id=int(row["document_id"]),
            last_event_id=row.get("last_event_id"),
            last_version=row.get("last_version"),
            last_status=SyncStatus(status) if status else None,
            last_error=row.get("last_error"),
            last_external_run_id=row.get("last_external_run_id"),
            last_run_id=row.get("last_run_id"),
            sync_target=row.get("sync_target"),
            last_attempt_at=_ts(row.get("last_attempt_at")),
            last_synced_at=_ts(row.get("last_synced_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "last_event_id": self.last_event_id,
            "last_version": self.last_version,
            "last_status": self.last_status.value if self.last_status else None,
            "last_error": self.last_error,
            "last_external_run_id": self.last_external_run_id,
            "last_run_id": self.last_run_id,
            "sync_target": self.sync_target,
            "last_attempt_at": to_iso8601(self.last_attempt_at),
            "last_synced_at": to_iso8601(self.last_synced_at),
        }
