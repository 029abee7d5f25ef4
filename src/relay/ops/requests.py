"""
Typed request objects for operations.

Each dataclass represents the *input* contract for a single operation
function.  Requests carry only validated, transport-agnostic data: no
raw HTTP bodies, no Typer params.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# ------------------------------------------------------------------ #
# Workflow definitions
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListWorkflowsRequest:
    source: str | None = None
    workflow_type: str | None = None
    sync_status: str | None = None
    enabled: bool | None = None


@dataclass(frozen=True, slots=True)
class RegisterWorkflowRequest:
    """Request for :func:`relay.ops.workflows.register_workflow`.

    Attributes:
        workflow_key: Unique key callers trigger the workflow by.
        deployment_name: ``flow/deployment`` name on the engine.
        workflow_type: ``"node"`` or ``"document"``.
    """

    workflow_key: str = ""
    deployment_name: str = ""
    workflow_type: str = "node"
    name: str | None = None
    description: str | None = None
    deployment_id: str | None = None
    tags: list[str] = field(default_factory=list)
    parameter_schema: dict[str, Any] | None = None
    enabled: bool = True


# ------------------------------------------------------------------ #
# Runs
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class TriggerRunRequest:
    """Request for :func:`relay.ops.runs.trigger_run`.

    Exactly one of ``node_id`` / ``document_id`` must be set.
    """

    workflow_key: str = ""
    node_id: int | None = None
    document_id: int | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    retry_of: str | None = None


@dataclass(frozen=True, slots=True)
class ListRunsRequest:
    node_id: int | None = None
    document_id: int | None = None
    workflow_key: str | None = None
    statuses: tuple[str, ...] = ()
    batch_id: str | None = None
    limit: int = 20
    offset: int = 0


@dataclass(frozen=True, slots=True)
class RetryRunRequest:
    run_id: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RunCallbackRequest:
    """Status report pushed by a flow for one run."""

    run_id: str = ""
    status: str = ""
    result: Any = None
    error_message: str | None = None
    external_run_id: str | None = None


@dataclass(frozen=True, slots=True)
class ReapRequest:
    threshold_minutes: int | None = None  # ``None`` → configured zombie threshold


@dataclass(frozen=True, slots=True)
class CleanupRunsRequest:
    """Request for :func:`relay.ops.runs.cleanup_runs`.

    ``statuses`` defaults to the terminal statuses when empty.
    """

    before: datetime | None = None
    statuses: tuple[str, ...] = ()
    workflow_key: str | None = None
    node_id: int | None = None
    document_id: int | None = None
    include_zombie: bool = False
    force_cleanup_active: bool = False
    dry_run: bool = False


# ------------------------------------------------------------------ #
# Batches
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class BatchFilters:
    include_descendants: bool = True
    skip_no_source: bool = True
    skip_no_output: bool = False
    skip_name_contains: str | None = None
    skip_doc_types: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PreviewBatchRequest:
    root_node_id: int = 0
    workflow_key: str | None = None
    filters: BatchFilters = field(default_factory=BatchFilters)


@dataclass(frozen=True, slots=True)
class ExecuteBatchRequest:
    root_node_id: int = 0
    workflow_key: str = ""
    filters: BatchFilters = field(default_factory=BatchFilters)
    parameters: dict[str, Any] = field(default_factory=dict)
    concurrency: int | None = None


@dataclass(frozen=True, slots=True)
class SyncBatchRequest:
    root_node_id: int = 0
    include_descendants: bool = True
    concurrency: int | None = None


@dataclass(frozen=True, slots=True)
class ListBatchesRequest:
    kind: str | None = None
    status: str | None = None
    limit: int = 20
    offset: int = 0


# ------------------------------------------------------------------ #
# Processing
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class TriggerProcessingRequest:
    document_id: int = 0
    pipeline: str = ""
    dry_run: bool = False
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProcessingCallbackRequest:
    job_id: str = ""
    status: str = ""
    result: Any = None
    error_message: str | None = None
    progress: int | None = None


@dataclass(frozen=True, slots=True)
class ListJobsRequest:
    document_id: int = 0
    limit: int = 20
    offset: int = 0


# ------------------------------------------------------------------ #
# Sync
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class SyncCallbackRequest:
    """Report for one sync attempt, matched by ``event_id``."""

    document_id: int = 0
    event_id: str = ""
    status: str = ""
    error: str | None = None
    external_run_id: str | None = None
