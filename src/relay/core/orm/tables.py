"""SQLAlchemy 2.0 ORM table definitions for relay.

Manifesto:
    These ``Mapped`` classes are the single authoritative description of
    relay's database structure.  ``relay.core.schema`` compiles them into
    idempotent DDL; repositories read and write them with raw SQL.

Column conventions:

* ``*_at`` columns -> ``IsoTimestamp`` (canonical ISO 8601 UTC text)
* ``parameters`` / ``result`` / ``details`` / ``options`` / ``tags`` ->
  ``JSON``
* ``enabled`` / ``dry_run`` / ``cancel_requested`` -> ``Integer`` 0/1

Tags:
    relay, orm, sqlalchemy, tables, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from relay.core.orm.base import IsoTimestamp, RelayBase, TimestampMixin


# =============================================================================
# Workflow definitions
# =============================================================================


class WorkflowDefinitionTable(TimestampMixin, RelayBase):
    __tablename__ = "workflow_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_key: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    deployment_name: Mapped[str] = mapped_column(Text, nullable=False)
    deployment_id: Mapped[str | None] = mapped_column(Text)
    deployment_version: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list | None] = mapped_column(JSON)
    parameter_schema: Mapped[dict | None] = mapped_column(JSON)
    source: Mapped[str] = mapped_column(Text, default="manual", nullable=False)
    workflow_type: Mapped[str] = mapped_column(Text, default="node", nullable=False)
    sync_status: Mapped[str] = mapped_column(Text, default="active", nullable=False)
    enabled: Mapped[bool] = mapped_column(Integer, default=1, nullable=False)
    spec_hash: Mapped[str | None] = mapped_column(Text)
    last_synced_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)
    last_seen_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)


# =============================================================================
# Runs
# =============================================================================


class WorkflowRunTable(TimestampMixin, RelayBase):
    __tablename__ = "workflow_runs"
    __table_args__ = (
        CheckConstraint(
            "(node_id IS NULL) <> (document_id IS NULL)",
            name="ck_workflow_runs_one_target",
        ),
        Index("ix_workflow_runs_status", "status"),
        Index("ix_workflow_runs_workflow_key", "workflow_key"),
        Index("ix_workflow_runs_node_id", "node_id"),
        Index("ix_workflow_runs_document_id", "document_id"),
        Index("ix_workflow_runs_retry_of", "retry_of"),
        Index("ix_workflow_runs_batch_id", "batch_id"),
        Index("ix_workflow_runs_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    workflow_key: Mapped[str] = mapped_column(Text, nullable=False)
    node_id: Mapped[int | None] = mapped_column(Integer)
    document_id: Mapped[int | None] = mapped_column(Integer)
    parameters: Mapped[dict | None] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(Text, default="pending", nullable=False)
    external_run_id: Mapped[str | None] = mapped_column(Text)
    deployment_id: Mapped[str | None] = mapped_column(Text)
    result: Mapped[dict | None] = mapped_column(JSON)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(Text)
    retry_of: Mapped[str | None] = mapped_column(
        Text, ForeignKey("workflow_runs.id", ondelete="SET NULL"), default=None
    )
    batch_id: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)
    finished_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)


class ProcessingJobTable(TimestampMixin, RelayBase):
    __tablename__ = "processing_jobs"
    __table_args__ = (
        Index("ix_processing_jobs_document_id", "document_id"),
        Index("ix_processing_jobs_status", "status"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    document_id: Mapped[int] = mapped_column(Integer, nullable=False)
    document_version: Mapped[int] = mapped_column(Integer, nullable=False)
    pipeline: Mapped[str] = mapped_column(Text, nullable=False)
    dry_run: Mapped[bool] = mapped_column(Integer, default=0, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(Text, default="pending", nullable=False)
    external_run_id: Mapped[str | None] = mapped_column(Text)
    deployment_id: Mapped[str | None] = mapped_column(Text)
    parameters: Mapped[dict | None] = mapped_column(JSON)
    result: Mapped[dict | None] = mapped_column(JSON)
    error_message: Mapped[str | None] = mapped_column(Text)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)
    finished_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)


# =============================================================================
# Batches
# =============================================================================


class BatchTable(TimestampMixin, RelayBase):
    __tablename__ = "batches"
    __table_args__ = (
        Index("ix_batches_kind", "kind"),
        Index("ix_batches_status", "status"),
        Index("ix_batches_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(Text, default="workflow", nullable=False)
    workflow_key: Mapped[str | None] = mapped_column(Text)
    root_node_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, default="pending", nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    details: Mapped[list | None] = mapped_column(JSON)
    options: Mapped[dict | None] = mapped_column(JSON)
    error_message: Mapped[str | None] = mapped_column(Text)
    cancel_requested: Mapped[bool] = mapped_column(Integer, default=0, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)
    finished_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)


# =============================================================================
# Document sync
# =============================================================================


class DocSyncStatusTable(TimestampMixin, RelayBase):
    __tablename__ = "doc_sync_statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    sync_target: Mapped[dict | None] = mapped_column(JSON)
    last_event_id: Mapped[str | None] = mapped_column(Text)
    last_version: Mapped[int | None] = mapped_column(Integer)
    last_status: Mapped[str | None] = mapped_column(Text)
    last_error: Mapped[str | None] = mapped_column(Text)
    last_external_run_id: Mapped[str | None] = mapped_column(Text)
    last_run_id: Mapped[str | None] = mapped_column(Text)
    last_attempt_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)
    last_synced_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp)


__all__ = [
    "BatchTable",
    "DocSyncStatusTable",
    "ProcessingJobTable",
    "WorkflowDefinitionTable",
    "WorkflowRunTable",
]
