"""Workflow definitions: manual registration and engine reconciliation.

Definitions live in ``workflow_definitions``; nothing is registered in
memory.  Engine-sourced definitions are reconciled against the engine's
deployment list, where managed deployments carry two tags::

    relay:key=summarize_node      → workflow_key
    relay:type=node|document      → workflow_type (default node)

A deployment whose fingerprint (``spec_hash``) did not change only refreshes
``last_seen_at``.  Engine-sourced definitions whose deployment disappeared
are marked ``missing`` and can no longer be triggered.  Only one
reconciliation runs at a time per process.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any

from relay.core.errors import ConflictError, NotFoundError, ValidationError
from relay.core.hashing import compute_hash
from relay.core.logging import get_logger
from relay.core.repositories import WorkflowDefinitionRepository
from relay.core.timestamps import now_iso
from relay.execution.engine import Deployment, RemoteEngine
from relay.execution.models import (
    DefinitionSource,
    DefinitionSyncStatus,
    WorkflowDefinition,
    WorkflowType,
)

logger = get_logger(__name__)

_SYNC_LOCK = threading.Lock()


@dataclass
class DefinitionSyncReport:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "missing": self.missing,
            "errors": self.errors,
        }


def _tag_value(tags: tuple[str, ...], prefix: str) -> str | None:
    for tag in tags:
        if tag.startswith(prefix):
            return tag[len(prefix):]
    return None


def deployment_spec_hash(deployment: Deployment, workflow_type: WorkflowType) -> str:
    return compute_hash(
        deployment.id,
        deployment.name,
        deployment.version or "",
        deployment.description or "",
        json.dumps(deployment.parameter_schema, sort_keys=True),
        ",".join(sorted(deployment.tags)),
        workflow_type.value,
    )


def get_definition(conn: Any, workflow_key: str) -> WorkflowDefinition:
    row = WorkflowDefinitionRepository(conn).get_by_key(workflow_key)
    if row is None:
        raise NotFoundError("workflow", workflow_key)
    return WorkflowDefinition.from_row(row)


def list_definitions(
    conn: Any,
    *,
    source: str | None = None,
    workflow_type: str | None = None,
    sync_status: str | None = None,
    enabled: bool | None = None,
) -> list[WorkflowDefinition]:
    rows = WorkflowDefinitionRepository(conn).list_definitions(
        source=source, workflow_type=workflow_type, sync_status=sync_status, enabled=enabled
    )
    return [WorkflowDefinition.from_row(row) for row in rows]


def register_definition(conn: Any, data: dict[str, Any]) -> WorkflowDefinition:
    """Insert or update a manually managed definition."""
    key = (data.get("workflow_key") or "").strip()
    if not key:
        raise ValidationError("workflow_key is required", field="workflow_key")
    if not data.get("deployment_name"):
        raise ValidationError("deployment_name is required", field="deployment_name")
    try:
        workflow_type = WorkflowType(data.get("workflow_type") or WorkflowType.NODE.value)
    except ValueError as exc:
        raise ValidationError(
            f"invalid workflow_type: {data.get('workflow_type')}", field="workflow_type"
        ) from exc

    repo = WorkflowDefinitionRepository(conn)
    existing = repo.get_by_key(key)
    if existing is not None and existing.get("source") == DefinitionSource.ENGINE.value:
        raise ConflictError(f"workflow {key} is managed by engine sync")

    repo.upsert(
        {
            "workflow_key": key,
            "name": data.get("name") or key,
            "description": data.get("description"),
            "deployment_name": data["deployment_name"],
            "deployment_id": data.get("deployment_id"),
            "tags": list(data.get("tags") or []),
            "parameter_schema": dict(data.get("parameter_schema") or {}),
            "source": DefinitionSource.MANUAL.value,
            "workflow_type": workflow_type.value,
            "sync_status": DefinitionSyncStatus.ACTIVE.value,
            "enabled": data.get("enabled", True),
        }
    )
    repo.commit()
    logger.info("definition_registered", workflow_key=key, workflow_type=workflow_type.value)
    return get_definition(conn, key)


def set_enabled(conn: Any, workflow_key: str, enabled: bool) -> WorkflowDefinition:
    repo = WorkflowDefinitionRepository(conn)
    if not repo.set_enabled(workflow_key, enabled):
        raise NotFoundError("workflow", workflow_key)
    repo.commit()
    logger.info("definition_toggled", workflow_key=workflow_key, enabled=enabled)
    return get_definition(conn, workflow_key)


def _reconcile(
    repo: WorkflowDefinitionRepository,
    deployments: list[Deployment],
    tag_prefix: str,
    report: DefinitionSyncReport,
) -> set[str]:
    seen: set[str] = set()
    now = now_iso()
    for deployment in deployments:
        key = _tag_value(deployment.tags, f"{tag_prefix}key=")
        if not key:
            continue
        raw_type = _tag_value(deployment.tags, f"{tag_prefix}type=") or WorkflowType.NODE.value
        try:
            workflow_type = WorkflowType(raw_type)
        except ValueError:
            report.errors.append({"workflow_key": key, "error": f"invalid type tag: {raw_type}"})
            logger.warning("definition_sync_invalid_type", workflow_key=key, type=raw_type)
            continue

        existing = repo.get_by_key(key)
        if existing is not None and existing.get("source") == DefinitionSource.MANUAL.value:
            report.errors.append({"workflow_key": key, "error": "key is registered manually"})
            logger.warning("definition_sync_key_conflict", workflow_key=key, deployment=deployment.name)
            continue

        seen.add(key)
        spec_hash = deployment_spec_hash(deployment, workflow_type)
        if existing is not None and existing.get("spec_hash") == spec_hash:
            repo.touch_seen(key, now)
            report.unchanged.append(key)
            continue

        data: dict[str, Any] = {
            "workflow_key": key,
            "name": deployment.name,
            "description": deployment.description,
            "deployment_name": deployment.name,
            "deployment_id": deployment.id,
            "deployment_version": deployment.version,
            "tags": list(deployment.tags),
            "parameter_schema": deployment.parameter_schema,
            "source": DefinitionSource.ENGINE.value,
            "workflow_type": workflow_type.value,
            "sync_status": DefinitionSyncStatus.ACTIVE.value,
            "spec_hash": spec_hash,
            "last_synced_at": now,
            "last_seen_at": now,
        }
        if existing is None:
            data["enabled"] = True
            report.created.append(key)
        else:
            report.updated.append(key)
        repo.upsert(data)
    return seen


def sync_definitions(conn: Any, engine: RemoteEngine, *, tag_prefix: str = "relay:") -> DefinitionSyncReport:
    """Reconcile engine-sourced definitions with the engine's deployments.

    Raises :class:`~relay.core.errors.ConflictError` if another sync is
    running; engine errors propagate and leave the table untouched.
    """
    if not _SYNC_LOCK.acquire(blocking=False):
        raise ConflictError("definition sync already in progress")
    try:
        deployments = engine.list_deployments()
        repo = WorkflowDefinitionRepository(conn)
        report = DefinitionSyncReport()
        seen = _reconcile(repo, deployments, tag_prefix, report)
        for row in repo.list_by_source(DefinitionSource.ENGINE.value):
            key = row["workflow_key"]
            if key in seen or row.get("sync_status") == DefinitionSyncStatus.MISSING.value:
                continue
            repo.mark_sync_status(key, DefinitionSyncStatus.MISSING.value)
            report.missing.append(key)
        repo.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _SYNC_LOCK.release()
    logger.info(
        "definitions_synced",
        created=len(report.created),
        updated=len(report.updated),
        unchanged=len(report.unchanged),
        missing=len(report.missing),
        errors=len(report.errors),
    )
    return report
