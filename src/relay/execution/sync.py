"""Document sync.

Pushes one document to the external record named by its
``metadata.sync_target``.  The attempt is tracked twice: as a document run
(history, cancel, retry, reaper) and in ``doc_sync_statuses`` (the latest
attempt only).  The flow reports back through the sync callback, which
resolves the status row and drives the run through the state machine.

Only one attempt per document is in flight: a pending attempt younger than
``sync_pending_timeout_seconds`` is returned as-is, an older one is
expired together with its run before a new attempt starts.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from relay.core.errors import ConfigError, NotFoundError, ValidationError
from relay.core.hashing import compute_hash
from relay.core.logging import get_logger
from relay.core.repositories import DocSyncStatusRepository, WorkflowDefinitionRepository
from relay.core.repository import INTEGRITY_ERRORS
from relay.core.timestamps import utc_now
from relay.execution.launcher import LaunchRequest
from relay.execution.models import (
    SYNC_TO_RUN_STATUS,
    DocSyncStatus,
    ObservedStatus,
    RunTarget,
    SyncStatus,
    WorkflowDefinition,
    WorkflowRun,
)
from relay.execution.parameters import callback_url
from relay.execution.sync_target import parse_sync_target

if TYPE_CHECKING:
    from relay.execution.runtime import Runtime

logger = get_logger(__name__)

IN_PROGRESS_MESSAGE = "sync task already in progress"


def timeout_message(seconds: int) -> str:
    return f"sync task timeout (exceeded {seconds}s)"


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    status: DocSyncStatus
    run: WorkflowRun | None
    started: bool
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.status.document_id,
            "event_id": self.status.last_event_id,
            "status": self.status.last_status.value if self.status.last_status else None,
            "run_id": self.run.id if self.run else None,
            "external_run_id": self.run.external_run_id if self.run else None,
            "started": self.started,
            "message": self.message,
            "error": self.error,
        }


class DocumentSyncer:
    def __init__(self, conn: Any, runtime: Runtime) -> None:
        self.conn = conn
        self.runtime = runtime
        self.settings = runtime.settings
        self.statuses = DocSyncStatusRepository(conn)
        self.definitions = WorkflowDefinitionRepository(conn)
        self.machine = runtime.state_machine(conn)
        self.launcher = runtime.launcher(conn)

    def get_status(self, document_id: int) -> DocSyncStatus:
        row = self.statuses.get(document_id)
        if row is None:
            raise NotFoundError("sync status", document_id)
        return DocSyncStatus.from_row(row)

    def _run_or_none(self, run_id: str | None) -> WorkflowRun | None:
        if not run_id:
            return None
        row = self.machine.runs.get(run_id)
        return WorkflowRun.from_row(row) if row else None

    def _definition(self) -> WorkflowDefinition | None:
        row = self.definitions.get_by_key(self.settings.sync_workflow_key)
        if row is None:
            return None
        definition = WorkflowDefinition.from_row(row)
        if not definition.enabled:
            raise ValidationError(
                f"workflow {definition.workflow_key} is disabled",
                field="workflow_key",
                value=definition.workflow_key,
            )
        return definition

    def _expire(self, current: DocSyncStatus) -> None:
        seconds = self.settings.sync_pending_timeout_seconds
        message = timeout_message(seconds)
        self.statuses.resolve(
            current.document_id, current.last_event_id or "", SyncStatus.FAILED.value, error=message
        )
        self.conn.commit()
        if current.last_run_id:
            self.machine.expire(current.last_run_id, message)
        logger.warning(
            "sync_attempt_expired",
            document_id=current.document_id,
            event_id=current.last_event_id,
            run_id=current.last_run_id,
            timeout_seconds=seconds,
        )

    def _claim(self, document_id: int, event_id: str, version: int, target: dict[str, Any]) -> bool:
        try:
            claimed = self.statuses.claim_attempt(
                document_id, event_id=event_id, version=version, sync_target=target
            )
        except INTEGRITY_ERRORS:
            self.conn.rollback()
            return False
        self.conn.commit()
        return claimed

    def trigger(
        self,
        document_id: int,
        *,
        created_by: str | None = None,
        batch_id: str | None = None,
    ) -> SyncOutcome:
        """Start a sync attempt, or return the one already in flight."""
        if self.runtime.content is None:
            raise ConfigError("content store not configured")
        document = self.runtime.content.get_document(document_id)
        target = parse_sync_target(document.metadata)
        if target is None:
            raise ValidationError(
                f"document {document_id} has no sync_target", field="sync_target", value=document_id
            )

        row = self.statuses.get(document_id)
        if row is not None and row.get("last_status") == SyncStatus.PENDING.value:
            current = DocSyncStatus.from_row(row)
            cutoff = utc_now() - timedelta(seconds=self.settings.sync_pending_timeout_seconds)
            if current.last_attempt_at is not None and current.last_attempt_at > cutoff:
                logger.info("sync_already_pending", document_id=document_id, event_id=current.last_event_id)
                return SyncOutcome(current, self._run_or_none(current.last_run_id), False, IN_PROGRESS_MESSAGE)
            self._expire(current)

        definition = self._definition()
        event_id = str(uuid.uuid4())
        if not self._claim(document_id, event_id, document.version, target.to_dict()):
            current = self.get_status(document_id)
            logger.info("sync_already_pending", document_id=document_id, event_id=current.last_event_id, race=True)
            return SyncOutcome(current, self._run_or_none(current.last_run_id), False, IN_PROGRESS_MESSAGE)

        run = self.launcher.record(
            LaunchRequest(
                workflow_key=self.settings.sync_workflow_key,
                target=RunTarget.document(document_id),
                parameters={
                    "event_id": event_id,
                    "doc_version": document.version,
                    "sync_target": target.to_dict(),
                },
                created_by=created_by,
                batch_id=batch_id,
            )
        )
        self.statuses.attach_run(document_id, event_id, run.id)
        self.conn.commit()

        s = self.settings
        parameters = {
            "event_id": event_id,
            "doc_id": document_id,
            "doc_type": document.type,
            "doc_version": document.version,
            "sync_target": target.to_dict(),
            "idempotency_key": compute_hash("sync", document_id, document.version),
            "callback_url": callback_url(s.public_base_url, s.api_prefix, "sync/callback"),
        }
        outcome = self.launcher.submit(
            run,
            definition.deployment_name if definition else s.sync_deployment_name,
            parameters,
            deployment_id=definition.deployment_id if definition else None,
        )
        if outcome.error is not None:
            self.statuses.resolve(document_id, event_id, SyncStatus.FAILED.value, error=outcome.error)
        elif outcome.submitted and outcome.run.external_run_id:
            self.statuses.attach_external_run(document_id, event_id, outcome.run.external_run_id)
        self.conn.commit()
        logger.info(
            "sync_triggered",
            document_id=document_id,
            event_id=event_id,
            run_id=run.id,
            submitted=outcome.submitted,
        )
        return SyncOutcome(self.get_status(document_id), outcome.run, True, error=outcome.error)

    def handle_callback(
        self,
        document_id: int,
        event_id: str,
        status: str,
        *,
        error: str | None = None,
        external_run_id: str | None = None,
    ) -> tuple[DocSyncStatus, bool]:
        """Resolve the pending attempt *event_id*.

        Returns the status row and whether the report was applied; a report
        for a superseded or already resolved attempt is acknowledged and
        ignored.
        """
        try:
            reported = SyncStatus(status)
        except ValueError as exc:
            raise ValidationError(f"invalid sync status: {status}", field="status", value=status) from exc
        if reported is SyncStatus.PENDING:
            raise ValidationError("sync callback status must be terminal", field="status", value=status)

        current = self.get_status(document_id)
        if current.last_event_id != event_id or current.last_status is not SyncStatus.PENDING:
            logger.info(
                "sync_callback_discarded",
                document_id=document_id,
                event_id=event_id,
                current_event_id=current.last_event_id,
                current_status=current.last_status.value if current.last_status else None,
            )
            return current, False

        applied = self.statuses.resolve(
            document_id, event_id, reported.value, error=error, external_run_id=external_run_id
        )
        self.conn.commit()
        if applied and current.last_run_id:
            self.machine.apply(
                ObservedStatus(
                    run_id=current.last_run_id,
                    status=SYNC_TO_RUN_STATUS[reported],
                    error_message=error,
                    external_run_id=external_run_id,
                    source="sync_callback",
                )
            )
        logger.info("sync_resolved", document_id=document_id, event_id=event_id, status=reported.value)
        return self.get_status(document_id), applied
