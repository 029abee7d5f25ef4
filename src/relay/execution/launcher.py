"""Run launcher - validate, record, then submit.

A trigger is validated completely before any row exists: unknown,
disabled, inactive or mis-typed workflows and malformed retry links are
rejected with :class:`~relay.core.errors.ValidationError`.  The run row is
committed in ``pending`` before the engine is contacted, so a submission
failure is always visible in history as a ``failed`` run carrying the
engine's error text.

Flow::

    LaunchRequest
        │
        ├─ resolve_definition()   exists, enabled, active, matching type
        ├─ validate_retry_of()    same workflow + target, failed/cancelled
        ├─ gather context         source docs / target docs / document type
        ├─ INSERT run (pending) + COMMIT
        └─ submit()
             engine is None   → stays pending
             engine error     → pending → failed (error verbatim)
             engine flow run  → pending → running (+ external ref)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from relay.core.errors import ConfigError, RelayError, ValidationError
from relay.core.logging import get_logger
from relay.core.repositories import RunRepository, WorkflowDefinitionRepository
from relay.core.settings import RelaySettings
from relay.core.timestamps import now_iso
from relay.execution.content import ContentStore
from relay.execution.engine import RemoteEngine
from relay.execution.models import (
    DefinitionSyncStatus,
    RunStatus,
    RunTarget,
    TargetKind,
    WorkflowDefinition,
    WorkflowRun,
)
from relay.execution.parameters import callback_url, document_parameters, node_parameters
from relay.execution.state_machine import RunStateMachine

logger = get_logger(__name__)

RETRYABLE_SOURCE_STATUSES = frozenset({RunStatus.FAILED, RunStatus.CANCELLED})


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    workflow_key: str
    target: RunTarget
    parameters: dict[str, Any] = field(default_factory=dict)
    retry_of: str | None = None
    created_by: str | None = None
    batch_id: str | None = None
    source_doc_ids: tuple[int, ...] | None = None
    """Source documents already fetched by the caller (batch planning)."""


@dataclass(frozen=True, slots=True)
class LaunchOutcome:
    run: WorkflowRun
    submitted: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run.id,
            "status": self.run.status.value,
            "external_run_id": self.run.external_run_id,
            "submitted": self.submitted,
            "error": self.error,
        }


class RunLauncher:
    """Creates runs for node and document targets and submits them."""

    def __init__(
        self,
        conn: Any,
        *,
        settings: RelaySettings,
        machine: RunStateMachine,
        engine: RemoteEngine | None = None,
        content: ContentStore | None = None,
    ) -> None:
        self.conn = conn
        self.settings = settings
        self.machine = machine
        self.engine = engine
        self.content = content
        self.runs = RunRepository(conn)
        self.definitions = WorkflowDefinitionRepository(conn)

    # -- validation --------------------------------------------------------

    def resolve_definition(self, workflow_key: str, kind: TargetKind) -> WorkflowDefinition:
        row = self.definitions.get_by_key(workflow_key)
        if row is None:
            raise ValidationError(
                f"unknown workflow: {workflow_key}", field="workflow_key", value=workflow_key
            )
        definition = WorkflowDefinition.from_row(row)
        if not definition.enabled:
            raise ValidationError(
                f"workflow {workflow_key} is disabled", field="workflow_key", value=workflow_key
            )
        if definition.sync_status is not DefinitionSyncStatus.ACTIVE:
            raise ValidationError(
                f"workflow {workflow_key} is not active (status={definition.sync_status.value})",
                field="workflow_key",
                value=workflow_key,
            )
        if definition.workflow_type.value != kind.value:
            raise ValidationError(
                f"workflow {workflow_key} is not a {kind.value} workflow",
                field="workflow_key",
                value=workflow_key,
                constraint=f"workflow_type == {kind.value}",
            )
        return definition

    def validate_retry_of(self, retry_of: str | None, workflow_key: str, target: RunTarget) -> None:
        if retry_of is None:
            return
        row = self.runs.get(retry_of)
        if row is None:
            raise ValidationError(
                f"retry_of refers to a non-existent run ({retry_of})", field="retry_of", value=retry_of
            )
        source = WorkflowRun.from_row(row)
        if source.workflow_key != workflow_key:
            raise ValidationError(f"retry_of ({retry_of}) workflow_key mismatch", field="retry_of")
        if source.target != target:
            raise ValidationError(f"retry_of ({retry_of}) target mismatch", field="retry_of")
        if source.status not in RETRYABLE_SOURCE_STATUSES:
            raise ValidationError(
                f"only failed or cancelled runs can be retried (run {retry_of} is {source.status.value})",
                field="retry_of",
                value=retry_of,
                constraint="status in (failed, cancelled)",
            )

    def require_content(self) -> ContentStore:
        if self.content is None:
            raise ConfigError("content store not configured")
        return self.content

    # -- flow parameters ---------------------------------------------------

    def _node_context(self, node_id: int, prefetched: tuple[int, ...] | None) -> tuple[list[int], list[dict]]:
        content = self.require_content()
        if prefetched is None:
            source_ids = [src.document_id for src in content.list_source_documents(node_id)]
        else:
            source_ids = list(prefetched)
        skip = set(source_ids)
        target_docs = [
            {"document_id": doc.id, "title": doc.title, "type": doc.type}
            for doc in content.list_node_documents(node_id)
            if doc.id not in skip
        ]
        return source_ids, target_docs

    def flow_parameters(self, run_id: str, request: LaunchRequest, context: dict[str, Any]) -> dict[str, Any]:
        s = self.settings
        callback = callback_url(s.public_base_url, s.api_prefix, f"callback/{run_id}")
        if request.target.kind is TargetKind.NODE:
            return node_parameters(
                run_id=run_id,
                node_id=request.target.id,
                workflow_key=request.workflow_key,
                source_doc_ids=context["source_doc_ids"],
                target_docs=context["target_docs"],
                callback=callback,
                base_url=s.public_base_url,
                user=request.parameters,
            )
        return document_parameters(
            run_id=run_id,
            document_id=request.target.id,
            document_type=context["document_type"],
            workflow_key=request.workflow_key,
            callback=callback,
            base_url=s.public_base_url,
            user=request.parameters,
        )

    # -- lifecycle ---------------------------------------------------------

    def prepare(self, request: LaunchRequest) -> tuple[WorkflowRun, WorkflowDefinition, dict[str, Any]]:
        """Validate and insert the pending run.  Nothing is written on error."""
        definition = self.resolve_definition(request.workflow_key, request.target.kind)
        self.validate_retry_of(request.retry_of, request.workflow_key, request.target)

        context: dict[str, Any] = {}
        if request.target.kind is TargetKind.NODE:
            context["source_doc_ids"], context["target_docs"] = self._node_context(
                request.target.id, request.source_doc_ids
            )
        else:
            context["document_type"] = self.require_content().get_document(request.target.id).type

        return self.record(request), definition, context

    def record(self, request: LaunchRequest) -> WorkflowRun:
        """Insert and commit a pending run for an already validated request."""
        run_id = str(uuid.uuid4())
        now = now_iso()
        self.runs.create(
            {
                "id": run_id,
                "workflow_key": request.workflow_key,
                "node_id": request.target.node_id,
                "document_id": request.target.document_id,
                "parameters": dict(request.parameters),
                "status": RunStatus.PENDING.value,
                "created_by": request.created_by,
                "retry_of": request.retry_of,
                "batch_id": request.batch_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        self.conn.commit()
        logger.info(
            "run_created",
            run_id=run_id,
            workflow_key=request.workflow_key,
            target=str(request.target),
            retry_of=request.retry_of,
            batch_id=request.batch_id,
        )
        return self.machine.get(run_id)

    def submit(
        self,
        run: WorkflowRun,
        deployment_name: str,
        parameters: dict[str, Any],
        *,
        deployment_id: str | None = None,
    ) -> LaunchOutcome:
        """Submit a pending run to the engine and record the outcome."""
        if self.engine is None:
            logger.info("engine_not_configured", run_id=run.id)
            return LaunchOutcome(run, False)
        try:
            if deployment_id is None:
                deployment_id = self.engine.find_deployment(deployment_name).id
            flow_run = self.engine.submit(deployment_id, parameters)
        except RelayError as exc:
            message = str(exc)
            self.machine.mark_submission_failed(run.id, message)
            return LaunchOutcome(self.machine.get(run.id), False, message)
        self.machine.mark_submitted(run.id, flow_run.id, deployment_id)
        return LaunchOutcome(self.machine.get(run.id), True)

    def launch(self, request: LaunchRequest) -> LaunchOutcome:
        run, definition, context = self.prepare(request)
        parameters = self.flow_parameters(run.id, request, context)
        return self.submit(
            run,
            definition.deployment_name,
            parameters,
            deployment_id=definition.deployment_id,
        )

