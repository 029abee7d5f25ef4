"""Document processing jobs.

A processing job runs one configured pipeline over one document version.
Jobs are idempotent by content: the idempotency key fingerprints
``(document id, version, pipeline, dry_run)`` and the store keeps it
unique, so repeating a trigger returns the job that already exists, in any
status, instead of submitting the pipeline again.

Manifesto:
    - **Check, then insert, then trust the constraint:** a concurrent
      trigger that loses the insert race reads back the winner
    - **Same lifecycle as runs:** pending → running → success | failed |
      cancelled, compare-and-swap on every step, terminal jobs ignore
      further reports

Tags:
    processing, idempotency, pipelines, relay

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relay.core.errors import (
    ConfigError,
    DuplicateSubmissionError,
    EngineUnavailableError,
    NotCancellableError,
    NotFoundError,
    RelayError,
    ValidationError,
)
from relay.core.hashing import idempotency_key
from relay.core.logging import get_logger
from relay.core.repositories import ProcessingJobRepository
from relay.core.repository import INTEGRITY_ERRORS
from relay.core.settings import PipelineConfig
from relay.core.timestamps import now_iso
from relay.execution.models import ProcessingJob, RunStatus, validate_run_transition
from relay.execution.parameters import callback_url, processing_parameters

if TYPE_CHECKING:
    from relay.execution.runtime import Runtime

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    job: ProcessingJob
    deduplicated: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {**self.job.to_dict(), "deduplicated": self.deduplicated, "submission_error": self.error}


class ProcessingService:
    def __init__(self, conn: Any, runtime: Runtime) -> None:
        self.conn = conn
        self.runtime = runtime
        self.settings = runtime.settings
        self.jobs = ProcessingJobRepository(conn)

    # -- reads -------------------------------------------------------------

    def pipelines(self) -> list[PipelineConfig]:
        return list(self.settings.pipelines)

    def pipeline(self, name: str) -> PipelineConfig:
        pipeline = self.settings.pipeline(name)
        if pipeline is None:
            raise ValidationError(f"unknown pipeline: {name}", field="pipeline", value=name)
        return pipeline

    def get(self, job_id: str) -> ProcessingJob:
        row = self.jobs.get(job_id)
        if row is None:
            raise NotFoundError("processing job", job_id)
        return ProcessingJob.from_row(row)

    def list_for_document(
        self, document_id: int, *, limit: int = 20, offset: int = 0
    ) -> tuple[list[ProcessingJob], int]:
        rows, total = self.jobs.list_for_document(document_id, limit=limit, offset=offset)
        return [ProcessingJob.from_row(row) for row in rows], total

    # -- internals ---------------------------------------------------------

    def _swap(self, job_id: str, expected: RunStatus, target: RunStatus, **fields: Any) -> bool:
        validate_run_transition(expected, target)
        if target.is_terminal:
            fields["finished_at"] = now_iso()
        changed = self.jobs.transition(job_id, [expected.value], target.value, **fields)
        self.conn.commit()
        if changed:
            logger.info("processing_job_transition", job_id=job_id, status=target.value)
        return changed

    def _existing(self, key: str) -> ProcessingJob | None:
        row = self.jobs.get_by_key(key)
        return ProcessingJob.from_row(row) if row else None

    def _insert(self, key: str, data: dict[str, Any]) -> None:
        """Insert a pending job; a key collision raises :class:`DuplicateSubmissionError`."""
        now = now_iso()
        try:
            self.jobs.create({**data, "idempotency_key": key, "created_at": now, "updated_at": now})
            self.conn.commit()
        except INTEGRITY_ERRORS as exc:
            self.conn.rollback()
            winner = self._existing(key)
            if winner is None:
                raise
            raise DuplicateSubmissionError(key, winner.id) from exc

    # -- trigger -----------------------------------------------------------

    def trigger(
        self,
        document_id: int,
        pipeline_name: str,
        *,
        dry_run: bool = False,
        parameters: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> ProcessingOutcome:
        """Create and submit a job, or return the one with the same key."""
        pipeline = self.pipeline(pipeline_name)
        if dry_run and not pipeline.supports_dry_run:
            raise ValidationError(
                f"pipeline {pipeline.name} does not support dry runs", field="dry_run", value=dry_run
            )
        if self.runtime.content is None:
            raise ConfigError("content store not configured")
        document = self.runtime.content.get_document(document_id)
        if pipeline.doc_types and document.type not in pipeline.doc_types:
            raise ValidationError(
                f"pipeline {pipeline.name} does not accept documents of type {document.type}",
                field="document_type",
                value=document.type,
            )

        key = idempotency_key(document_id, document.version, pipeline.name, dry_run)
        existing = self._existing(key)
        if existing is not None:
            logger.info("processing_job_deduplicated", job_id=existing.id, idempotency_key=key)
            return ProcessingOutcome(existing, True)

        job_id = str(uuid.uuid4())
        try:
            self._insert(
                key,
                {
                    "id": job_id,
                    "document_id": document_id,
                    "document_version": document.version,
                    "pipeline": pipeline.name,
                    "dry_run": dry_run,
                    "status": RunStatus.PENDING.value,
                    "parameters": parameters or {},
                    "progress": 0,
                    "created_by": created_by,
                },
            )
        except DuplicateSubmissionError as exc:
            logger.info("processing_job_deduplicated", job_id=exc.existing_id, idempotency_key=key, race=True)
            return ProcessingOutcome(self.get(exc.existing_id or ""), True)

        logger.info(
            "processing_job_created",
            job_id=job_id,
            document_id=document_id,
            pipeline=pipeline.name,
            dry_run=dry_run,
        )
        return self._submit(self.get(job_id), pipeline, parameters or {})

    def _submit(self, job: ProcessingJob, pipeline: PipelineConfig, user: dict[str, Any]) -> ProcessingOutcome:
        engine = self.runtime.engine
        if engine is None:
            logger.info("engine_not_configured", job_id=job.id)
            return ProcessingOutcome(job, False)
        s = self.settings
        parameters = processing_parameters(
            document_id=job.document_id,
            dry_run=job.dry_run,
            callback=callback_url(s.public_base_url, s.api_prefix, f"processing/callback/{job.id}"),
            base_url=s.public_base_url,
            api_key=s.content_store_api_key,
            llm_base_url=s.llm_base_url,
            user=user,
        )
        try:
            deployment = engine.find_deployment(pipeline.deployment_name)
            flow_run = engine.submit(deployment.id, parameters)
        except RelayError as exc:
            message = str(exc)
            self._swap(job.id, RunStatus.PENDING, RunStatus.FAILED, error_message=message)
            logger.warning("processing_submission_failed", job_id=job.id, error=message)
            return ProcessingOutcome(self.get(job.id), False, message)
        self._swap(
            job.id,
            RunStatus.PENDING,
            RunStatus.RUNNING,
            external_run_id=flow_run.id,
            deployment_id=deployment.id,
            started_at=now_iso(),
        )
        return ProcessingOutcome(self.get(job.id), False)

    # -- remote reports ----------------------------------------------------

    def handle_callback(
        self,
        job_id: str,
        status: str,
        *,
        result: Any = None,
        error_message: str | None = None,
        progress: int | None = None,
    ) -> tuple[ProcessingJob, bool]:
        """Apply a pipeline report; returns the job and whether it changed."""
        try:
            reported = RunStatus(status)
        except ValueError as exc:
            raise ValidationError(f"invalid status: {status}", field="status", value=status) from exc
        if reported is RunStatus.PENDING:
            raise ValidationError("callback status must be running or terminal", field="status", value=status)
        if progress is not None and not 0 <= progress <= 100:
            raise ValidationError("progress must be between 0 and 100", field="progress", value=progress)

        job = self.get(job_id)
        if job.status.is_terminal:
            logger.info(
                "status_report_discarded",
                job_id=job_id,
                current=job.status.value,
                reported=reported.value,
            )
            return job, False

        if progress is not None:
            self.jobs.set_progress(job_id, progress)
            self.conn.commit()

        if job.status is RunStatus.PENDING and not self._swap(
            job_id, RunStatus.PENDING, RunStatus.RUNNING, started_at=now_iso()
        ):
            return self.get(job_id), False

        if reported is RunStatus.RUNNING:
            return self.get(job_id), True

        fields: dict[str, Any] = {}
        if reported is RunStatus.SUCCESS:
            fields["result"] = result
            fields["progress"] = 100
        elif reported is RunStatus.FAILED:
            fields["error_message"] = error_message or "remote execution failed"
        applied = self._swap(job_id, RunStatus.RUNNING, reported, **fields)
        return self.get(job_id), applied

    # -- operator actions --------------------------------------------------

    def cancel(self, job_id: str) -> ProcessingJob:
        job = self.get(job_id)
        if job.status is RunStatus.PENDING and self._swap(job_id, RunStatus.PENDING, RunStatus.CANCELLED):
            return self.get(job_id)
        job = self.get(job_id)
        if job.status is not RunStatus.RUNNING:
            raise NotCancellableError("processing job", job_id, job.status.value)
        if job.external_run_id:
            if self.runtime.engine is None:
                raise EngineUnavailableError("engine not configured; cannot cancel a running job")
            self.runtime.engine.cancel(job.external_run_id)
        if not self._swap(job_id, RunStatus.RUNNING, RunStatus.CANCELLED):
            raise NotCancellableError("processing job", job_id, self.get(job_id).status.value)
        return self.get(job_id)
