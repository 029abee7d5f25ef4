"""Repositories: one class per relay table, raw SQL over ``Connection``."""

from relay.core.repositories.batches import BatchRepository
from relay.core.repositories.definitions import WorkflowDefinitionRepository
from relay.core.repositories.processing import ProcessingJobRepository
from relay.core.repositories.runs import RunRepository
from relay.core.repositories.sync_status import DocSyncStatusRepository

__all__ = [
    "BatchRepository",
    "DocSyncStatusRepository",
    "ProcessingJobRepository",
    "RunRepository",
    "WorkflowDefinitionRepository",
]
