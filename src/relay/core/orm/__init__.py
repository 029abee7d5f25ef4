"""SQLAlchemy ORM layer: declarative base, tables and the Connection bridge."""

from relay.core.orm.base import IsoTimestamp, RelayBase, TimestampMixin
from relay.core.orm.session import (
    RelaySession,
    SAConnectionBridge,
    dispose_engines,
    engine_for,
)
from relay.core.orm.tables import (
    BatchTable,
    DocSyncStatusTable,
    ProcessingJobTable,
    WorkflowDefinitionTable,
    WorkflowRunTable,
)

__all__ = [
    "BatchTable",
    "DocSyncStatusTable",
    "IsoTimestamp",
    "ProcessingJobTable",
    "RelayBase",
    "RelaySession",
    "SAConnectionBridge",
    "TimestampMixin",
    "WorkflowDefinitionTable",
    "WorkflowRunTable",
    "dispose_engines",
    "engine_for",
]
