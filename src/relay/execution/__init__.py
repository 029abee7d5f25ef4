"""Relay execution - run lifecycle, planning and batch fan-out.

ARCHITECTURE
────────────
::

    LaunchRequest (what to run, against which target)
      │
      ▼
    RunLauncher ─ validate → INSERT pending → submit to RemoteEngine
      │
      ▼
    RunStateMachine ─ the only writer of run status (compare-and-swap)
      ├── ObservedStatus   ─ callbacks and polls, one idempotent input
      ├── cancel / force_terminate
      └── terminal listeners ─ fold finished runs into their batch
      │
      ▼
    Fan-out and upkeep
      ├── EligibilityPlanner ─ pre-order tree walk + skip predicates
      ├── BatchExecutor      ─ bounded-concurrency submission loop
      ├── StuckRunReaper     ─ zombie reclassification
      ├── cleanup_runs       ─ retention
      └── create_retry       ─ retry lineage

    Specialisations
      ├── ProcessingService  ─ content-keyed document pipelines
      └── DocumentSyncer     ─ per-document sync with a status cache

MODULE MAP
──────────
  models.py         domain dataclasses, status enums, transition tables
  retry.py          backoff strategies for the engine client
  engine.py         RemoteEngine protocol + httpx EngineClient
  content.py        ContentStore protocol + httpx HttpContentStore
  parameters.py     reserved flow parameters and callback URLs
  state_machine.py  RunStateMachine
  launcher.py       RunLauncher
  lineage.py        retries and lineage queries
  planner.py        EligibilityPlanner
  sync_target.py    metadata.sync_target parsing
  batch.py          BatchExecutor + progress folding
  reaper.py         StuckRunReaper + ReaperThread
  retention.py      cleanup_runs
  polling.py        engine status polling
  processing.py     ProcessingService
  sync.py           DocumentSyncer
  definitions.py    definition registration and engine reconciliation
  runtime.py        Runtime bundle
"""

from relay.execution.models import (
    Batch,
    BatchKind,
    BatchStatus,
    ObservedStatus,
    RunStatus,
    RunTarget,
    WorkflowDefinition,
    WorkflowRun,
)
from relay.execution.runtime import Runtime
from relay.execution.state_machine import RunStateMachine

__all__ = [
    "Batch",
    "BatchKind",
    "BatchStatus",
    "ObservedStatus",
    "RunStateMachine",
    "RunStatus",
    "RunTarget",
    "Runtime",
    "WorkflowDefinition",
    "WorkflowRun",
]
