"""
Relay - workflow and batch execution orchestrator.

Owns run identity, state transitions, idempotency, retry lineage,
concurrency-bounded batch fan-out and stuck-run reclamation for work that
executes in a remote flow engine.

Packages:
- relay.core: errors, logging, persistence primitives and repositories
- relay.execution: domain models, state machine, planner, batch executor
- relay.ops: transport-agnostic operations returning OperationResult
- relay.api: FastAPI transport
- relay.cli: Typer transport
"""

__version__ = "0.1.0"
