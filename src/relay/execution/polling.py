"""Status polling.

Reads a run's flow state from the engine and feeds it to the state machine
as an :class:`~relay.execution.models.ObservedStatus` with
``source="poll"``, the same event a callback produces.
"""

from __future__ import annotations

from relay.core.errors import EngineUnavailableError
from relay.core.logging import get_logger
from relay.execution.engine import RemoteEngine
from relay.execution.models import ObservedStatus
from relay.execution.state_machine import RunStateMachine, TransitionOutcome

logger = get_logger(__name__)


def sync_run_status(machine: RunStateMachine, engine: RemoteEngine | None, run_id: str) -> TransitionOutcome:
    run = machine.get(run_id)
    if run.is_terminal:
        return TransitionOutcome(run, False, "terminal")
    if not run.external_run_id:
        return TransitionOutcome(run, False, "not_submitted")
    if engine is None:
        raise EngineUnavailableError("engine not configured; cannot poll run status")

    flow_run = engine.get_flow_run(run.external_run_id)
    status = flow_run.run_status
    if status is None:
        logger.debug("poll_not_observable", run_id=run_id, state_type=flow_run.state_type)
        return TransitionOutcome(run, False, "not_observable")
    return machine.apply(
        ObservedStatus(
            run_id=run_id,
            status=status,
            error_message=flow_run.state_message,
            external_run_id=flow_run.id,
            source="poll",
        )
    )
