"""
Transport-agnostic operations layer.

Every function takes an :class:`~relay.ops.context.OperationContext` plus a
typed request dataclass and returns an
:class:`~relay.ops.result.OperationResult`.  The API and CLI are thin
wrappers over these functions.

Modules:
    context     OperationContext (connection, runtime, caller, dry_run)
    result      OperationResult / PagedResult envelopes
    requests    Frozen request dataclasses
    workflows   Workflow definition operations
    runs        Trigger, inspect, cancel, terminate, retry, cleanup, reap
    batches     Preview, execute, inspect, cancel batches
    processing  Document pipeline jobs
    sync        Document sync
    database    Schema initialisation and health
"""
