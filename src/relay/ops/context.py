"""The first argument of every ops function."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from relay.core.protocols import Connection
from relay.core.settings import RelaySettings
from relay.execution.runtime import Runtime


@dataclass
class OperationContext:
    """Connection, runtime and caller identity for one invocation.

    ``user`` becomes ``created_by`` on runs and batches the operation
    creates.  With ``dry_run`` set, mutating operations report what they
    would do and write nothing.
    """

    conn: Connection
    runtime: Runtime
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False

    @property
    def settings(self) -> RelaySettings:
        return self.runtime.settings
