"""Dependencies the routers declare.

Routers take an :data:`OpContext` and pass it straight to an ops function::

    @router.get("/runs/{run_id}")
    def get_run(ctx: OpContext, request: Request, run_id: str):
        return respond(run_ops.get_run(ctx, run_id), request)

Each request gets its own connection, closed when the response is sent.
"""

from __future__ import annotations

from collections.abc import Iterator
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Request

from relay.core.connection import close_connection
from relay.core.settings import RelaySettings
from relay.execution.runtime import Runtime
from relay.ops.context import OperationContext


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    return RelaySettings()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_connection(runtime: Annotated[Runtime, Depends(get_runtime)]) -> Iterator[Any]:
    conn = runtime.open_connection()
    try:
        yield conn
    finally:
        close_connection(conn)


def get_operation_context(
    request: Request,
    conn: Annotated[Any, Depends(get_connection)],
    runtime: Annotated[Runtime, Depends(get_runtime)],
) -> OperationContext:
    """``X-User`` is recorded as the creator of anything this request starts."""
    ctx = OperationContext(conn=conn, runtime=runtime, caller="api", user=request.headers.get("X-User"))
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        ctx.request_id = request_id
    return ctx


Settings = Annotated[RelaySettings, Depends(get_settings)]
OpContext = Annotated[OperationContext, Depends(get_operation_context)]
