"""Builds the FastAPI app.

On startup the lifespan creates any missing tables and starts the stuck-run
reaper; on shutdown it waits for in-flight batches, closes the remote
clients and disposes pooled engines.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.api.deps import get_settings
from relay.api.middleware.errors import relay_error_handler, unhandled_exception_handler
from relay.api.middleware.request_id import RequestContextMiddleware
from relay.core.connection import close_connection
from relay.core.errors import RelayError
from relay.core.logging import configure_logging, get_logger
from relay.core.orm import dispose_engines
from relay.core.schema import apply_schema
from relay.core.settings import RelaySettings
from relay.execution.reaper import ReaperThread
from relay.execution.runtime import Runtime

log = get_logger("relay.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: RelaySettings = app.state.settings
    runtime: Runtime = app.state.runtime
    log.info("api_starting", version=app.version)

    conn = runtime.open_connection()
    try:
        created = apply_schema(conn)
        log.info("schema_ready", tables=len(created))
    finally:
        close_connection(conn)

    reaper: ReaperThread | None = None
    if settings.reaper_interval_seconds > 0:
        reaper = ReaperThread(
            runtime.open_connection,
            runtime.state_machine,
            interval_seconds=settings.reaper_interval_seconds,
            threshold_minutes=settings.zombie_threshold_minutes,
            engine=runtime.engine,
        )
        reaper.start()
    app.state.reaper = reaper

    yield

    if reaper is not None:
        reaper.stop()
    runtime.join(timeout=5.0)
    runtime.close()
    dispose_engines()
    log.info("api_stopped")


def create_app(
    *,
    settings: RelaySettings | None = None,
    runtime: Runtime | None = None,
) -> FastAPI:
    """The relay app.  Tests pass *runtime* to swap in fake remote clients."""
    settings = settings or get_settings()
    runtime = runtime or Runtime.from_settings(settings)
    configure_logging(level=settings.log_level, json_format=settings.log_json, service="relay-api")

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.state.runtime = runtime

    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    from relay.api.routers import (
        batches,
        callbacks,
        health,
        processing,
        runs,
        sync,
        targets,
        workflows,
    )

    prefix = settings.api_prefix

    # unprefixed, for container health checks
    app.include_router(health.router, tags=["health"])

    app.include_router(workflows.router, prefix=prefix, tags=["workflows"])
    app.include_router(targets.router, prefix=prefix, tags=["runs"])
    app.include_router(runs.router, prefix=prefix, tags=["runs"])
    app.include_router(batches.router, prefix=prefix, tags=["batches"])
    app.include_router(processing.router, prefix=prefix, tags=["processing"])
    app.include_router(sync.router, prefix=prefix, tags=["sync"])
    app.include_router(callbacks.router, prefix=prefix, tags=["callbacks"])

    return app
