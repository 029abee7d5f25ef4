"""Runtime bundle.

Everything a request handler, a batch thread or the reaper needs besides a
connection: settings, the optional remote collaborators, a connection
factory for background work, and the dispatch policy for batch loops.

Example:
    >>> runtime = Runtime.from_settings(get_settings())
    >>> machine = runtime.state_machine(conn)
    >>> launcher = runtime.launcher(conn)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from relay.core.connection import connection_factory
from relay.core.errors import ConfigError
from relay.core.logging import get_logger
from relay.core.settings import RelaySettings
from relay.execution.batch import fold_terminal_run
from relay.execution.content import ContentStore, HttpContentStore
from relay.execution.engine import EngineClient, RemoteEngine
from relay.execution.launcher import RunLauncher
from relay.execution.planner import EligibilityPlanner
from relay.execution.state_machine import RunStateMachine

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Shared, thread-safe collaborators for one process.

    Args:
        settings: Loaded settings.
        open_connection: Opens a fresh connection (one per background thread).
        engine: Remote engine, or ``None`` when not configured.
        content: Content store, or ``None`` when not configured.
        background: Run batch loops on daemon threads; ``False`` runs them
            inline in the caller.
    """

    settings: RelaySettings
    open_connection: Callable[[], Any]
    engine: RemoteEngine | None = None
    content: ContentStore | None = None
    background: bool = True
    _threads: list[threading.Thread] = field(default_factory=list, repr=False)

    @classmethod
    def from_settings(cls, settings: RelaySettings, *, background: bool = True) -> Runtime:
        engine = None
        if settings.engine_url:
            engine = EngineClient(
                settings.engine_url,
                timeout=settings.engine_timeout_seconds,
                max_retries=settings.engine_max_retries,
                retry_base_delay=settings.engine_retry_base_delay,
                api_key=settings.engine_api_key,
            )
        content = None
        if settings.content_store_url:
            content = HttpContentStore(
                settings.content_store_url,
                api_key=settings.content_store_api_key,
                timeout=settings.content_store_timeout_seconds,
            )
        return cls(
            settings=settings,
            open_connection=connection_factory(settings.database_url, data_dir=settings.data_dir),
            engine=engine,
            content=content,
            background=background,
        )

    # -- per-connection services ---------------------------------------------

    def state_machine(self, conn: Any) -> RunStateMachine:
        return RunStateMachine(
            conn,
            engine=self.engine,
            listeners=[fold_terminal_run],
            zombie_threshold_minutes=self.settings.zombie_threshold_minutes,
        )

    def launcher(self, conn: Any) -> RunLauncher:
        return RunLauncher(
            conn,
            settings=self.settings,
            machine=self.state_machine(conn),
            engine=self.engine,
            content=self.content,
        )

    def planner(self) -> EligibilityPlanner:
        if self.content is None:
            raise ConfigError("content store not configured")
        return EligibilityPlanner(self.content)

    # -- background work -----------------------------------------------------

    def dispatch(self, name: str, fn: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        """Run *fn* on a daemon thread, or inline when ``background`` is off."""
        if not self.background:
            fn(*args, **kwargs)
            return
        thread = threading.Thread(target=fn, args=args, kwargs=kwargs, name=name, daemon=True)
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)
        thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for dispatched threads (used on shutdown and in tests)."""
        for thread in list(self._threads):
            thread.join(timeout)

    def close(self) -> None:
        for client in (self.engine, self.content):
            close = getattr(client, "close", None)
            if close is not None:
                close()
        logger.debug("runtime_closed")
