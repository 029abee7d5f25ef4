"""Remote flow engine adapter.

The orchestrator treats the engine as an opaque capability: it resolves a
deployment, submits a parameter bag, reads back a flow run, and asks for
cancellation.  :class:`EngineClient` speaks a Prefect-compatible REST API
over ``httpx``.

Manifesto:
    - **Bounded blocking:** one request never waits longer than the client
      timeout; long execution is observed through callbacks or polls
    - **Retry at the boundary:** only ``create_flow_run`` retries, only on
      network errors and gateway statuses, 2s/4s/8s by default
    - **Uniform errors:** transport failures become
      :class:`~relay.core.errors.EngineUnavailableError`, rejections become
      :class:`~relay.core.errors.RemoteEngineError`

Architecture:
    ::

        RemoteEngine (Protocol)
          find_deployment(name)         POST /api/deployments/filter
          list_deployments(tags)        POST /api/deployments/filter
          submit(deployment_id, params) POST /api/deployments/{id}/create_flow_run
          get_flow_run(id)              GET  /api/flow_runs/{id}
          cancel(id)                    POST /api/flow_runs/{id}/set_state
          health()                      GET  /api/health

Tags:
    engine, prefect, httpx, retry, adapter, relay

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from relay.core.errors import (
    DeploymentNotFoundError,
    EngineUnavailableError,
    RemoteEngineError,
)
from relay.core.logging import get_logger
from relay.execution.models import RunStatus
from relay.execution.retry import ExponentialBackoff, RetryContext

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset({502, 503, 504})

STATE_TO_RUN_STATUS: dict[str, RunStatus] = {
    "COMPLETED": RunStatus.SUCCESS,
    "FAILED": RunStatus.FAILED,
    "CRASHED": RunStatus.FAILED,
    "CANCELLED": RunStatus.CANCELLED,
    "RUNNING": RunStatus.RUNNING,
}


def map_flow_state(state_type: str | None) -> RunStatus | None:
    """Map a remote state type onto a run status (``None`` = not yet observable)."""
    if not state_type:
        return None
    return STATE_TO_RUN_STATUS.get(state_type.upper())


@dataclass(frozen=True, slots=True)
class Deployment:
    id: str
    name: str
    version: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()
    parameter_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Deployment:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            version=data.get("version") or None,
            description=data.get("description") or None,
            tags=tuple(data.get("tags") or ()),
            parameter_schema=data.get("parameter_openapi_schema") or {},
        )


@dataclass(frozen=True, slots=True)
class FlowRun:
    id: str
    name: str = ""
    state_type: str | None = None
    state_message: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> FlowRun:
        state = data.get("state") or {}
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            state_type=state.get("type") or data.get("state_type"),
            state_message=state.get("message"),
        )

    @property
    def run_status(self) -> RunStatus | None:
        return map_flow_state(self.state_type)


@runtime_checkable
class RemoteEngine(Protocol):
    """What the orchestrator needs from a flow engine."""

    def find_deployment(self, name: str) -> Deployment: ...

    def list_deployments(self, tags: Sequence[str] | None = None) -> list[Deployment]: ...

    def submit(self, deployment_id: str, parameters: dict[str, Any]) -> FlowRun: ...

    def get_flow_run(self, flow_run_id: str) -> FlowRun: ...

    def cancel(self, flow_run_id: str) -> None: ...

    def health(self) -> bool: ...


class EngineClient:
    """``httpx`` client for a Prefect-compatible REST API.

    Args:
        base_url: Engine root, e.g. ``http://prefect:4200``.
        timeout: Per-request timeout in seconds.
        max_retries: Retries for ``create_flow_run`` after the first attempt.
        retry_base_delay: First backoff delay; doubles per retry.
        api_key: Optional bearer token.
        transport: Optional ``httpx`` transport (tests use ``MockTransport``).
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 2.0,
        api_key: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self._strategy = ExponentialBackoff(
            max_retries=max_retries,
            base_delay=retry_base_delay,
        )
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    # -- low level ---------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise EngineUnavailableError(
                f"engine request failed: {exc}", cause=exc
            ).with_context(url=path) from exc

    @staticmethod
    def _fail(action: str, response: httpx.Response) -> RemoteEngineError:
        return RemoteEngineError(
            f"{action} failed: status {response.status_code}, body: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    # -- deployments -------------------------------------------------------

    def find_deployment(self, name: str) -> Deployment:
        response = self._request(
            "POST",
            "/api/deployments/filter",
            json={"deployments": {"name": {"any_": [name]}}, "limit": 10},
        )
        if response.status_code != 200:
            raise self._fail("deployment query", response)
        items = response.json()
        if not items:
            raise DeploymentNotFoundError(name)
        return Deployment.from_api(items[0])

    def list_deployments(self, tags: Sequence[str] | None = None) -> list[Deployment]:
        body: dict[str, Any] = {"limit": 100, "offset": 0}
        if tags:
            body["deployments"] = {"tags": {"any_": list(tags)}}
        response = self._request("POST", "/api/deployments/filter", json=body)
        if response.status_code != 200:
            raise self._fail("list deployments", response)
        return [Deployment.from_api(item) for item in response.json()]

    # -- flow runs ---------------------------------------------------------

    def _create_flow_run_once(self, deployment_id: str, body: dict[str, Any]) -> FlowRun:
        response = self._request(
            "POST", f"/api/deployments/{deployment_id}/create_flow_run", json=body
        )
        if response.status_code in (200, 201):
            return FlowRun.from_api(response.json())
        error = self._fail("create flow run", response)
        if response.status_code in RETRYABLE_STATUSES:
            error.retryable = True
        raise error

    def submit(self, deployment_id: str, parameters: dict[str, Any]) -> FlowRun:
        """Create a flow run, retrying transient failures with backoff."""

        def _log_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "engine_submit_retry",
                deployment_id=deployment_id,
                attempt=attempt,
                delay=delay,
                error=str(error),
            )

        ctx = RetryContext(strategy=self._strategy, on_retry=_log_retry)
        if self._sleep is not None:
            ctx.sleep = self._sleep
        return ctx.run(self._create_flow_run_once, deployment_id, {"parameters": parameters})

    def get_flow_run(self, flow_run_id: str) -> FlowRun:
        response = self._request("GET", f"/api/flow_runs/{flow_run_id}")
        if response.status_code != 200:
            raise self._fail("get flow run", response)
        return FlowRun.from_api(response.json())

    def cancel(self, flow_run_id: str) -> None:
        response = self._request(
            "POST",
            f"/api/flow_runs/{flow_run_id}/set_state",
            json={"state": {"type": "CANCELLING"}},
        )
        if response.status_code in (200, 201):
            return
        if response.status_code in (404, 409):
            logger.info(
                "engine_cancel_already_terminal",
                flow_run_id=flow_run_id,
                status_code=response.status_code,
            )
            return
        raise self._fail("cancel flow run", response)

    def health(self) -> bool:
        try:
            response = self._client.get("/api/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200
