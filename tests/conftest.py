"""
Shared pytest fixtures for relay tests.

This module provides:
- Settings pointing at a throwaway SQLite file
- In-process fakes for the remote engine and the content store
- A runtime that runs batch loops inline, and an operation context
- Helpers to register workflows and insert aged runs

Usage:
    def test_something(ctx, engine, content):
        content.add_node(1, "root", sources=[10])
        ...
"""

from __future__ import annotations

import itertools
import threading
import time
import uuid
from datetime import timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from relay.api.app import create_app
from relay.core.connection import close_connection, connection_factory
from relay.core.errors import ContentStoreError, DeploymentNotFoundError, EngineUnavailableError
from relay.core.repositories import RunRepository
from relay.core.schema import apply_schema
from relay.core.settings import RelaySettings
from relay.core.timestamps import to_iso8601, utc_now
from relay.execution.content import Document, Node, SourceDocument
from relay.execution.definitions import register_definition
from relay.execution.engine import Deployment, FlowRun
from relay.execution.runtime import Runtime
from relay.ops.context import OperationContext


# =============================================================================
# Fakes
# =============================================================================


class FakeEngine:
    """Thread-safe stand-in for the workflow engine.

    Tracks how many ``submit`` calls overlap so batch tests can check the
    concurrency bound.
    """

    def __init__(self, submit_delay: float = 0.0) -> None:
        self.submit_delay = submit_delay
        self.missing: set[str] = set()
        self.fail_submit = False
        self.fail_cancel = False
        self.deployments: list[Deployment] = []
        self.flow_runs: dict[str, FlowRun] = {}
        self.submitted: list[tuple[str, dict[str, Any]]] = []
        self.cancelled: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def find_deployment(self, name: str) -> Deployment:
        if name in self.missing:
            raise DeploymentNotFoundError(name)
        return Deployment(id=f"dep-{name}", name=name)

    def list_deployments(self, tags=None) -> list[Deployment]:
        if not tags:
            return list(self.deployments)
        return [d for d in self.deployments if any(t in d.tags for t in tags)]

    def submit(self, deployment_id: str, parameters: dict[str, Any]) -> FlowRun:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.submit_delay:
                time.sleep(self.submit_delay)
            if self.fail_submit:
                raise EngineUnavailableError("engine unavailable: 503")
            with self._lock:
                flow_run = FlowRun(id=f"flow-{next(self._ids)}", state_type="SCHEDULED")
                self.submitted.append((deployment_id, parameters))
                self.flow_runs[flow_run.id] = flow_run
            return flow_run
        finally:
            with self._lock:
                self.in_flight -= 1

    def get_flow_run(self, flow_run_id: str) -> FlowRun:
        return self.flow_runs[flow_run_id]

    def set_state(self, flow_run_id: str, state_type: str, message: str | None = None) -> None:
        self.flow_runs[flow_run_id] = FlowRun(id=flow_run_id, state_type=state_type, state_message=message)

    def cancel(self, flow_run_id: str) -> None:
        if self.fail_cancel:
            raise EngineUnavailableError("engine unavailable")
        self.cancelled.append(flow_run_id)

    def health(self) -> bool:
        return True


class FakeContentStore:
    """In-memory node tree and documents."""

    def __init__(self) -> None:
        self.nodes: dict[int, Node] = {}
        self.children: dict[int, list[int]] = {}
        self.sources: dict[int, list[SourceDocument]] = {}
        self.node_docs: dict[int, list[int]] = {}
        self.documents: dict[int, Document] = {}
        self.fail_sources: set[int] = set()
        self.fail_nodes: set[int] = set()

    # -- setup helpers -----------------------------------------------------

    def add_node(
        self,
        node_id: int,
        name: str,
        *,
        parent: int | None = None,
        sources: list[int] | None = None,
        source_type: str = "pdf",
        deleted: bool = False,
    ) -> Node:
        path = f"{self.nodes[parent].path}/{name}" if parent is not None else f"/{name}"
        node = Node(id=node_id, name=name, path=path, parent_id=parent, deleted=deleted)
        self.nodes[node_id] = node
        self.children.setdefault(node_id, [])
        if parent is not None:
            self.children.setdefault(parent, []).append(node_id)
        self.sources[node_id] = [SourceDocument(document_id=d, type=source_type) for d in sources or []]
        self.node_docs.setdefault(node_id, [])
        for doc_id in sources or []:
            self.add_document(doc_id, node=node_id, doc_type=source_type)
        return node

    def add_document(
        self,
        doc_id: int,
        *,
        node: int | None = None,
        doc_type: str = "markdown",
        version: int = 1,
        metadata: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> Document:
        doc = Document(id=doc_id, title=title or f"doc-{doc_id}", type=doc_type, version=version, metadata=metadata or {})
        self.documents[doc_id] = doc
        if node is not None and doc_id not in self.node_docs.setdefault(node, []):
            self.node_docs[node].append(doc_id)
        return doc

    # -- ContentStore ------------------------------------------------------

    def get_node(self, node_id: int) -> Node:
        if node_id in self.fail_nodes or node_id not in self.nodes:
            raise ContentStoreError(f"failed to fetch node {node_id}", status_code=404)
        return self.nodes[node_id]

    def list_children(self, node_id: int) -> list[Node]:
        if node_id in self.fail_nodes:
            raise ContentStoreError(f"failed to list children of {node_id}", status_code=500)
        return [self.nodes[c] for c in self.children.get(node_id, [])]

    def list_source_documents(self, node_id: int) -> list[SourceDocument]:
        if node_id in self.fail_sources:
            raise ContentStoreError(f"failed to fetch sources of {node_id}", status_code=500)
        return list(self.sources.get(node_id, []))

    def list_node_documents(self, node_id: int):
        for doc_id in self.node_docs.get(node_id, []):
            yield self.documents[doc_id]

    def get_document(self, document_id: int) -> Document:
        if document_id not in self.documents:
            raise ContentStoreError(f"failed to fetch document {document_id}", status_code=404)
        return self.documents[document_id]


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "relay.db")


@pytest.fixture
def settings(db_path) -> RelaySettings:
    return RelaySettings(
        _env_file=None,
        database_url=db_path,
        public_base_url="http://relay.test",
        callback_secret="s3cret",
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def content() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def runtime(settings, engine, content) -> Runtime:
    return Runtime(
        settings=settings,
        open_connection=connection_factory(settings.database_url),
        engine=engine,
        content=content,
        background=False,
    )


@pytest.fixture
def conn(runtime):
    connection = runtime.open_connection()
    apply_schema(connection)
    yield connection
    close_connection(connection)


@pytest.fixture
def ctx(conn, runtime) -> OperationContext:
    return OperationContext(conn=conn, runtime=runtime, caller="test")


@pytest.fixture
def machine(conn, runtime):
    return runtime.state_machine(conn)


@pytest.fixture
def launcher(conn, runtime):
    return runtime.launcher(conn)


# =============================================================================
# Helpers
# =============================================================================


def register(conn, key: str = "summarize", *, workflow_type: str = "node", **extra: Any):
    """Register an enabled manual workflow definition."""
    return register_definition(
        conn,
        {"workflow_key": key, "deployment_name": f"{key}/default", "workflow_type": workflow_type, **extra},
    )


def insert_run(
    conn,
    *,
    status: str = "running",
    age_minutes: int = 0,
    workflow_key: str = "summarize",
    node_id: int | None = 1,
    document_id: int | None = None,
    external_run_id: str | None = None,
    retry_of: str | None = None,
    batch_id: str | None = None,
) -> str:
    """Insert a run directly, with timestamps *age_minutes* in the past."""
    run_id = str(uuid.uuid4())
    stamp = to_iso8601(utc_now() - timedelta(minutes=age_minutes))
    terminal = status in ("success", "failed", "cancelled")
    RunRepository(conn).create(
        {
            "id": run_id,
            "workflow_key": workflow_key,
            "node_id": node_id if document_id is None else None,
            "document_id": document_id,
            "parameters": {},
            "status": status,
            "external_run_id": external_run_id,
            "retry_of": retry_of,
            "batch_id": batch_id,
            "created_at": stamp,
            "updated_at": stamp,
            "started_at": stamp if status != "pending" else None,
            "finished_at": stamp if terminal else None,
        }
    )
    conn.commit()
    return run_id


@pytest.fixture
def register_workflow(conn):
    def _register(key: str = "summarize", **kwargs: Any):
        return register(conn, key, **kwargs)

    return _register


@pytest.fixture
def make_run(conn):
    def _make(**kwargs: Any) -> str:
        return insert_run(conn, **kwargs)

    return _make


@pytest.fixture
def client(settings, runtime):
    """TestClient over an app wired to the fakes; the lifespan applies the schema."""
    app = create_app(settings=settings, runtime=runtime)
    with TestClient(app) as test_client:
        yield test_client
