"""Content store adapter.

The orchestrator only reads from the hierarchical content store: node
identities and paths, the documents attached to a node, a node's source
documents, and a single document's version and metadata.

Architecture:
    ::

        ContentStore (Protocol)
          get_node(id)                 GET /api/v1/nodes/{id}
          list_children(id)            GET /api/v1/nodes/{id}/children
          list_source_documents(id)    GET /api/v1/nodes/{id}/sources
          list_node_documents(id)      GET /api/v1/nodes/{id}/subtree-documents
                                           ?include_descendants=false (paged)
          get_document(id)             GET /api/v1/documents/{id}
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from relay.core.errors import ContentStoreError

PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class Node:
    id: int
    name: str
    path: str = ""
    parent_id: int | None = None
    deleted: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Node:
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            path=data.get("path", ""),
            parent_id=data.get("parent_id"),
            deleted=data.get("deleted_at") is not None,
        )


@dataclass(frozen=True, slots=True)
class Document:
    id: int
    title: str = ""
    type: str = ""
    version: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Document:
        return cls(
            id=int(data["id"]),
            title=data.get("title", ""),
            type=data.get("type") or "",
            version=int(data.get("version_number") or 1),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True, slots=True)
class SourceDocument:
    document_id: int
    type: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> SourceDocument:
        document = data.get("document") or {}
        return cls(document_id=int(data["document_id"]), type=document.get("type") or "")


@runtime_checkable
class ContentStore(Protocol):
    """Read-only view of the content tree used for planning and parameters."""

    def get_node(self, node_id: int) -> Node: ...

    def list_children(self, node_id: int) -> list[Node]: ...

    def list_source_documents(self, node_id: int) -> list[SourceDocument]: ...

    def list_node_documents(self, node_id: int) -> Iterator[Document]: ...

    def get_document(self, document_id: int) -> Document: ...


class HttpContentStore:
    """``httpx`` implementation of :class:`ContentStore`."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise ContentStoreError(f"content store request failed: {exc}", cause=exc) from exc
        if response.status_code != 200:
            raise ContentStoreError(
                f"GET {path} failed: status {response.status_code}, body: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response.json()

    def get_node(self, node_id: int) -> Node:
        return Node.from_api(self._get(f"/api/v1/nodes/{node_id}"))

    def list_children(self, node_id: int) -> list[Node]:
        return [Node.from_api(item) for item in self._get(f"/api/v1/nodes/{node_id}/children")]

    def list_source_documents(self, node_id: int) -> list[SourceDocument]:
        return [
            SourceDocument.from_api(item)
            for item in self._get(f"/api/v1/nodes/{node_id}/sources")
        ]

    def list_node_documents(self, node_id: int) -> Iterator[Document]:
        """Yield the node's direct documents, fetching pages lazily."""
        page = 1
        while True:
            data = self._get(
                f"/api/v1/nodes/{node_id}/subtree-documents",
                {"include_descendants": "false", "page": page, "size": PAGE_SIZE},
            )
            items = data.get("items") or []
            for item in items:
                yield Document.from_api(item)
            fetched = int(data.get("page", page)) * int(data.get("size", PAGE_SIZE))
            if not items or fetched >= int(data.get("total", 0)):
                return
            page += 1

    def get_document(self, document_id: int) -> Document:
        return Document.from_api(self._get(f"/api/v1/documents/{document_id}"))
