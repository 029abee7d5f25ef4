"""Eligibility planner.

Walks the content tree from a root node in pre-order and decides, for each
node, whether a batch would submit a run there.  Planning only reads the
content store; it never writes a row or contacts the engine, so repeated
previews of an unchanged tree are identical.

Skip predicates are checked in a fixed order and the first match wins::

    1. name_filter          node name contains ``skip_name_contains``
    2. source_fetch_failed  listing source documents raised
       (``skip_doc_types`` then removes sources of excluded types)
    3. no_source            no sources left and ``skip_no_source``
    4. output_fetch_failed  listing node documents raised (``skip_no_output``)
    5. no_output            no non-source document and ``skip_no_output``

The document planner used by sync batches collects each node's direct
documents (minus its source documents) in the same pre-order and checks the
``sync_target`` metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from relay.core.errors import ContentStoreError, InvalidSyncTargetError
from relay.core.logging import get_logger
from relay.execution.content import ContentStore, Document, Node
from relay.execution.models import SkipReason
from relay.execution.sync_target import SyncTarget, parse_sync_target

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PlanFilters:
    include_descendants: bool = True
    skip_no_source: bool = True
    skip_no_output: bool = False
    skip_name_contains: str | None = None
    skip_doc_types: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "include_descendants": self.include_descendants,
            "skip_no_source": self.skip_no_source,
            "skip_no_output": self.skip_no_output,
            "skip_name_contains": self.skip_name_contains,
            "skip_doc_types": list(self.skip_doc_types),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanFilters:
        return cls(
            include_descendants=bool(data.get("include_descendants", True)),
            skip_no_source=bool(data.get("skip_no_source", True)),
            skip_no_output=bool(data.get("skip_no_output", False)),
            skip_name_contains=data.get("skip_name_contains") or None,
            skip_doc_types=tuple(data.get("skip_doc_types") or ()),
        )


@dataclass(frozen=True, slots=True)
class PlannedNode:
    node: Node
    depth: int


@dataclass(frozen=True, slots=True)
class NodeVerdict:
    """Eligibility of one node.  ``error`` is set for the fetch-failure reasons."""

    node: Node
    depth: int
    can_execute: bool
    skip_reason: SkipReason | None = None
    source_doc_ids: tuple[int, ...] = ()
    error: str | None = None

    @property
    def fetch_failed(self) -> bool:
        return self.skip_reason in (SkipReason.SOURCE_FETCH_FAILED, SkipReason.OUTPUT_FETCH_FAILED)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "node_id": self.node.id,
            "node_name": self.node.name,
            "node_path": self.node.path,
            "depth": self.depth,
            "source_doc_count": len(self.source_doc_ids),
            "can_execute": self.can_execute,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class PreviewReport:
    root_node_id: int
    nodes: list[NodeVerdict] = field(default_factory=list)

    @property
    def total_nodes(self) -> int:
        return len(self.nodes)

    @property
    def can_execute(self) -> int:
        return sum(1 for v in self.nodes if v.can_execute)

    @property
    def will_skip(self) -> int:
        return self.total_nodes - self.can_execute

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_node_id": self.root_node_id,
            "total_nodes": self.total_nodes,
            "can_execute": self.can_execute,
            "will_skip": self.will_skip,
            "nodes": [v.to_dict() for v in self.nodes],
        }


@dataclass(frozen=True, slots=True)
class PlannedDocument:
    document: Document
    node_id: int
    node_path: str


@dataclass(frozen=True, slots=True)
class DocumentVerdict:
    planned: PlannedDocument
    can_sync: bool
    sync_target: SyncTarget | None = None
    skip_reason: SkipReason | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        doc = self.planned.document
        data: dict[str, Any] = {
            "document_id": doc.id,
            "document_name": doc.title,
            "document_type": doc.type,
            "node_id": self.planned.node_id,
            "node_path": self.planned.node_path,
            "sync_target": self.sync_target.to_dict() if self.sync_target else None,
            "can_sync": self.can_sync,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SyncPreviewReport:
    root_node_id: int
    documents: list[DocumentVerdict] = field(default_factory=list)

    @property
    def can_sync(self) -> int:
        return sum(1 for v in self.documents if v.can_sync)

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_node_id": self.root_node_id,
            "total_documents": len(self.documents),
            "can_sync": self.can_sync,
            "will_skip": len(self.documents) - self.can_sync,
            "documents": [v.to_dict() for v in self.documents],
        }


class EligibilityPlanner:
    """Side-effect free traversal and eligibility checks over a content store."""

    def __init__(self, content: ContentStore) -> None:
        self.content = content

    # -- traversal ---------------------------------------------------------

    def collect_nodes(self, root_id: int, include_descendants: bool = True) -> list[PlannedNode]:
        """Pre-order list of the root and (optionally) its live descendants.

        Raises :class:`~relay.core.errors.ContentStoreError` if any node or
        child listing cannot be read.
        """
        result: list[PlannedNode] = []
        self._collect(root_id, include_descendants, 0, result)
        return result

    def _collect(self, node_id: int, include_descendants: bool, depth: int, out: list[PlannedNode]) -> None:
        out.append(PlannedNode(self.content.get_node(node_id), depth))
        if not include_descendants:
            return
        for child in self.content.list_children(node_id):
            if child.deleted:
                continue
            self._collect(child.id, True, depth + 1, out)

    # -- node eligibility --------------------------------------------------

    def _has_output(self, node_id: int, source_ids: set[int]) -> bool:
        for doc in self.content.list_node_documents(node_id):
            if doc.id not in source_ids:
                return True
        return False

    def evaluate(self, planned: PlannedNode, filters: PlanFilters) -> NodeVerdict:
        node, depth = planned.node, planned.depth
        if filters.skip_name_contains and filters.skip_name_contains in node.name:
            return NodeVerdict(node, depth, False, SkipReason.NAME_FILTER)

        try:
            sources = self.content.list_source_documents(node.id)
        except ContentStoreError as exc:
            return NodeVerdict(node, depth, False, SkipReason.SOURCE_FETCH_FAILED, error=str(exc))

        if filters.skip_doc_types:
            sources = [s for s in sources if s.type not in filters.skip_doc_types]
        source_ids = tuple(s.document_id for s in sources)

        if not source_ids and filters.skip_no_source:
            return NodeVerdict(node, depth, False, SkipReason.NO_SOURCE)

        if filters.skip_no_output:
            try:
                has_output = self._has_output(node.id, set(source_ids))
            except ContentStoreError as exc:
                return NodeVerdict(
                    node, depth, False, SkipReason.OUTPUT_FETCH_FAILED, source_ids, error=str(exc)
                )
            if not has_output:
                return NodeVerdict(node, depth, False, SkipReason.NO_OUTPUT, source_ids)

        return NodeVerdict(node, depth, True, None, source_ids)

    def preview(self, root_id: int, filters: PlanFilters) -> PreviewReport:
        planned = self.collect_nodes(root_id, filters.include_descendants)
        return PreviewReport(root_id, [self.evaluate(p, filters) for p in planned])

    # -- document eligibility (sync) ---------------------------------------

    def collect_documents(self, root_id: int, include_descendants: bool = True) -> list[PlannedDocument]:
        """Direct documents of each collected node, minus that node's sources."""
        result: list[PlannedDocument] = []
        for planned in self.collect_nodes(root_id, include_descendants):
            node = planned.node
            try:
                source_ids = {s.document_id for s in self.content.list_source_documents(node.id)}
            except ContentStoreError as exc:
                logger.warning("source_documents_unavailable", node_id=node.id, error=str(exc))
                source_ids = set()
            for doc in self.content.list_node_documents(node.id):
                if doc.id in source_ids:
                    continue
                result.append(PlannedDocument(doc, node.id, node.path))
        return result

    @staticmethod
    def evaluate_document(planned: PlannedDocument) -> DocumentVerdict:
        try:
            target = parse_sync_target(planned.document.metadata)
        except InvalidSyncTargetError as exc:
            return DocumentVerdict(planned, False, None, SkipReason.INVALID_SYNC_TARGET, str(exc))
        if target is None:
            return DocumentVerdict(planned, False, None, SkipReason.NO_SYNC_TARGET)
        return DocumentVerdict(planned, True, target)

    def preview_sync(self, root_id: int, include_descendants: bool = True) -> SyncPreviewReport:
        planned = self.collect_documents(root_id, include_descendants)
        return SyncPreviewReport(root_id, [self.evaluate_document(p) for p in planned])
