"""Run repository - ``workflow_runs``.

Every status change goes through :meth:`RunRepository.transition`, a
conditional update guarded by the expected prior status.  Two writers
racing on the same run both issue the update; exactly one sees a changed
row, the other gets ``False`` and treats it as a no-op.

Tags:
    relay, repository, runs, compare-and-swap

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from relay.core.repository import BaseRepository, dump_json, load_json
from relay.core.timestamps import now_iso

from ._helpers import _build_where, _placeholders

_JSON_FIELDS = ("parameters", "result")


def _decode(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    row["parameters"] = load_json(row.get("parameters"), {})
    row["result"] = load_json(row.get("result"))
    return row


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: dump_json(v) if k in _JSON_FIELDS else v for k, v in fields.items()}


class RunRepository(BaseRepository):
    """Reads and conditional writes for ``workflow_runs``."""

    TABLE = "workflow_runs"

    # -- reads -----------------------------------------------------------------

    def get(self, run_id: str) -> dict[str, Any] | None:
        return _decode(self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (run_id,)))

    def list_runs(
        self,
        *,
        node_id: int | None = None,
        document_id: int | None = None,
        workflow_key: str | None = None,
        statuses: Sequence[str] | None = None,
        batch_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List runs newest first.  Returns ``(rows, total)``."""
        where, params = _build_where(
            {
                "node_id": node_id,
                "document_id": document_id,
                "workflow_key": workflow_key,
                "status": list(statuses) if statuses else None,
                "batch_id": batch_id,
            }
        )
        total = self.scalar(f"SELECT COUNT(*) FROM {self.TABLE} WHERE {where}", params) or 0
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_decode(row) for row in rows], int(total)  # type: ignore[misc]

    def list_retries(self, run_id: str) -> list[dict[str, Any]]:
        """Every run that descends from *run_id* through ``retry_of``, oldest first."""
        rows = self.query(
            "WITH RECURSIVE lineage(id) AS ("
            f"  SELECT id FROM {self.TABLE} WHERE retry_of = ?"
            "  UNION ALL"
            f"  SELECT r.id FROM {self.TABLE} r JOIN lineage l ON r.retry_of = l.id"
            ") "
            f"SELECT r.* FROM {self.TABLE} r JOIN lineage l ON r.id = l.id "
            "ORDER BY r.created_at ASC, r.id ASC",
            (run_id,),
        )
        return [_decode(row) for row in rows]  # type: ignore[misc]

    def retry_stats(self, run_ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Direct retry count and latest retry status for each of *run_ids*."""
        if not run_ids:
            return {}
        rows = self.query(
            f"SELECT retry_of, status FROM {self.TABLE} "
            f"WHERE retry_of IN ({_placeholders(len(run_ids))}) "
            "ORDER BY created_at DESC, id DESC",
            tuple(run_ids),
        )
        stats: dict[str, dict[str, Any]] = {}
        for row in rows:
            entry = stats.setdefault(
                row["retry_of"], {"retry_count": 0, "latest_retry_status": row["status"]}
            )
            entry["retry_count"] += 1
        return stats

    def find_stale(self, status: str, column: str, cutoff: str) -> list[dict[str, Any]]:
        """Runs in *status* whose *column* timestamp is older than *cutoff*."""
        if column not in ("started_at", "created_at"):
            raise ValueError(f"unsupported staleness column: {column}")
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE status = ? AND {column} IS NOT NULL "
            f"AND {column} < ? ORDER BY {column} ASC",
            (status, cutoff),
        )
        return [_decode(row) for row in rows]  # type: ignore[misc]

    def find_active_before(self, cutoff: str, *, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Active runs whose ``COALESCE(started_at, created_at)`` is older than *cutoff*."""
        where, params = _build_where(
            dict(filters or {}),
            extra_clauses=[
                ("status IN ('pending', 'running')", ()),
                ("COALESCE(started_at, created_at) < ?", (cutoff,)),
            ],
        )
        rows = self.query(f"SELECT * FROM {self.TABLE} WHERE {where}", params)
        return [_decode(row) for row in rows]  # type: ignore[misc]

    # -- writes ----------------------------------------------------------------

    def create(self, data: dict[str, Any]) -> None:
        """Insert a new run row (status, timestamps and ids supplied by the caller)."""
        self.insert(self.TABLE, _encode(data))

    def transition(
        self,
        run_id: str,
        expected: Iterable[str],
        target: str,
        **fields: Any,
    ) -> bool:
        """Move *run_id* to *target* iff its status is one of *expected*.

        Returns ``True`` when this call changed the row.
        """
        expected = tuple(expected)
        values = _encode({"status": target, "updated_at": now_iso(), **fields})
        assignments = ", ".join(f"{col} = ?" for col in values)
        changed = self.update(
            f"UPDATE {self.TABLE} SET {assignments} "
            f"WHERE id = ? AND status IN ({_placeholders(len(expected))})",
            (*values.values(), run_id, *expected),
        )
        return changed == 1

    def attach_external_ref(self, run_id: str, external_run_id: str, deployment_id: str | None) -> bool:
        """Record the engine reference on a running run that has none yet."""
        changed = self.update(
            f"UPDATE {self.TABLE} SET external_run_id = ?, deployment_id = COALESCE(deployment_id, ?), "
            "updated_at = ? WHERE id = ? AND external_run_id IS NULL AND status != 'pending'",
            (external_run_id, deployment_id, now_iso(), run_id),
        )
        return changed == 1

    # -- retention -------------------------------------------------------------

    def _cleanup_where(self, filters: dict[str, Any], before: str | None) -> tuple[str, tuple]:
        extra = [("created_at < ?", (before,))] if before else []
        return _build_where(filters, extra_clauses=extra)

    def count_matching(self, filters: dict[str, Any], before: str | None) -> int:
        where, params = self._cleanup_where(filters, before)
        return int(self.scalar(f"SELECT COUNT(*) FROM {self.TABLE} WHERE {where}", params) or 0)

    def delete_matching(self, filters: dict[str, Any], before: str | None) -> int:
        where, params = self._cleanup_where(filters, before)
        return self.update(f"DELETE FROM {self.TABLE} WHERE {where}", params)

    def delete_ids(self, run_ids: Sequence[str]) -> int:
        if not run_ids:
            return 0
        return self.update(
            f"DELETE FROM {self.TABLE} WHERE id IN ({_placeholders(len(run_ids))})",
            tuple(run_ids),
        )
