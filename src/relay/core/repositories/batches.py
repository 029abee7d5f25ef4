"""Batch repository - ``batches``.

Counter and detail updates are optimistic: callers read a row, fold their
change into it, and write it back with :meth:`BatchRepository.save_if_revision`.
A stale revision means another writer got there first; the caller re-reads
and folds again.

Tags:
    relay, repository, batches, optimistic-concurrency

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from relay.core.repository import BaseRepository, dump_json, load_json
from relay.core.timestamps import now_iso

from ._helpers import _build_where

_JSON_FIELDS = ("details", "options")


def _decode(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    row["details"] = load_json(row.get("details"), [])
    row["options"] = load_json(row.get("options"), {})
    row["cancel_requested"] = bool(row.get("cancel_requested"))
    return row


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    encoded = {k: dump_json(v) if k in _JSON_FIELDS else v for k, v in fields.items()}
    if "cancel_requested" in encoded:
        encoded["cancel_requested"] = int(bool(encoded["cancel_requested"]))
    return encoded


class BatchRepository(BaseRepository):
    """Reads and revision-guarded writes for ``batches``."""

    TABLE = "batches"

    # -- reads -----------------------------------------------------------------

    def get(self, batch_id: str) -> dict[str, Any] | None:
        return _decode(self.query_one(f"SELECT * FROM {self.TABLE} WHERE batch_id = ?", (batch_id,)))

    def list_batches(
        self,
        *,
        kind: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List batches newest first.  Returns ``(rows, total)``."""
        where, params = _build_where({"kind": kind, "status": status})
        total = self.scalar(f"SELECT COUNT(*) FROM {self.TABLE} WHERE {where}", params) or 0
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_decode(row) for row in rows], int(total)  # type: ignore[misc]

    # -- writes ----------------------------------------------------------------

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, _encode(data))

    def save_if_revision(self, batch_id: str, revision: int, **fields: Any) -> bool:
        """Write *fields* and bump the revision iff the stored revision is *revision*."""
        values = _encode({**fields, "updated_at": now_iso(), "revision": revision + 1})
        assignments = ", ".join(f"{col} = ?" for col in values)
        changed = self.update(
            f"UPDATE {self.TABLE} SET {assignments} WHERE batch_id = ? AND revision = ?",
            (*values.values(), batch_id, revision),
        )
        return changed == 1

    def request_cancel(self, batch_id: str) -> bool:
        """Flag a non-terminal batch for cooperative cancellation."""
        changed = self.update(
            f"UPDATE {self.TABLE} SET cancel_requested = 1, updated_at = ?, revision = revision + 1 "
            "WHERE batch_id = ? AND status IN ('pending', 'running')",
            (now_iso(), batch_id),
        )
        return changed == 1
