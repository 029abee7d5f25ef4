"""Processing job repository - ``processing_jobs``.

``idempotency_key`` is UNIQUE; :meth:`ProcessingJobRepository.create` lets
the driver's integrity error propagate so the caller can return the row
that won the race.

Tags:
    relay, repository, processing, idempotency

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from relay.core.repository import BaseRepository, dump_json, load_json
from relay.core.timestamps import now_iso

from ._helpers import _placeholders

_JSON_FIELDS = ("parameters", "result")


def _decode(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    row["parameters"] = load_json(row.get("parameters"), {})
    row["result"] = load_json(row.get("result"))
    row["dry_run"] = bool(row.get("dry_run"))
    return row


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    encoded = {k: dump_json(v) if k in _JSON_FIELDS else v for k, v in fields.items()}
    if "dry_run" in encoded:
        encoded["dry_run"] = int(bool(encoded["dry_run"]))
    return encoded


class ProcessingJobRepository(BaseRepository):
    """CRUD for ``processing_jobs``."""

    TABLE = "processing_jobs"

    def get(self, job_id: str) -> dict[str, Any] | None:
        return _decode(self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (job_id,)))

    def get_by_key(self, idempotency_key: str) -> dict[str, Any] | None:
        return _decode(
            self.query_one(
                f"SELECT * FROM {self.TABLE} WHERE idempotency_key = ?", (idempotency_key,)
            )
        )

    def list_for_document(
        self, document_id: int, *, limit: int = 20, offset: int = 0
    ) -> tuple[list[dict[str, Any]], int]:
        total = self.scalar(
            f"SELECT COUNT(*) FROM {self.TABLE} WHERE document_id = ?", (document_id,)
        ) or 0
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE document_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (document_id, limit, offset),
        )
        return [_decode(row) for row in rows], int(total)  # type: ignore[misc]

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, _encode(data))

    def transition(self, job_id: str, expected: Iterable[str], target: str, **fields: Any) -> bool:
        expected = tuple(expected)
        values = _encode({"status": target, "updated_at": now_iso(), **fields})
        assignments = ", ".join(f"{col} = ?" for col in values)
        changed = self.update(
            f"UPDATE {self.TABLE} SET {assignments} "
            f"WHERE id = ? AND status IN ({_placeholders(len(expected))})",
            (*values.values(), job_id, *expected),
        )
        return changed == 1

    def set_progress(self, job_id: str, progress: int) -> bool:
        changed = self.update(
            f"UPDATE {self.TABLE} SET progress = ?, updated_at = ? "
            "WHERE id = ? AND status IN ('pending', 'running')",
            (progress, now_iso(), job_id),
        )
        return changed == 1
