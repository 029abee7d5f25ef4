"""Document sync status repository - ``doc_sync_statuses``.

One row per document holding only the latest attempt.  Starting an
attempt is conditional on no attempt being pending; updates that resolve
one are conditional on the event id and on the row still being
``pending``.

Tags:
    relay, repository, sync

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from relay.core.repository import BaseRepository, dump_json, load_json
from relay.core.timestamps import now_iso


def _decode(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    row["sync_target"] = load_json(row.get("sync_target"))
    return row


class DocSyncStatusRepository(BaseRepository):
    """Current-state cache of the latest sync attempt per document."""

    TABLE = "doc_sync_statuses"

    def get(self, document_id: int) -> dict[str, Any] | None:
        return _decode(
            self.query_one(f"SELECT * FROM {self.TABLE} WHERE document_id = ?", (document_id,))
        )

    def claim_attempt(self, document_id: int, *, event_id: str, version: int, sync_target: Any) -> bool:
        """Make *event_id* the pending attempt unless another attempt is pending.

        The first sync of a document inserts the row; a concurrent first sync
        surfaces as an integrity error from the unique ``document_id``.
        """
        now = now_iso()
        changed = self.update(
            f"UPDATE {self.TABLE} SET last_event_id = ?, last_version = ?, last_status = 'pending', "
            "last_error = NULL, last_external_run_id = NULL, last_run_id = NULL, sync_target = ?, "
            "last_attempt_at = ?, updated_at = ? "
            "WHERE document_id = ? AND (last_status IS NULL OR last_status != 'pending')",
            (event_id, version, dump_json(sync_target), now, now, document_id),
        )
        if changed == 1:
            return True
        if self.get(document_id) is not None:
            return False
        self.insert(
            self.TABLE,
            {
                "document_id": document_id,
                "sync_target": dump_json(sync_target),
                "last_event_id": event_id,
                "last_version": version,
                "last_status": "pending",
                "last_attempt_at": now,
                "created_at": now,
                "updated_at": now,
            },
        )
        return True

    def attach_run(self, document_id: int, event_id: str, run_id: str) -> bool:
        changed = self.update(
            f"UPDATE {self.TABLE} SET last_run_id = ?, updated_at = ? "
            "WHERE document_id = ? AND last_event_id = ?",
            (run_id, now_iso(), document_id, event_id),
        )
        return changed == 1

    def resolve(
        self,
        document_id: int,
        event_id: str,
        status: str,
        *,
        error: str | None = None,
        external_run_id: str | None = None,
    ) -> bool:
        """Resolve a pending attempt iff *event_id* is still the latest one."""
        now = now_iso()
        fields: dict[str, Any] = {"last_status": status, "last_error": error, "updated_at": now}
        if status == "success":
            fields["last_synced_at"] = now
            fields["last_error"] = None
        if external_run_id:
            fields["last_external_run_id"] = external_run_id
        assignments = ", ".join(f"{col} = ?" for col in fields)
        changed = self.update(
            f"UPDATE {self.TABLE} SET {assignments} "
            "WHERE document_id = ? AND last_event_id = ? AND last_status = 'pending'",
            (*fields.values(), document_id, event_id),
        )
        return changed == 1

    def attach_external_run(self, document_id: int, event_id: str, external_run_id: str) -> bool:
        changed = self.update(
            f"UPDATE {self.TABLE} SET last_external_run_id = ?, updated_at = ? "
            "WHERE document_id = ? AND last_event_id = ? AND last_status = 'pending'",
            (external_run_id, now_iso(), document_id, event_id),
        )
        return changed == 1
