"""Workflow definition repository - ``workflow_definitions``.

Tags:
    relay, repository, workflow-definitions

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from relay.core.repository import BaseRepository, dump_json, load_json
from relay.core.timestamps import now_iso

from ._helpers import _build_where

_JSON_COLUMNS = ("tags", "parameter_schema")


def _decode(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    row["tags"] = load_json(row.get("tags"), [])
    row["parameter_schema"] = load_json(row.get("parameter_schema"), {})
    row["enabled"] = bool(row.get("enabled"))
    return row


class WorkflowDefinitionRepository(BaseRepository):
    """CRUD for ``workflow_definitions``."""

    TABLE = "workflow_definitions"

    # -- reads -----------------------------------------------------------------

    def get_by_key(self, workflow_key: str) -> dict[str, Any] | None:
        return _decode(
            self.query_one(f"SELECT * FROM {self.TABLE} WHERE workflow_key = ?", (workflow_key,))
        )

    def list_definitions(
        self,
        *,
        source: str | None = None,
        workflow_type: str | None = None,
        sync_status: str | None = None,
        enabled: bool | None = None,
    ) -> list[dict[str, Any]]:
        where, params = _build_where(
            {
                "source": source,
                "workflow_type": workflow_type,
                "sync_status": sync_status,
                "enabled": None if enabled is None else int(enabled),
            }
        )
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} ORDER BY workflow_key",
            params,
        )
        return [_decode(row) for row in rows]  # type: ignore[misc]

    def list_by_source(self, source: str) -> list[dict[str, Any]]:
        return self.list_definitions(source=source)

    # -- writes ----------------------------------------------------------------

    def upsert(self, data: dict[str, Any]) -> None:
        """Insert a definition or update every supplied column of an existing one."""
        now = now_iso()
        values = {
            key: dump_json(value) if key in _JSON_COLUMNS else value
            for key, value in data.items()
        }
        if "enabled" in values:
            values["enabled"] = int(bool(values["enabled"]))
        existing = self.query_one(
            f"SELECT id FROM {self.TABLE} WHERE workflow_key = ?", (data["workflow_key"],)
        )
        if existing is None:
            values.setdefault("created_at", now)
            values.setdefault("updated_at", now)
            self.insert(self.TABLE, values)
            return
        values.pop("workflow_key")
        values["updated_at"] = now
        assignments = ", ".join(f"{col} = ?" for col in values)
        self.execute(
            f"UPDATE {self.TABLE} SET {assignments} WHERE workflow_key = ?",
            (*values.values(), data["workflow_key"]),
        )

    def set_enabled(self, workflow_key: str, enabled: bool) -> bool:
        changed = self.update(
            f"UPDATE {self.TABLE} SET enabled = ?, updated_at = ? WHERE workflow_key = ?",
            (int(enabled), now_iso(), workflow_key),
        )
        return changed > 0

    def touch_seen(self, workflow_key: str, seen_at: str) -> None:
        self.execute(
            f"UPDATE {self.TABLE} SET last_seen_at = ?, sync_status = 'active' WHERE workflow_key = ?",
            (seen_at, workflow_key),
        )

    def mark_sync_status(self, workflow_key: str, sync_status: str) -> None:
        self.execute(
            f"UPDATE {self.TABLE} SET sync_status = ?, updated_at = ? WHERE workflow_key = ?",
            (sync_status, now_iso(), workflow_key),
        )
