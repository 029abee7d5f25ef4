"""Parsing of a document's ``metadata.sync_target``.

Accepted forms::

    42                                   record id only
    '{"table": "t", "record_id": 42}'    JSON string
    {"table": "t", "record_id": 42}      object

Anything else, a missing/zero ``record_id`` or a non-identifier
``table``/``field``/``connection`` is invalid.  An absent key or a blank
string means "not configured".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from relay.core.errors import InvalidSyncTargetError

_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


@dataclass(frozen=True, slots=True)
class SyncTarget:
    record_id: int
    table: str | None = None
    field: str | None = None
    connection: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"record_id": self.record_id}
        for key in ("table", "field", "connection"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data


def _from_mapping(raw: dict[str, Any]) -> SyncTarget:
    record_id = raw.get("record_id")
    if isinstance(record_id, bool) or not isinstance(record_id, (int, float)) or not record_id:
        raise InvalidSyncTargetError("sync_target.record_id is required", value=raw)
    target = SyncTarget(
        record_id=int(record_id),
        table=raw.get("table") or None,
        field=raw.get("field") or None,
        connection=raw.get("connection") or None,
    )
    for name in ("table", "field", "connection"):
        value = getattr(target, name)
        if value is not None and (not isinstance(value, str) or not _IDENTIFIER.match(value)):
            raise InvalidSyncTargetError(f"invalid {name} name: {value}", value=raw)
    return target


def parse_sync_target(metadata: dict[str, Any] | None) -> SyncTarget | None:
    """Return the configured target, ``None`` if absent, or raise if malformed."""
    if not metadata or "sync_target" not in metadata:
        return None
    raw = metadata["sync_target"]
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidSyncTargetError("unsupported sync_target type: bool", value=raw)
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidSyncTargetError(f"failed to decode sync_target: {exc}", value=raw) from exc
        if not isinstance(decoded, dict):
            raise InvalidSyncTargetError("sync_target JSON must be an object", value=raw)
        return _from_mapping(decoded)
    if isinstance(raw, (int, float)):
        if not raw:
            raise InvalidSyncTargetError("sync_target.record_id is required", value=raw)
        return SyncTarget(record_id=int(raw))
    if isinstance(raw, dict):
        return _from_mapping(raw)
    raise InvalidSyncTargetError(f"unsupported sync_target type: {type(raw).__name__}", value=raw)
