"""SQL fragment builders shared by the repositories."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


def _placeholders(count: int) -> str:
    return ", ".join(["?"] * count)


def _build_where(
    conditions: dict[str, Any],
    *,
    extra_clauses: list[tuple[str, tuple]] | None = None,
) -> tuple[str, tuple]:
    """``(where_sql, params)`` for equality filters.

    ``None`` and empty sequences mean "no filter"; a non-empty list or tuple
    becomes ``IN (...)``, so ``{"status": ["failed", "cancelled"]}`` matches
    either.  *extra_clauses* are appended verbatim.  No filters at all gives
    ``1=1`` so callers can always write ``WHERE {where}``.
    """
    parts: list[str] = []
    params: list[Any] = []
    for column, value in conditions.items():
        if value is None:
            continue
        if isinstance(value, Sequence) and not isinstance(value, str):
            if value:
                parts.append(f"{column} IN ({_placeholders(len(value))})")
                params.extend(value)
            continue
        parts.append(f"{column} = ?")
        params.append(value)
    for clause, clause_params in extra_clauses or ():
        parts.append(clause)
        params.extend(clause_params)
    return (" AND ".join(parts) or "1=1"), tuple(params)
