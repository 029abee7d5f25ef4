"""Declarative base and column types shared by the relay tables.

Timestamps are stored as canonical ISO-8601 UTC text (see
:mod:`relay.core.timestamps`) so that ``ORDER BY`` and ``<`` comparisons on
``*_at`` columns behave the same on every backend.  :class:`IsoTimestamp`
enforces that on the way in.
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import JSON, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from relay.core.timestamps import to_iso8601


class IsoTimestamp(TypeDecorator):
    """``TEXT`` column holding a fixed-width ISO-8601 UTC timestamp."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return to_iso8601(value)


class RelayBase(DeclarativeBase):
    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Integer,  # 0/1
        datetime.datetime: IsoTimestamp,
        dict: JSON,
        list: JSON,
    }


class TimestampMixin:
    """``created_at`` / ``updated_at``, written explicitly by every repository."""

    created_at: Mapped[datetime.datetime] = mapped_column(IsoTimestamp, nullable=False)
    updated_at: Mapped[datetime.datetime | None] = mapped_column(IsoTimestamp, nullable=True)
