"""
UTC timestamp utilities.

All timestamps are stored as ISO 8601 strings in UTC with microsecond
precision, so lexical ordering in SQL matches chronological ordering.

Features:
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Storage round-trip
    - **parse_timestamp():** Accepts datetimes, ISO strings or None

Tags:
    timestamps, utc, datetime, relay

Doc-Types:
    - API Reference
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to the canonical stored string (UTC, microseconds)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware datetime (naive values are UTC)."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Normalise a stored or user-supplied timestamp to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return from_iso8601(str(value))


def now_iso() -> str:
    """Current UTC time in stored form."""
    return to_iso8601(utc_now())  # type: ignore[return-value]
