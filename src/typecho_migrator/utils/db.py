"""Generic SQLAlchemy helpers: engine factory and timestamp utilities."""

from __future__ import annotations

from datetime import UTC, datetime

import sqlalchemy as sa


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def from_epoch(seconds: int | float) -> datetime:
    """Typecho stores instants as epoch seconds."""
    return datetime.fromtimestamp(seconds, tz=UTC)


def parse_instant(value: datetime | str | int | float | None) -> datetime | None:
    """Normalize any supported timestamp representation to an aware UTC datetime.

    Naive datetimes are taken to be UTC. Strings are ISO 8601 with any offset
    (a trailing ``Z`` is accepted). Numbers are epoch seconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso(value: datetime) -> str:
    """ISO 8601 with millisecond precision and a ``Z`` suffix, as JS ``toISOString`` emits."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def get_engine(database_url: str | sa.engine.URL) -> sa.engine.Engine:
    """Create a SQLAlchemy engine for the given database URL."""
    return sa.create_engine(database_url, echo=False)
