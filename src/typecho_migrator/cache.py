"""On-disk cache of content snapshots with a time-to-live.

The cache only saves a database round-trip. A missing, unreadable, malformed
or expired file is a cache miss and never an error.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from pydantic import BaseModel, ValidationError, field_validator

from typecho_migrator.models import ContentRecord
from typecho_migrator.utils.db import parse_instant
from typecho_migrator.utils.files import write_text_atomic

DEFAULT_TTL = timedelta(hours=24)


class CacheFile(BaseModel):
    captured_at: datetime
    ttl: float  # seconds
    records: list[ContentRecord]

    # Files written elsewhere may carry naive timestamps; read them as UTC
    @field_validator("captured_at", mode="before")
    @classmethod
    def _to_utc(cls, value):
        return parse_instant(value)


class ContentCache:
    """Load and save ``ContentRecord`` snapshots.

    Args:
        path: Cache file location.
        ttl: How long a saved snapshot stays valid.
        log: Logger for hit/miss reporting.
    """

    def __init__(
        self,
        path: str | Path = ".cache/posts.json",
        ttl: timedelta = DEFAULT_TTL,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.path = Path(path)
        self.ttl = ttl
        self.log = log or structlog.get_logger(__name__)

    def load(self, now: datetime | None = None) -> list[ContentRecord] | None:
        if not self.path.exists():
            return None

        try:
            data = CacheFile.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, TypeError, ValueError, ValidationError):
            self.log.info("cache.unreadable", path=str(self.path))
            return None

        now = now or datetime.now(UTC)
        age = now - data.captured_at
        ttl = timedelta(seconds=data.ttl)
        if age > ttl:
            self.log.info("cache.expired", age_minutes=round(age.total_seconds() / 60))
            return None

        self.log.info(
            "cache.hit",
            records=len(data.records),
            expires_in_minutes=round((ttl - age).total_seconds() / 60),
        )
        return data.records

    def save(self, records: list[ContentRecord], now: datetime | None = None) -> None:
        """Write *records* atomically (temp file then rename)."""
        payload = CacheFile(
            captured_at=now or datetime.now(UTC),
            ttl=self.ttl.total_seconds(),
            records=records,
        )
        write_text_atomic(self.path, payload.model_dump_json(indent=2))
        self.log.info("cache.saved", records=len(records), ttl_minutes=round(self.ttl.total_seconds() / 60))

    def clear(self) -> bool:
        """Delete the cache file. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        self.log.info("cache.cleared", path=str(self.path))
        return True
