"""Exception hierarchy.

Only ``ConfigError``, ``SourceError`` and ``DuplicateKeyError`` end a run.
``DestinationError`` is caught at the per-record boundary and tallied; it
ends the run only when the identity map itself cannot be read.
"""

from __future__ import annotations


class MigratorError(Exception):
    """Base class for all migrator errors."""


class ConfigError(MigratorError):
    """A required credential or connection parameter is missing or invalid."""


class SourceError(MigratorError):
    """The Typecho database could not be read."""


class DestinationError(MigratorError):
    """Transport failure or non-2xx response from a destination."""

    def __init__(self, message: str, status_code: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class DuplicateKeyError(MigratorError):
    """Two or more source records share a natural key (strict mode only)."""

    def __init__(self, duplicates: dict[str, list[int]]) -> None:
        self.duplicates = duplicates
        listing = ", ".join(f"{key!r} (ids {', '.join(map(str, ids))})" for key, ids in sorted(duplicates.items()))
        super().__init__(f"Duplicate natural keys in source: {listing}")
