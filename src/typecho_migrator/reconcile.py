"""Create / update / skip decisions for source records against a destination.

The engine is pure: it compares a source record with the identity entry the
destination reported for the same natural key and returns an ``Action``. All
I/O happens in the destination adapters that consume the decision.

Timestamps are compared as UTC instants, never as strings, so an ISO date
with an offset from Notion and an epoch second from Typecho line up.
Equal instants mean "not modified": re-running a sync against unchanged
source data issues no writes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from typecho_migrator.models import IdentityEntry
from typecho_migrator.statuses import SyncAction
from typecho_migrator.utils.db import parse_instant

R = TypeVar("R")


class Action(BaseModel):
    """Outcome of reconciling one record."""

    kind: SyncAction
    remote_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def create(cls) -> Action:
        return cls(kind=SyncAction.CREATE)

    @classmethod
    def update(cls, remote_id: str) -> Action:
        return cls(kind=SyncAction.UPDATE, remote_id=remote_id)

    @classmethod
    def skip(cls, remote_id: str | None = None) -> Action:
        return cls(kind=SyncAction.SKIP, remote_id=remote_id)


def decide(
    source_modified_at: datetime | str | int | float | None,
    existing: IdentityEntry | None,
    source_fingerprint: str | None = None,
) -> Action:
    """Decide what to do with one source record.

    Args:
        source_modified_at: Last modification instant of the source record.
        existing: The destination's entry for the record's natural key, if any.
        source_fingerprint: Content digest for records without a modification
            time (links). Compared against ``existing.fingerprint`` instead.

    Returns:
        ``Create`` when nothing exists, ``Skip`` when the destination is at
        least as new as the source, ``Update`` otherwise. An entry without a
        known modification instant is always updated.
    """
    if existing is None:
        return Action.create()

    source_instant = parse_instant(source_modified_at)
    if source_instant is None and source_fingerprint is not None:
        if existing.fingerprint == source_fingerprint:
            return Action.skip(existing.remote_id)
        return Action.update(existing.remote_id)

    remote_instant = existing.modified_at
    if remote_instant is not None and source_instant is not None and remote_instant >= source_instant:
        return Action.skip(existing.remote_id)
    return Action.update(existing.remote_id)


def by_slug(record: Any) -> str:
    return record.slug


def reconcile(
    source: Any,
    identity: Mapping[str, IdentityEntry],
    key: Callable[[Any], str] = by_slug,
) -> Action:
    """Reconcile a record carrying ``modified_at`` against a destination identity map.

    The record is looked up under its natural key (the slug unless *key* says
    otherwise) and the decision is delegated to ``decide``.
    """
    return decide(
        getattr(source, "modified_at", None),
        identity.get(key(source)),
        getattr(source, "fingerprint", None),
    )


def plan(
    records: Iterable[R],
    identity: Mapping[str, IdentityEntry],
    key: Callable[[R], str] = by_slug,
) -> list[tuple[R, Action]]:
    """Decisions for every record against a frozen identity map (dry runs)."""
    return [(record, reconcile(record, identity, key)) for record in records]


def find_duplicate_keys(records: Iterable[R], key: Callable[[R], str]) -> dict[str, list[R]]:
    """Natural keys used by more than one record, with the records in source order."""
    seen: dict[str, list[R]] = {}
    for record in records:
        seen.setdefault(key(record), []).append(record)
    return {k: group for k, group in seen.items() if len(group) > 1}


def dedupe_by_key(records: Sequence[R], key: Callable[[R], str]) -> tuple[list[R], list[tuple[R, R]]]:
    """Resolve duplicate natural keys deterministically.

    The later record in source order wins the identity slot. Returns the
    surviving records (source order kept) and ``(superseded, winner)`` pairs.
    """
    winner_index: dict[str, int] = {}
    for index, record in enumerate(records):
        winner_index[key(record)] = index

    winners: list[R] = []
    superseded: list[tuple[R, R]] = []
    for index, record in enumerate(records):
        winning = winner_index[key(record)]
        if winning == index:
            winners.append(record)
        else:
            superseded.append((record, records[winning]))
    return winners, superseded
