"""Sequential write loop: reconcile each record, call the adapter, tally.

Writes go out one at a time with a fixed delay between them to stay inside
destination API quotas. A failing record is recorded and the loop moves on;
only a failure to build the identity map ends the run.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Any, Protocol

import structlog

from typecho_migrator.destinations.base import DestinationAdapter
from typecho_migrator.errors import DestinationError, DuplicateKeyError
from typecho_migrator.models import IdentityEntry, ThreadedComment
from typecho_migrator.reconcile import by_slug, dedupe_by_key, find_duplicate_keys, reconcile
from typecho_migrator.report import RecordResult, SyncReport
from typecho_migrator.statuses import SyncAction


class IdentityTable(Mapping[str, IdentityEntry]):
    """Mutable natural-key -> ``IdentityEntry`` table for one run.

    Built once from ``query_existing()`` before any write. The write loop
    merges the entry returned by each successful write so later records in
    the same run see it. Reads go through the ``Mapping`` interface, so the
    table is passed to ``reconcile`` as is.
    """

    def __init__(self, entries: Mapping[str, IdentityEntry] | None = None) -> None:
        self._entries: dict[str, IdentityEntry] = dict(entries or {})

    def __getitem__(self, key: str) -> IdentityEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def lookup(self, key: str) -> IdentityEntry | None:
        return self._entries.get(key)

    def merge(self, key: str, entry: IdentityEntry) -> None:
        self._entries[key] = entry

    def snapshot(self) -> dict[str, IdentityEntry]:
        return dict(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _title(record: Any) -> str:
    return getattr(record, "title", None) or getattr(record, "name", None) or str(getattr(record, "id", "?"))


def check_duplicates(records: Sequence[Any], key: Callable[[Any], str] = by_slug) -> None:
    """Raise ``DuplicateKeyError`` when any natural key repeats (strict mode)."""
    duplicates = find_duplicate_keys(records, key)
    if duplicates:
        raise DuplicateKeyError({k: [r.id for r in group] for k, group in duplicates.items()})


def sync_records(
    records: Sequence[Any],
    adapter: DestinationAdapter,
    log: structlog.stdlib.BoundLogger,
    *,
    key: Callable[[Any], str] = by_slug,
    identity: IdentityTable | None = None,
    delay: float = 0.35,
    dry_run: bool = False,
    name: str | None = None,
    report: SyncReport | None = None,
) -> SyncReport:
    """Push *records* to *adapter*, creating, updating or skipping each one.

    Args:
        records: Source records in source order.
        adapter: Destination to write to.
        log: Structured logger.
        key: Natural key of a record (slug by default).
        identity: Pre-built identity table; queried from the adapter if omitted.
        delay: Seconds to sleep after each mutating call.
        dry_run: Decide and report without calling create/update.
        name: Report title.
        report: Report to append to, so a caller can print partial results.

    Returns:
        The run's ``SyncReport``.
    """
    if report is None:
        report = SyncReport(name=name or f"{adapter.kind} sync", dry_run=dry_run)

    if identity is None:
        identity = IdentityTable(adapter.query_existing())
    log.info("sync.identity_loaded", destination=str(adapter.kind), existing=len(identity))

    winners, superseded = dedupe_by_key(records, key)
    for loser, winner in superseded:
        log.warning("sync.duplicate_key", key=key(loser), superseded_id=loser.id, winner_id=winner.id)
        report.add(
            RecordResult(
                key=key(loser),
                title=_title(loser),
                action=SyncAction.SKIP,
                error=f"duplicate key, superseded by id={winner.id}",
            )
        )

    for record in winners:
        record_key = key(record)
        action = reconcile(record, identity, key)

        if action.kind == SyncAction.SKIP:
            log.info("sync.skipped", key=record_key, reason="not modified")
            report.add(RecordResult(key=record_key, title=_title(record), action=action.kind, remote_id=action.remote_id))
            continue

        if dry_run:
            log.info(f"sync.would_{action.kind}", key=record_key)
            report.add(RecordResult(key=record_key, title=_title(record), action=action.kind, remote_id=action.remote_id))
            continue

        try:
            if action.kind == SyncAction.CREATE:
                remote_id = adapter.create(record)
            else:
                remote_id = action.remote_id
                adapter.update(remote_id, record)
        except DestinationError as exc:
            log.error("sync.failed", key=record_key, action=str(action.kind), error=str(exc))
            report.add(
                RecordResult(key=record_key, title=_title(record), action=action.kind, success=False, error=str(exc))
            )
            continue
        except Exception as exc:
            log.exception("sync.failed", key=record_key, action=str(action.kind))
            report.add(
                RecordResult(key=record_key, title=_title(record), action=action.kind, success=False, error=str(exc))
            )
            continue
        finally:
            time.sleep(delay)

        identity.merge(
            record_key,
            IdentityEntry(
                remote_id=remote_id,
                modified_at=getattr(record, "modified_at", None),
                fingerprint=getattr(record, "fingerprint", None),
            ),
        )
        log.info(f"sync.{action.kind}d", key=record_key, remote_id=remote_id)
        report.add(RecordResult(key=record_key, title=_title(record), action=action.kind, remote_id=remote_id))

    return report.finish()


class CommentWriter(Protocol):
    def create_comment(self, threaded: ThreadedComment) -> str:
        """Post a top-level comment under ``threaded.content_ref``; return its remote id."""
        ...

    def reply_comment(self, parent_remote_id: str, threaded: ThreadedComment) -> str:
        ...


def sync_comments(
    threads: Sequence[ThreadedComment],
    writer: CommentWriter,
    log: structlog.stdlib.BoundLogger,
    *,
    identity: IdentityTable | None = None,
    delay: float = 0.35,
    dry_run: bool = False,
    name: str = "comments",
    report: SyncReport | None = None,
) -> SyncReport:
    """Write rebuilt threads parent-first, resolving each reply's parent remote id.

    *identity* maps ``str(local_id)`` to the remote comment; it is updated
    after every successful write so a reply posted later in the same run
    finds the id its parent was just given.
    """
    if report is None:
        report = SyncReport(name=name, dry_run=dry_run)
    identity = identity if identity is not None else IdentityTable()

    for threaded in threads:
        comment = threaded.comment
        record_key = str(comment.local_id)
        title = f"comment {comment.local_id} by {comment.author} ({threaded.key})"

        existing = identity.lookup(record_key)
        if existing is not None:
            report.add(RecordResult(key=record_key, title=title, action=SyncAction.SKIP, remote_id=existing.remote_id))
            continue

        parent_remote_id = None
        if comment.parent_id:
            parent = identity.lookup(str(comment.parent_id))
            if parent is None and not dry_run:
                log.warning("sync.comment_parent_missing", coid=comment.local_id, parent=comment.parent_id)
                report.add(
                    RecordResult(
                        key=record_key,
                        title=title,
                        action=SyncAction.CREATE,
                        success=False,
                        error=f"parent comment {comment.parent_id} was not imported",
                    )
                )
                continue
            parent_remote_id = parent.remote_id if parent else None

        if dry_run:
            report.add(RecordResult(key=record_key, title=title, action=SyncAction.CREATE))
            continue

        try:
            if parent_remote_id is None:
                remote_id = writer.create_comment(threaded)
            else:
                remote_id = writer.reply_comment(parent_remote_id, threaded)
        except DestinationError as exc:
            log.error("sync.comment_failed", coid=comment.local_id, error=str(exc))
            report.add(RecordResult(key=record_key, title=title, action=SyncAction.CREATE, success=False, error=str(exc)))
            continue
        except Exception as exc:
            log.exception("sync.comment_failed", coid=comment.local_id)
            report.add(RecordResult(key=record_key, title=title, action=SyncAction.CREATE, success=False, error=str(exc)))
            continue
        finally:
            time.sleep(delay)

        identity.merge(record_key, IdentityEntry(remote_id=remote_id, modified_at=comment.created_at))
        log.info("sync.comment_created", coid=comment.local_id, key=threaded.key, remote_id=remote_id)
        report.add(RecordResult(key=record_key, title=title, action=SyncAction.CREATE, remote_id=remote_id))

    return report.finish()
