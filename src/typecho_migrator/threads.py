"""Rebuild comment threads from Typecho's flat comment table.

Typecho stores replies as rows pointing at a parent ``coid``. Destinations
want each comment addressed by a hierarchical thread key: ``#1`` for the
first top-level comment of a content item, ``#1#2`` for the second reply to
it, ``#1#2#1`` one level deeper, and so on. Sibling indices are 1-based and
follow creation time; top-level indices are counted per content item and
reply indices per parent.

Keys are assigned in a single forward pass over each content item's
comments sorted by ``(created_at, local_id)``. A reply is only placed once
its parent has a key, so forward references and cycles never resolve and
are dropped instead of recursing.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import structlog

from typecho_migrator.models import CommentRecord, DroppedComment, ThreadedComment, ThreadRebuild
from typecho_migrator.statuses import DropReason


@dataclass
class _Slot:
    key: str
    depth: int
    child_count: int = 0


def thread_key(parent_key: str | None, index: int) -> str:
    """Key of the *index*-th child under *parent_key* (``None`` for top level)."""
    return f"{parent_key or ''}#{index}"


def rebuild(
    comments: Iterable[CommentRecord],
    content_refs: Mapping[int, str],
    *,
    comment_refs: Mapping[int, str] | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> ThreadRebuild:
    """Assign thread keys to every resolvable comment.

    Args:
        comments: The flat comment set, any order.
        content_refs: ``content_id`` -> remote reference of the content item.
            Comments on content absent from this map are dropped.
        comment_refs: Optional ``local_id`` -> remote id of comments, used to
            fill ``parent_ref`` on replies.
        log: Logger for drop warnings.

    Returns:
        A ``ThreadRebuild`` whose threads are ordered parents-before-children
        (content items in order of first appearance, chronological inside).
    """
    log = log or structlog.get_logger(__name__)
    comment_refs = comment_refs or {}

    result = ThreadRebuild()
    all_comments = list(comments)
    content_of = {c.local_id: c.content_id for c in all_comments}

    partitions: dict[int, list[CommentRecord]] = defaultdict(list)
    for comment in all_comments:
        if comment.content_id not in content_refs:
            _drop(result, log, comment, DropReason.UNRESOLVED_CONTENT, f"content {comment.content_id} not migrated")
            continue
        partitions[comment.content_id].append(comment)

    for content_id, members in partitions.items():
        content_ref = content_refs[content_id]
        assigned: dict[int, _Slot] = {}
        dropped: set[int] = set()
        top_level_count = 0

        for comment in sorted(members, key=lambda c: (c.created_at, c.local_id)):
            if not comment.parent_id:
                top_level_count += 1
                slot = _Slot(key=thread_key(None, top_level_count), depth=1)
                parent_ref = None
            else:
                parent = assigned.get(comment.parent_id)
                if parent is None:
                    detail = _orphan_detail(comment, content_of, dropped)
                    _drop(result, log, comment, DropReason.ORPHANED, detail)
                    dropped.add(comment.local_id)
                    continue
                parent.child_count += 1
                slot = _Slot(key=thread_key(parent.key, parent.child_count), depth=parent.depth + 1)
                parent_ref = comment_refs.get(comment.parent_id)

            assigned[comment.local_id] = slot
            result.threads.append(
                ThreadedComment(
                    comment=comment,
                    key=slot.key,
                    depth=slot.depth,
                    content_ref=content_ref,
                    parent_ref=parent_ref,
                )
            )

    if result.dropped:
        log.info(
            "threads.rebuild_complete",
            emitted=len(result.threads),
            orphaned=result.orphaned,
            unresolved_content=result.unresolved_content,
        )
    return result


def children_of(threads: Iterable[ThreadedComment]) -> dict[int, list[int]]:
    """``local_id`` -> direct reply ids, in thread order."""
    children: dict[int, list[int]] = defaultdict(list)
    for threaded in threads:
        if threaded.comment.parent_id:
            children[threaded.comment.parent_id].append(threaded.comment.local_id)
    return dict(children)


def _orphan_detail(comment: CommentRecord, content_of: Mapping[int, int], dropped: set[int]) -> str:
    parent_id = comment.parent_id
    if parent_id == comment.local_id:
        return "comment is its own parent"
    if parent_id not in content_of:
        return f"parent {parent_id} not found"
    if content_of[parent_id] != comment.content_id:
        return f"parent {parent_id} belongs to content {content_of[parent_id]}"
    if parent_id in dropped:
        return f"parent {parent_id} was dropped"
    return f"parent {parent_id} not placed yet (forward reference or cycle)"


def _drop(
    result: ThreadRebuild,
    log: structlog.stdlib.BoundLogger,
    comment: CommentRecord,
    reason: DropReason,
    detail: str,
) -> None:
    log.warning("threads.comment_dropped", coid=comment.local_id, cid=comment.content_id, reason=str(reason), detail=detail)
    result.dropped.append(DroppedComment(comment=comment, reason=reason, detail=detail))
