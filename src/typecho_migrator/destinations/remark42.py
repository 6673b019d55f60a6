"""Remark42 backup file export.

Remark42 restores from a line-delimited JSON backup: a header object
followed by one comment object per line. Comments must appear after their
parents, which the thread rebuilder guarantees.
"""

from __future__ import annotations

import hashlib
import html
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog

from typecho_migrator.models import CommentRecord, ContentRecord, ThreadedComment
from typecho_migrator.report import ExportSummary
from typecho_migrator.threads import rebuild
from typecho_migrator.utils.db import to_iso
from typecho_migrator.utils.files import write_text_atomic

BACKUP_HEADER = {"version": 1, "users": [], "posts": []}
DEFAULT_URL_PATTERN = "{site_url}/archives/{slug}.html"


def comment_id(local_id: int) -> str:
    return f"typecho-{local_id}"


def user_id(comment: CommentRecord) -> str:
    seed = comment.author_email.strip().lower() or comment.author
    return f"typecho_{hashlib.sha1(seed.encode('utf-8')).hexdigest()[:12]}"


def _gravatar(email: str) -> str | None:
    email = email.strip().lower()
    if not email:
        return None
    return f"https://www.gravatar.com/avatar/{hashlib.md5(email.encode('utf-8')).hexdigest()}"


def _to_html(text: str) -> str:
    paragraphs = [p for p in text.strip().split("\n\n") if p.strip()]
    return "".join(f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs)


def build_comment(
    threaded: ThreadedComment,
    *,
    site_id: str,
    title: str,
) -> dict[str, Any]:
    comment = threaded.comment
    user: dict[str, Any] = {
        "name": comment.author,
        "id": user_id(comment),
        # Remark42 only keeps hashed IPs
        "ip": hashlib.sha1(comment.author_ip.encode("utf-8")).hexdigest() if comment.author_ip else "",
        "admin": False,
        "site_id": site_id,
    }
    picture = _gravatar(comment.author_email)
    if picture:
        user["picture"] = picture

    return {
        "id": comment_id(comment.local_id),
        "pid": comment_id(comment.parent_id) if comment.parent_id else "",
        "text": _to_html(comment.body),
        "orig": comment.body,
        "user": user,
        "locator": {"site": site_id, "url": threaded.content_ref},
        "score": 0,
        "vote": 0,
        "time": to_iso(comment.created_at),
        "title": title,
        "imported": True,
    }


def export_remark42(
    contents: Iterable[ContentRecord],
    comments: Iterable[CommentRecord],
    *,
    site_id: str,
    site_url: str,
    out_path: str | Path,
    url_pattern: str = DEFAULT_URL_PATTERN,
    log: structlog.stdlib.BoundLogger | None = None,
) -> ExportSummary:
    """Write every placeable comment to a Remark42 backup file.

    Args:
        contents: Posts and pages; comments on anything else are dropped.
        comments: Flat comment set.
        site_id: Remark42 ``SITE`` value.
        site_url: Public site root used to build page URLs.
        out_path: Backup file to write.
        url_pattern: Page URL format with ``{site_url}``, ``{slug}`` and ``{cid}``.
    """
    log = log or structlog.get_logger(__name__)
    site_url = site_url.rstrip("/")
    by_id = {record.id: record for record in contents}
    urls = {cid: url_pattern.format(site_url=site_url, slug=r.slug, cid=cid) for cid, r in by_id.items()}

    result = rebuild(comments, urls, log=log)

    lines = [json.dumps(BACKUP_HEADER)]
    for threaded in result.threads:
        title = by_id[threaded.comment.content_id].title
        lines.append(json.dumps(build_comment(threaded, site_id=site_id, title=title), ensure_ascii=False))

    path = Path(out_path)
    write_text_atomic(path, "\n".join(lines) + "\n")
    log.info("remark42.exported", path=str(path), comments=len(result.threads), dropped=len(result.dropped))

    return ExportSummary(
        name="Remark42 export",
        out=str(path),
        written={"comments": len(result.threads)},
        dropped=len(result.dropped),
    )
