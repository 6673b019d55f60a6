"""MxSpace destinations: offline BSON dump and live REST import.

The BSON dump is a set of ``mongorestore``-compatible files, one
concatenated-document file per collection. The REST client writes through
the admin API and is adapted to the sync loop by ``MxSpaceDestination``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import bson
import httpx
import structlog
from bson import ObjectId

from typecho_migrator.destinations.base import request_json
from typecho_migrator.errors import DestinationError
from typecho_migrator.models import CommentRecord, ContentRecord, IdentityEntry, TaxonomyTerm, ThreadedComment
from typecho_migrator.report import ExportSummary
from typecho_migrator.statuses import ContentKind, ContentStatus, DestinationKind
from typecho_migrator.threads import children_of, rebuild
from typecho_migrator.utils.db import to_iso
from typecho_migrator.utils.files import write_bytes_atomic
from typecho_migrator.utils.http import create_http_client
from typecho_migrator.verify import extract_image_urls

REF_TYPES = {ContentKind.POST: "Post", ContentKind.PAGE: "Page"}
COMMENT_APPROVED = 1
DEFAULT_CATEGORY = "Uncategorized"
PAGE_SIZE = 50


def _images(body: str) -> list[dict[str, Any]]:
    return [{"src": url, "width": 0, "height": 0, "type": "photo"} for url in extract_image_urls(body)]


def write_bson(path: Path, documents: Iterable[dict[str, Any]]) -> int:
    """Write *documents* as concatenated BSON; returns how many were written."""
    encoded = [bson.encode(doc) for doc in documents]
    write_bytes_atomic(path, b"".join(encoded))
    return len(encoded)


class MxSpaceExporter:
    """Builds the MxSpace collections in memory and dumps them as BSON.

    ObjectIds are assigned up front so posts can point at categories and
    comments at posts, parents and children.
    """

    def __init__(self, out_dir: str | Path, log: structlog.stdlib.BoundLogger | None = None) -> None:
        self.out_dir = Path(out_dir)
        self.log = log or structlog.get_logger(__name__)

    def export(
        self,
        posts: Sequence[ContentRecord],
        pages: Sequence[ContentRecord],
        categories: Sequence[TaxonomyTerm],
        comments: Iterable[CommentRecord],
        now: datetime | None = None,
    ) -> ExportSummary:
        now = now or datetime.now(UTC)
        category_ids = {term.name: ObjectId() for term in categories}
        category_docs = [
            {"_id": category_ids[term.name], "name": term.name, "slug": term.slug, "type": 0, "created": now}
            for term in categories
        ]

        content_ids: dict[int, ObjectId] = {}
        ref_types: dict[str, str] = {}
        for record in [*posts, *pages]:
            content_ids[record.id] = ObjectId()
            ref_types[str(content_ids[record.id])] = REF_TYPES[record.kind]

        comments = list(comments)
        comment_ids = {c.local_id: ObjectId() for c in comments}
        result = rebuild(
            comments,
            {cid: str(oid) for cid, oid in content_ids.items()},
            comment_refs={coid: str(oid) for coid, oid in comment_ids.items()},
            log=self.log,
        )
        children = children_of(result.threads)
        comment_counts: dict[int, int] = {}
        for threaded in result.threads:
            comment_counts[threaded.comment.content_id] = comment_counts.get(threaded.comment.content_id, 0) + 1

        post_docs = [self._post_doc(p, content_ids[p.id], category_ids, comment_counts.get(p.id, 0)) for p in posts]
        page_docs = [self._page_doc(p, content_ids[p.id], order) for order, p in enumerate(pages)]
        comment_docs = [self._comment_doc(t, comment_ids, children, ref_types) for t in result.threads]

        written = {
            "categories": write_bson(self.out_dir / "categories.bson", category_docs),
            "posts": write_bson(self.out_dir / "posts.bson", post_docs),
            "pages": write_bson(self.out_dir / "pages.bson", page_docs),
            "comments": write_bson(self.out_dir / "comments.bson", comment_docs),
        }
        self.log.info("mxspace.exported", out_dir=str(self.out_dir), dropped=len(result.dropped), **written)
        return ExportSummary(name="MxSpace export", out=str(self.out_dir), written=written, dropped=len(result.dropped))

    def _post_doc(
        self,
        post: ContentRecord,
        oid: ObjectId,
        category_ids: Mapping[str, ObjectId],
        comment_count: int,
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "_id": oid,
            "created": post.created_at,
            "modified": post.modified_at,
            "title": post.title,
            "text": post.body,
            "slug": post.slug,
            "tags": list(post.tags),
            "allowComment": True,
            "isPublished": post.status == ContentStatus.PUBLISH,
            "images": _images(post.body),
            "count": {"read": 0, "like": 0},
            "commentsIndex": comment_count,
        }
        if post.primary_category in category_ids:
            doc["categoryId"] = category_ids[post.primary_category]
        return doc

    def _page_doc(self, page: ContentRecord, oid: ObjectId, order: int) -> dict[str, Any]:
        return {
            "_id": oid,
            "created": page.created_at,
            "modified": page.modified_at,
            "title": page.title,
            "text": page.body,
            "slug": page.slug,
            "allowComment": True,
            "images": _images(page.body),
            "order": order,
        }

    def _comment_doc(
        self,
        threaded: ThreadedComment,
        comment_ids: Mapping[int, ObjectId],
        children: Mapping[int, list[int]],
        ref_types: Mapping[str, str],
    ) -> dict[str, Any]:
        comment = threaded.comment
        doc: dict[str, Any] = {
            "_id": comment_ids[comment.local_id],
            "ref": ObjectId(threaded.content_ref),
            "refType": ref_types[threaded.content_ref],
            "author": comment.author,
            "mail": comment.author_email,
            "url": comment.author_url,
            "text": comment.body,
            "ip": comment.author_ip,
            "agent": comment.agent,
            "state": COMMENT_APPROVED,
            "key": threaded.key,
            "children": [comment_ids[child] for child in children.get(comment.local_id, [])],
            "created": comment.created_at,
        }
        if threaded.parent_ref:
            doc["parent"] = ObjectId(threaded.parent_ref)
        return doc


def _remote_id(data: Mapping[str, Any]) -> str:
    remote_id = data.get("_id") or data.get("id")
    if not remote_id:
        raise DestinationError(f"MxSpace response carries no id: {dict(data)}")
    return str(remote_id)


class MxSpaceClient:
    """Thin client over the MxSpace admin REST API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        proxy_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.client = create_http_client(
            base_url=api_url.rstrip("/"),
            timeout=timeout,
            proxy_url=proxy_url,
            transport=transport,
            user_agent="typecho-migrator",
            headers={"Authorization": f"bearer {api_key}", "Content-Type": "application/json"},
        )
        self.log = log or structlog.get_logger(__name__)
        self._categories: dict[str, str] | None = None

    def close(self) -> None:
        self.client.close()

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return request_json(self.client, method, path, label="MxSpace", **kwargs)

    def categories(self) -> dict[str, str]:
        """Category name -> id."""
        res = self._call("GET", "/categories")
        data = res.get("data", res) if isinstance(res, dict) else res
        return {cat["name"]: _remote_id(cat) for cat in (data if isinstance(data, list) else [])}

    def ensure_category(self, name: str, slug: str | None = None) -> str:
        if self._categories is None:
            self._categories = self.categories()
        if name not in self._categories:
            res = self._call("POST", "/categories", json={"name": name, "slug": slug or name, "type": 0})
            self._categories[name] = _remote_id(res)
            self.log.info("mxspace.category_created", name=name, id=self._categories[name])
        return self._categories[name]

    def query_existing(self, kind: ContentKind) -> dict[str, IdentityEntry]:
        """Slug -> identity for every post or page, paging until ``hasNextPage`` is false."""
        existing: dict[str, IdentityEntry] = {}
        page = 1
        while True:
            res = self._call("GET", f"/{kind}s", params={"page": page, "size": PAGE_SIZE})
            for item in res.get("data", []):
                existing[item["slug"]] = IdentityEntry(
                    remote_id=_remote_id(item),
                    modified_at=item.get("modified") or item.get("created"),
                )
            if not (res.get("pagination") or {}).get("hasNextPage"):
                break
            page += 1
        self.log.info("mxspace.existing_loaded", kind=str(kind), count=len(existing))
        return existing

    def _body(self, record: ContentRecord, order: int | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "title": record.title,
            "text": record.body,
            "slug": record.slug,
            "allowComment": True,
            "created": to_iso(record.created_at),
            "modified": to_iso(record.modified_at),
        }
        if record.kind == ContentKind.POST:
            body["categoryId"] = self.ensure_category(record.primary_category or DEFAULT_CATEGORY)
            body["tags"] = list(record.tags)
            body["isPublished"] = record.status == ContentStatus.PUBLISH
        elif order is not None:
            body["order"] = order
        return body

    def create(self, record: ContentRecord, order: int | None = None) -> str:
        return _remote_id(self._call("POST", f"/{record.kind}s", json=self._body(record, order)))

    def update(self, remote_id: str, record: ContentRecord, order: int | None = None) -> None:
        self._call("PUT", f"/{record.kind}s/{remote_id}", json=self._body(record, order))

    @staticmethod
    def _comment_body(comment: CommentRecord) -> dict[str, Any]:
        return {
            "author": comment.author,
            "mail": comment.author_email,
            "url": comment.author_url,
            "text": comment.body,
            "isWhispers": False,
        }

    def create_comment(self, ref_id: str, ref_type: str, comment: CommentRecord) -> str:
        res = self._call("POST", f"/comments/{ref_type.lower()}/{ref_id}", json=self._comment_body(comment))
        return _remote_id(res)

    def reply_comment(self, parent_id: str, comment: CommentRecord) -> str:
        return _remote_id(self._call("POST", f"/comments/reply/{parent_id}", json=self._comment_body(comment)))


class MxSpaceDestination:
    """Adapts ``MxSpaceClient`` to the sync loop for one content kind.

    Args:
        client: Configured API client.
        content_kind: Posts or pages.
        orders: Page ``cid`` -> display order.
    """

    kind = DestinationKind.MXSPACE
    key_field = "slug"

    def __init__(self, client: MxSpaceClient, content_kind: ContentKind, orders: Mapping[int, int] | None = None) -> None:
        self.client = client
        self.content_kind = content_kind
        self.orders = dict(orders or {})

    def query_existing(self) -> dict[str, IdentityEntry]:
        return self.client.query_existing(self.content_kind)

    def create(self, record: ContentRecord) -> str:
        return self.client.create(record, self.orders.get(record.id))

    def update(self, remote_id: str, record: ContentRecord) -> None:
        self.client.update(remote_id, record, self.orders.get(record.id))


class MxSpaceCommentWriter:
    """Posts rebuilt threads through the API; ``ref_types`` maps content ref -> ``Post``/``Page``."""

    def __init__(self, client: MxSpaceClient, ref_types: Mapping[str, str]) -> None:
        self.client = client
        self.ref_types = ref_types

    def create_comment(self, threaded: ThreadedComment) -> str:
        return self.client.create_comment(threaded.content_ref, self.ref_types[threaded.content_ref], threaded.comment)

    def reply_comment(self, parent_remote_id: str, threaded: ThreadedComment) -> str:
        return self.client.reply_comment(parent_remote_id, threaded.comment)
