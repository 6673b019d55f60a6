"""Read-only access to a Typecho database as typed records."""

from __future__ import annotations

import re
from collections import defaultdict

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from typecho_migrator.db import typecho_tables
from typecho_migrator.errors import SourceError
from typecho_migrator.models import CommentRecord, ContentRecord, LinkRecord, TaxonomyTerm
from typecho_migrator.statuses import ContentKind, ContentStatus, TermKind

_MARKDOWN_SENTINEL = re.compile(r"<!--markdown-->", re.IGNORECASE)


def clean_content(text: str | None) -> str:
    """Strip Typecho's ``<!--markdown-->`` marker and surrounding whitespace."""
    return _MARKDOWN_SENTINEL.sub("", text or "").strip()


def _status(value: str | None) -> ContentStatus:
    try:
        return ContentStatus(value or ContentStatus.PUBLISH)
    except ValueError:
        # Unknown plugin statuses are kept private rather than published
        return ContentStatus.PRIVATE


class TypechoRepository:
    """Typed, denormalized reads over the Typecho tables.

    Args:
        engine: SQLAlchemy engine bound to the Typecho database.
        prefix: Table prefix chosen at Typecho install time.
    """

    def __init__(self, engine: sa.engine.Engine, prefix: str = "typecho_") -> None:
        self.engine = engine
        self.schema = typecho_tables(prefix)

    def check_connection(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(sa.text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise SourceError(f"Cannot connect to Typecho database: {exc}") from exc

    # -- Content ---------------------------------------------------------------

    def list_posts(self) -> list[ContentRecord]:
        return self.list_content(ContentKind.POST)

    def list_pages(self) -> list[ContentRecord]:
        return self.list_content(ContentKind.PAGE)

    def list_content(self, kind: ContentKind) -> list[ContentRecord]:
        """All contents of *kind*, newest first, with category and tag names attached."""
        c = self.schema.contents
        m = self.schema.metas
        r = self.schema.relationships

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    sa.select(c.c.cid, c.c.title, c.c.slug, c.c.created, c.c.modified, c.c.text, c.c.status, c.c.type)
                    .where(c.c.type == str(kind))
                    .order_by(c.c.created.desc(), c.c.cid.desc())
                ).fetchall()

                term_rows = conn.execute(
                    sa.select(r.c.cid, m.c.name, m.c.type)
                    .join(m, m.c.mid == r.c.mid)
                    .join(c, c.c.cid == r.c.cid)
                    .where(c.c.type == str(kind))
                    .order_by(r.c.cid, m.c.order, m.c.mid)
                ).fetchall()
        except SQLAlchemyError as exc:
            raise SourceError(f"Failed to read {kind} contents: {exc}") from exc

        categories: dict[int, list[str]] = defaultdict(list)
        tags: dict[int, list[str]] = defaultdict(list)
        for row in term_rows:
            bucket = categories if row.type == TermKind.CATEGORY else tags if row.type == TermKind.TAG else None
            if bucket is not None and row.name and row.name not in bucket[row.cid]:
                bucket[row.cid].append(row.name)

        return [
            ContentRecord(
                id=row.cid,
                title=row.title or "",
                slug=row.slug or str(row.cid),
                created_at=row.created or 0,
                modified_at=row.modified or row.created or 0,
                body=clean_content(row.text),
                status=_status(row.status),
                kind=kind,
                categories=categories.get(row.cid, []),
                tags=tags.get(row.cid, []),
            )
            for row in rows
        ]

    # -- Taxonomy --------------------------------------------------------------

    def list_taxonomy_terms(self, kind: TermKind) -> list[TaxonomyTerm]:
        m = self.schema.metas
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    sa.select(m.c.mid, m.c.name, m.c.slug, m.c.type, m.c.description, m.c.count.label("term_count"), m.c.order)
                    .where(m.c.type == str(kind))
                    .order_by(m.c.order.asc(), m.c.mid.asc())
                ).fetchall()
        except SQLAlchemyError as exc:
            raise SourceError(f"Failed to read {kind} terms: {exc}") from exc

        return [
            TaxonomyTerm(
                id=row.mid,
                name=row.name or "",
                slug=row.slug or "",
                kind=kind,
                description=row.description or "",
                count=row.term_count or 0,
                order=row.order or 0,
            )
            for row in rows
        ]

    def list_categories(self) -> list[TaxonomyTerm]:
        return self.list_taxonomy_terms(TermKind.CATEGORY)

    # -- Comments --------------------------------------------------------------

    def list_comments(self) -> list[CommentRecord]:
        """Approved, plain comments (no pingbacks/trackbacks), oldest first."""
        cm = self.schema.comments
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    sa.select(cm)
                    .where(cm.c.status == "approved", cm.c.type == "comment")
                    .order_by(cm.c.created.asc(), cm.c.coid.asc())
                ).fetchall()
        except SQLAlchemyError as exc:
            raise SourceError(f"Failed to read comments: {exc}") from exc

        return [
            CommentRecord(
                local_id=row.coid,
                content_id=row.cid or 0,
                parent_id=row.parent or 0,
                created_at=row.created or 0,
                author=row.author or "Anonymous",
                author_email=row.mail or "",
                author_url=row.url or "",
                author_ip=row.ip or "",
                agent=row.agent or "",
                body=row.text or "",
                approval_status=row.status or "approved",
            )
            for row in rows
        ]

    # -- Links -----------------------------------------------------------------

    def list_links(self) -> list[LinkRecord]:
        lk = self.schema.links
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(sa.select(lk).order_by(lk.c.order.asc(), lk.c.lid.asc())).fetchall()
        except SQLAlchemyError as exc:
            raise SourceError(f"Failed to read links: {exc}") from exc

        return [
            LinkRecord(
                id=row.lid,
                name=row.name or "",
                url=row.url or "",
                category=row.sort or "",
                image=row.image or "",
                description=row.description or "",
                user=row.user or "",
                order=row.order or 0,
            )
            for row in rows
        ]
