"""Typecho table definitions (SQLAlchemy Core) and engine helpers.

Typecho installs its tables under a configurable prefix, so the schema is
built per prefix rather than declared once at import time.
"""

from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa

from typecho_migrator.utils.db import get_engine, now_iso

__all__ = ["TypechoSchema", "typecho_tables", "get_engine", "now_iso"]


@dataclass(frozen=True)
class TypechoSchema:
    metadata: sa.MetaData
    contents: sa.Table
    metas: sa.Table
    relationships: sa.Table
    comments: sa.Table
    links: sa.Table


def typecho_tables(prefix: str = "typecho_") -> TypechoSchema:
    """Build the subset of the Typecho schema the migrator reads."""
    metadata = sa.MetaData()

    contents = sa.Table(
        f"{prefix}contents",
        metadata,
        sa.Column("cid", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(150)),
        sa.Column("slug", sa.String(150)),
        sa.Column("created", sa.Integer, server_default="0"),
        sa.Column("modified", sa.Integer, server_default="0"),
        sa.Column("text", sa.Text),
        sa.Column("order", sa.Integer, server_default="0"),
        sa.Column("authorId", sa.Integer, server_default="0"),
        sa.Column("type", sa.String(16), server_default="post"),
        sa.Column("status", sa.String(16), server_default="publish"),
        sa.Column("commentsNum", sa.Integer, server_default="0"),
        sa.Column("parent", sa.Integer, server_default="0"),
    )

    metas = sa.Table(
        f"{prefix}metas",
        metadata,
        sa.Column("mid", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(150)),
        sa.Column("slug", sa.String(150)),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("description", sa.String(150)),
        sa.Column("count", sa.Integer, server_default="0"),
        sa.Column("order", sa.Integer, server_default="0"),
        sa.Column("parent", sa.Integer, server_default="0"),
    )

    relationships = sa.Table(
        f"{prefix}relationships",
        metadata,
        sa.Column("cid", sa.Integer, primary_key=True),
        sa.Column("mid", sa.Integer, primary_key=True),
    )

    comments = sa.Table(
        f"{prefix}comments",
        metadata,
        sa.Column("coid", sa.Integer, primary_key=True),
        sa.Column("cid", sa.Integer, server_default="0"),
        sa.Column("created", sa.Integer, server_default="0"),
        sa.Column("author", sa.String(150)),
        sa.Column("authorId", sa.Integer, server_default="0"),
        sa.Column("ownerId", sa.Integer, server_default="0"),
        sa.Column("mail", sa.String(150)),
        sa.Column("url", sa.String(255)),
        sa.Column("ip", sa.String(64)),
        sa.Column("agent", sa.String(511)),
        sa.Column("text", sa.Text),
        sa.Column("type", sa.String(16), server_default="comment"),
        sa.Column("status", sa.String(16), server_default="approved"),
        sa.Column("parent", sa.Integer, server_default="0"),
    )

    # handsome theme
    links = sa.Table(
        f"{prefix}links",
        metadata,
        sa.Column("lid", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(150)),
        sa.Column("url", sa.String(255)),
        sa.Column("sort", sa.String(150)),
        sa.Column("image", sa.String(255)),
        sa.Column("description", sa.String(255)),
        sa.Column("user", sa.String(255)),
        sa.Column("order", sa.Integer, server_default="0"),
    )

    sa.Index(f"idx_{prefix}comments_cid", comments.c.cid)
    sa.Index(f"idx_{prefix}contents_slug", contents.c.slug)

    return TypechoSchema(
        metadata=metadata,
        contents=contents,
        metas=metas,
        relationships=relationships,
        comments=comments,
        links=links,
    )
