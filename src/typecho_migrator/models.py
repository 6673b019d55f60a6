"""Pydantic models for source snapshots and destination identities."""

from __future__ import annotations

import hashlib
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from typecho_migrator.statuses import ContentKind, ContentStatus, DropReason, TermKind
from typecho_migrator.utils.db import parse_instant
from typecho_migrator.utils.urls import normalize_url


def link_fingerprint(name: str, category: str, image: str, description: str, order: int) -> str:
    """Digest of the mutable link fields; links carry no modification time."""
    payload = "\x1f".join([name, category, image, description, str(order)])
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


class ContentRecord(BaseModel):
    """Immutable snapshot of one Typecho post or page."""

    id: int
    title: str
    slug: str
    created_at: datetime
    modified_at: datetime
    body: str = ""
    status: ContentStatus = ContentStatus.PUBLISH
    kind: ContentKind = ContentKind.POST
    categories: list[str] = []
    tags: list[str] = []

    model_config = {"frozen": True}

    @field_validator("created_at", "modified_at", mode="before")
    @classmethod
    def _to_utc(cls, value):
        return parse_instant(value)

    @property
    def primary_category(self) -> str | None:
        return self.categories[0] if self.categories else None


class TaxonomyTerm(BaseModel):
    id: int
    name: str
    slug: str
    kind: TermKind
    description: str = ""
    count: int = 0
    order: int = 0

    model_config = {"frozen": True}


class LinkRecord(BaseModel):
    """A friend-link row from the handsome theme's links table."""

    id: int
    name: str
    url: str
    category: str = ""
    image: str = ""
    description: str = ""
    user: str = ""
    order: int = 0

    model_config = {"frozen": True}

    @property
    def identity(self) -> str:
        return normalize_url(self.url) or self.url.strip()

    @property
    def fingerprint(self) -> str:
        return link_fingerprint(self.name, self.category, self.image, self.description, self.order)


class CommentRecord(BaseModel):
    """One approved comment. ``parent_id == 0`` marks a top-level comment."""

    local_id: int
    content_id: int
    parent_id: int = 0
    created_at: datetime
    author: str = "Anonymous"
    author_email: str = ""
    author_url: str = ""
    author_ip: str = ""
    agent: str = ""
    body: str = ""
    approval_status: str = "approved"

    model_config = {"frozen": True}

    @field_validator("created_at", mode="before")
    @classmethod
    def _to_utc(cls, value):
        return parse_instant(value)

    @property
    def is_reply(self) -> bool:
        return bool(self.parent_id)


class IdentityEntry(BaseModel):
    """What the destination already holds for one natural key."""

    remote_id: str
    modified_at: datetime | None = None
    fingerprint: str | None = None

    model_config = {"frozen": True}

    @field_validator("modified_at", mode="before")
    @classmethod
    def _to_utc(cls, value):
        return parse_instant(value)


DestinationIdentity = dict[str, IdentityEntry]


class ThreadedComment(BaseModel):
    """A comment placed in its thread, ready for emission."""

    comment: CommentRecord
    key: str
    depth: int
    content_ref: str
    parent_ref: str | None = None

    model_config = {"frozen": True}


class DroppedComment(BaseModel):
    comment: CommentRecord
    reason: DropReason
    detail: str

    model_config = {"frozen": True}


class ThreadRebuild(BaseModel):
    """Output of the thread rebuilder: emitted threads plus drops with reasons."""

    threads: list[ThreadedComment] = Field(default_factory=list)
    dropped: list[DroppedComment] = Field(default_factory=list)

    @property
    def unresolved_content(self) -> int:
        return sum(1 for d in self.dropped if d.reason == DropReason.UNRESOLVED_CONTENT)

    @property
    def orphaned(self) -> int:
        return sum(1 for d in self.dropped if d.reason == DropReason.ORPHANED)

    def keys(self) -> dict[int, str]:
        """Map of comment ``local_id`` to its thread key."""
        return {t.comment.local_id: t.key for t in self.threads}
