"""Status enumerations shared by the repository, engine and destinations."""

from __future__ import annotations

from enum import StrEnum


class ContentKind(StrEnum):
    """Typecho ``contents.type`` values the migrator reads."""
    POST = "post"
    PAGE = "page"


class ContentStatus(StrEnum):
    """Typecho publication status, carried through unchanged."""
    PUBLISH = "publish"
    DRAFT = "draft"
    HIDDEN = "hidden"
    WAITING = "waiting"
    PRIVATE = "private"


class TermKind(StrEnum):
    CATEGORY = "category"
    TAG = "tag"


class SyncAction(StrEnum):
    """Reconciliation decision for one source record."""
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class DestinationKind(StrEnum):
    NOTION = "notion"
    MARKDOWN = "markdown"
    REMARK42 = "remark42"
    MXSPACE = "mxspace"


class DropReason(StrEnum):
    """Why the thread rebuilder left a comment out."""
    UNRESOLVED_CONTENT = "unresolved_content"
    ORPHANED = "orphaned"
