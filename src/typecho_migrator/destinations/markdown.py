"""Markdown files with YAML front matter as a sync destination.

Each record becomes ``<out_dir>/<posts|pages>/<slug>.md`` (suffixed with the
cid when two slugs sanitize to the same name). The front matter
carries the slug and the modification instant, so the existing files are
their own identity map.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import structlog
import yaml

from typecho_migrator.models import ContentRecord, IdentityEntry
from typecho_migrator.statuses import ContentKind, DestinationKind
from typecho_migrator.utils.db import to_iso
from typecho_migrator.utils.files import write_text_atomic
from typecho_migrator.verify import clean_images

_FRONT_MATTER = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n?", re.DOTALL)
_UNSAFE_FILENAME = re.compile(r"[\\/:*?\"<>|\s]+")

_SUBDIRS = {ContentKind.POST: "posts", ContentKind.PAGE: "pages"}


def safe_filename(slug: str) -> str:
    return _UNSAFE_FILENAME.sub("-", slug).strip("-.") or "untitled"


def render_markdown(record: ContentRecord) -> str:
    front_matter = {
        "title": record.title,
        "slug": record.slug,
        "date": to_iso(record.created_at),
        "updated": to_iso(record.modified_at),
        "categories": list(record.categories),
        "tags": list(record.tags),
        "status": str(record.status),
        "cid": record.id,
    }
    header = yaml.safe_dump(front_matter, allow_unicode=True, sort_keys=False, default_flow_style=False)
    return f"---\n{header}---\n\n{record.body}\n"


def parse_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split a Markdown document into its front matter mapping and body.

    Raises ``ValueError`` when there is no front matter block or it is not a
    YAML mapping.
    """
    match = _FRONT_MATTER.match(text)
    if not match:
        raise ValueError("no front matter block")
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("front matter is not a mapping")
    return data, text[match.end() :].lstrip("\n")


class MarkdownDestination:
    """Writes one Markdown file per record of one content kind.

    Args:
        out_dir: Export root; files land in ``posts/`` or ``pages/`` under it.
        log: Structured logger.
        kind: Which content kind this destination holds.
        check_images: Strip image references that fail a liveness check.
    """

    kind = DestinationKind.MARKDOWN
    key_field = "slug"

    def __init__(
        self,
        out_dir: str | Path,
        log: structlog.stdlib.BoundLogger,
        *,
        content_kind: ContentKind = ContentKind.POST,
        check_images: bool = False,
        image_timeout: float = 30.0,
        proxy_url: str | None = None,
    ) -> None:
        self.directory = Path(out_dir) / _SUBDIRS[content_kind]
        self.log = log
        self.check_images = check_images
        self.image_timeout = image_timeout
        self.proxy_url = proxy_url

    def query_existing(self) -> dict[str, IdentityEntry]:
        existing: dict[str, IdentityEntry] = {}
        if not self.directory.is_dir():
            return existing

        for path in sorted(self.directory.glob("*.md")):
            try:
                data, _ = parse_front_matter(path.read_text(encoding="utf-8"))
                slug = str(data["slug"])
                existing[slug] = IdentityEntry(remote_id=str(path), modified_at=data.get("updated"))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                self.log.warning("markdown.unparseable", path=str(path), error=str(exc))
        self.log.info("markdown.existing_loaded", directory=str(self.directory), files=len(existing))
        return existing

    def path_for(self, record: ContentRecord) -> Path:
        """File for *record*; ``<name>-<cid>.md`` when another slug already owns ``<name>.md``."""
        name = safe_filename(record.slug)
        path = self.directory / f"{name}.md"
        owner = self._owner(path)
        if owner is None or owner == record.slug:
            return path
        self.log.info("markdown.filename_taken", slug=record.slug, path=str(path), owner=owner)
        return self.directory / f"{name}-{record.id}.md"

    def _owner(self, path: Path) -> str | None:
        """Slug recorded in an existing file, ``""`` when the file cannot be read."""
        if not path.exists():
            return None
        try:
            data, _ = parse_front_matter(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return ""
        return str(data.get("slug", ""))

    def create(self, record: ContentRecord) -> str:
        path = self.path_for(record)
        self._write(path, record)
        return str(path)

    def update(self, remote_id: str, record: ContentRecord) -> None:
        self._write(Path(remote_id), record)

    def _write(self, path: Path, record: ContentRecord) -> None:
        if self.check_images:
            cleaned = clean_images(record.body, timeout=self.image_timeout, proxy_url=self.proxy_url, log=self.log)
            if cleaned.removed:
                self.log.info("markdown.images_removed", slug=record.slug, removed=cleaned.removed, checked=cleaned.checked)
            record = record.model_copy(update={"body": cleaned.content})
        write_text_atomic(path, render_markdown(record))
