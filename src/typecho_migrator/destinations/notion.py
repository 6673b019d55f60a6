"""Notion databases as sync destinations (posts and friend links).

Talks to the public REST API directly over httpx. Each database page holds
its natural key in a property (``Slug`` for content, ``URL`` for links) and
``query_existing`` pages through the database to build the identity map.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from typecho_migrator.blocks import chunked, markdown_to_blocks
from typecho_migrator.destinations.base import request_json
from typecho_migrator.models import ContentRecord, IdentityEntry, LinkRecord, link_fingerprint
from typecho_migrator.statuses import ContentStatus, DestinationKind
from typecho_migrator.utils.db import to_iso
from typecho_migrator.utils.http import create_http_client
from typecho_migrator.utils.urls import normalize_url

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
PAGE_SIZE = 100

_STATUS_COLORS = {
    ContentStatus.PUBLISH: "green",
    ContentStatus.DRAFT: "yellow",
    ContentStatus.HIDDEN: "gray",
    ContentStatus.WAITING: "orange",
    ContentStatus.PRIVATE: "red",
}

CONTENT_PROPERTIES: dict[str, dict[str, Any]] = {
    "Slug": {"rich_text": {}},
    "Cid": {"number": {}},
    "Category": {"multi_select": {}},
    "Tags": {"multi_select": {}},
    "Status": {"select": {"options": [{"name": str(s), "color": c} for s, c in _STATUS_COLORS.items()]}},
    "Created": {"date": {}},
    "Modified": {"date": {}},
}

LINK_PROPERTIES: dict[str, dict[str, Any]] = {
    "URL": {"url": {}},
    "Category": {"select": {}},
    "Description": {"rich_text": {}},
    "Avatar": {"url": {}},
    "Order": {"number": {}},
}


def create_notion_client(
    api_key: str,
    *,
    timeout: float = 30.0,
    proxy_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return create_http_client(
        base_url=NOTION_API_URL,
        timeout=timeout,
        proxy_url=proxy_url,
        transport=transport,
        user_agent="typecho-migrator",
        headers={
            "Authorization": f"Bearer {api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        },
    )


def _plain_text(prop: dict[str, Any] | None) -> str:
    if not prop:
        return ""
    items = prop.get(prop.get("type", ""), None)
    if not isinstance(items, list):
        return ""
    return "".join(item.get("plain_text", "") for item in items)


def _text(content: str) -> list[dict[str, Any]]:
    return [{"text": {"content": content[:2000]}}] if content else []


class _NotionDatabase:
    """Shared plumbing for one Notion database."""

    required_properties: dict[str, dict[str, Any]] = {}

    def __init__(self, client: httpx.Client, database_id: str, log: structlog.stdlib.BoundLogger) -> None:
        self.client = client
        self.database_id = database_id
        self.log = log
        self.title_property = "Name"

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return request_json(self.client, method, path, label="Notion", **kwargs)

    def ensure_database_properties(self, *, create_missing: bool = True) -> list[str]:
        """Discover the title property and add any missing required property.

        With ``create_missing=False`` (dry runs) the database is only read.
        Returns the names of the missing properties.
        """
        database = self._call("GET", f"/databases/{self.database_id}")
        existing = database.get("properties", {})

        for name, prop in existing.items():
            if prop.get("type") == "title":
                self.title_property = name
                break
        self.log.info("notion.title_property", name=self.title_property)

        missing = {name: spec for name, spec in self.required_properties.items() if name not in existing}
        if missing and create_missing:
            self._call("PATCH", f"/databases/{self.database_id}", json={"properties": missing})
            self.log.info("notion.properties_created", properties=sorted(missing))
        elif missing:
            self.log.info("notion.properties_missing", properties=sorted(missing))
        return sorted(missing)

    def _iter_pages(self):
        cursor = None
        while True:
            body: dict[str, Any] = {"page_size": PAGE_SIZE}
            if cursor:
                body["start_cursor"] = cursor
            data = self._call("POST", f"/databases/{self.database_id}/query", json=body)
            yield from data.get("results", [])
            if not data.get("has_more"):
                return
            cursor = data.get("next_cursor")

    def _create_page(self, properties: dict[str, Any], blocks: list[dict[str, Any]] | None = None) -> str:
        blocks = blocks or []
        body: dict[str, Any] = {"parent": {"database_id": self.database_id}, "properties": properties}
        if blocks:
            body["children"] = blocks[:PAGE_SIZE]
        page = self._call("POST", "/pages", json=body)
        page_id = page["id"]
        for chunk in chunked(blocks[PAGE_SIZE:], PAGE_SIZE):
            self._call("PATCH", f"/blocks/{page_id}/children", json={"children": chunk})
        return page_id

    def _update_page(self, page_id: str, properties: dict[str, Any]) -> None:
        self._call("PATCH", f"/pages/{page_id}", json={"properties": properties})


class NotionDestination(_NotionDatabase):
    """Posts and pages in a Notion database, keyed by slug."""

    kind = DestinationKind.NOTION
    key_field = "slug"
    required_properties = CONTENT_PROPERTIES

    def query_existing(self) -> dict[str, IdentityEntry]:
        existing: dict[str, IdentityEntry] = {}
        for page in self._iter_pages():
            props = page.get("properties", {})
            slug = _plain_text(props.get("Slug"))
            if not slug:
                continue
            modified = (props.get("Modified") or {}).get("date") or {}
            existing[slug] = IdentityEntry(remote_id=page["id"], modified_at=modified.get("start"))
        self.log.info("notion.existing_loaded", pages=len(existing))
        return existing

    def build_properties(self, record: ContentRecord) -> dict[str, Any]:
        return {
            self.title_property: {"title": _text(record.title)},
            "Slug": {"rich_text": _text(record.slug)},
            "Cid": {"number": record.id},
            "Category": {"multi_select": [{"name": name} for name in record.categories]},
            "Tags": {"multi_select": [{"name": name} for name in record.tags]},
            "Status": {"select": {"name": str(record.status)}},
            "Created": {"date": {"start": to_iso(record.created_at)}},
            "Modified": {"date": {"start": to_iso(record.modified_at)}},
        }

    def create(self, record: ContentRecord) -> str:
        return self._create_page(self.build_properties(record), markdown_to_blocks(record.body))

    def update(self, remote_id: str, record: ContentRecord) -> None:
        self._update_page(remote_id, self.build_properties(record))
        self.replace_content(remote_id, record.body)

    def replace_content(self, page_id: str, body: str) -> None:
        """Delete every child block of the page, then append *body* as new blocks."""
        for block_id in self._child_block_ids(page_id):
            self._call("DELETE", f"/blocks/{block_id}")
        for chunk in chunked(markdown_to_blocks(body), PAGE_SIZE):
            self._call("PATCH", f"/blocks/{page_id}/children", json={"children": chunk})

    def _child_block_ids(self, page_id: str) -> list[str]:
        ids: list[str] = []
        cursor = None
        while True:
            params: dict[str, Any] = {"page_size": PAGE_SIZE}
            if cursor:
                params["start_cursor"] = cursor
            data = self._call("GET", f"/blocks/{page_id}/children", params=params)
            ids.extend(block["id"] for block in data.get("results", []))
            if not data.get("has_more"):
                return ids
            cursor = data.get("next_cursor")


def link_key(record: LinkRecord) -> str:
    return record.identity


class NotionLinksDestination(_NotionDatabase):
    """Friend links in a Notion database, keyed by normalized URL.

    Links have no modification time; the identity entry carries a
    fingerprint of the mutable fields instead.
    """

    kind = DestinationKind.NOTION
    key_field = "url"
    required_properties = LINK_PROPERTIES

    def query_existing(self) -> dict[str, IdentityEntry]:
        existing: dict[str, IdentityEntry] = {}
        for page in self._iter_pages():
            props = page.get("properties", {})
            url = (props.get("URL") or {}).get("url") or ""
            key = normalize_url(url) or url.strip()
            if not key:
                continue
            category = ((props.get("Category") or {}).get("select") or {}).get("name", "")
            fingerprint = link_fingerprint(
                _plain_text(props.get(self.title_property)),
                category,
                (props.get("Avatar") or {}).get("url") or "",
                _plain_text(props.get("Description")),
                int((props.get("Order") or {}).get("number") or 0),
            )
            existing[key] = IdentityEntry(remote_id=page["id"], fingerprint=fingerprint)
        self.log.info("notion.existing_links_loaded", links=len(existing))
        return existing

    def build_properties(self, record: LinkRecord) -> dict[str, Any]:
        return {
            self.title_property: {"title": _text(record.name)},
            "URL": {"url": record.url or None},
            "Category": {"select": {"name": record.category} if record.category else None},
            "Description": {"rich_text": _text(record.description)},
            "Avatar": {"url": record.image or None},
            "Order": {"number": record.order},
        }

    def create(self, record: LinkRecord) -> str:
        return self._create_page(self.build_properties(record))

    def update(self, remote_id: str, record: LinkRecord) -> None:
        self._update_page(remote_id, self.build_properties(record))
