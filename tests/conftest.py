"""Shared test fixtures: an in-memory Typecho database and seeding helpers."""

from __future__ import annotations

import pytest
import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from typecho_migrator.db import TypechoSchema, typecho_tables


class TypechoSeeder:
    """Insert Typecho rows with sensible defaults."""

    def __init__(self, engine: sa.engine.Engine, schema: TypechoSchema) -> None:
        self.engine = engine
        self.schema = schema

    def _insert(self, table: sa.Table, **values) -> None:
        with self.engine.begin() as conn:
            conn.execute(table.insert().values(**values))

    def content(self, cid: int, slug: str, *, type: str = "post", created: int = 1_700_000_000, modified: int | None = None, **values):
        self._insert(
            self.schema.contents,
            cid=cid,
            slug=slug,
            title=values.pop("title", slug.title()),
            type=type,
            created=created,
            modified=modified if modified is not None else created,
            text=values.pop("text", f"<!--markdown-->Body of {slug}"),
            status=values.pop("status", "publish"),
            **values,
        )

    def meta(self, mid: int, name: str, *, type: str = "category", order: int = 0, **values):
        self._insert(self.schema.metas, mid=mid, name=name, slug=values.pop("slug", name.lower()), type=type, order=order, **values)

    def relate(self, cid: int, mid: int):
        self._insert(self.schema.relationships, cid=cid, mid=mid)

    def comment(self, coid: int, cid: int, *, parent: int = 0, created: int = 1_700_000_100, **values):
        self._insert(
            self.schema.comments,
            coid=coid,
            cid=cid,
            parent=parent,
            created=created,
            author=values.pop("author", f"user{coid}"),
            mail=values.pop("mail", f"user{coid}@example.com"),
            text=values.pop("text", f"comment {coid}"),
            type=values.pop("type", "comment"),
            status=values.pop("status", "approved"),
            **values,
        )

    def link(self, lid: int, name: str, url: str, **values):
        self._insert(self.schema.links, lid=lid, name=name, url=url, **values)


@pytest.fixture
def schema() -> TypechoSchema:
    return typecho_tables("typecho_")


@pytest.fixture
def engine(schema):
    """In-memory SQLite engine shared across connections."""
    eng = sa.create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    schema.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def seed(engine, schema) -> TypechoSeeder:
    return TypechoSeeder(engine, schema)
