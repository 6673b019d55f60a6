"""Acceptance tests for the CLI commands."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock, patch

import bson
import pytest
import sqlalchemy as sa
import structlog
from click.testing import CliRunner

from typecho_migrator.cli import cli
from typecho_migrator.errors import DestinationError
from typecho_migrator.verify import MappingFailure, MappingReport


@pytest.fixture
def env(tmp_path, monkeypatch):
    values = {
        "TYPECHO_DATABASE_URL": "sqlite://",
        "LOG_DIR": str(tmp_path / "logs"),
        "CACHE_FILE": str(tmp_path / "cache" / "posts.json"),
        "WRITE_DELAY": "0",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    for key in ("NOTION_KEY", "NOTION_DATABASE_ID", "NOTION_LINKS_DATABASE_ID", "MXSPACE_API_URL", "MXSPACE_API_KEY", "SITE_URL"):
        monkeypatch.delenv(key, raising=False)
    yield values
    logging.getLogger().handlers.clear()
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def blog(engine, seed):
    seed.content(1, "hello", created=1_700_000_000)
    seed.content(2, "world", created=1_700_000_500)
    seed.content(3, "about", type="page")
    seed.meta(10, "Tech")
    seed.relate(1, 10)
    seed.comment(1, 1)
    seed.comment(2, 1, parent=1, created=1_700_000_200)
    seed.link(1, "Friend", "https://friend.example")
    with patch("typecho_migrator.cli.get_engine", return_value=engine):
        yield engine


def _invoke(*args: str):
    return CliRunner().invoke(cli, ["--env-file", "/nonexistent/.env", *args])


class TestConfigErrors:
    def test_sync_notion_requires_credentials(self, env, blog):
        result = _invoke("sync-notion")
        assert result.exit_code == 1
        assert "Configuration error: Missing required environment variable(s): NOTION_KEY, NOTION_DATABASE_ID" in result.output

    def test_import_mxspace_requires_credentials(self, env, blog):
        result = _invoke("import-mxspace")
        assert result.exit_code == 1
        assert "MXSPACE_API_URL" in result.output

    def test_remark42_requires_site_url(self, env, blog):
        result = _invoke("export-remark42")
        assert result.exit_code == 1
        assert "SITE_URL" in result.output

    def test_missing_database(self, env, monkeypatch):
        monkeypatch.delenv("TYPECHO_DATABASE_URL")
        monkeypatch.setenv("TYPECHO_DB_HOST", "")
        result = _invoke("export-mxspace")
        assert result.exit_code == 1
        assert "TYPECHO_DB_HOST" in result.output


class TestSourceErrors:
    def test_unreadable_database(self, env):
        with patch("typecho_migrator.cli.get_engine", return_value=sa.create_engine("sqlite://")):
            result = _invoke("export-mxspace")
        assert result.exit_code == 1
        assert "Source error:" in result.output


class TestExportMarkdown:
    def test_writes_files_and_caches(self, env, blog, tmp_path):
        out = tmp_path / "out"

        result = _invoke("export-markdown", "--out", str(out), "--pages")

        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in (out / "posts").iterdir()) == ["hello.md", "world.md"]
        assert [p.name for p in (out / "pages").iterdir()] == ["about.md"]
        assert "Created:  2" in result.output
        assert (tmp_path / "cache" / "posts.json").exists()

        with patch("typecho_migrator.cli.get_engine", side_effect=AssertionError("cache not used")):
            second = _invoke("export-markdown", "--out", str(out), "--pages")

        assert second.exit_code == 0, second.output
        assert "Skipped:  2" in second.output

    def test_strict_duplicate_slugs(self, env, blog, seed):
        seed.content(4, "hello", created=1_700_000_900)
        result = _invoke("export-markdown", "--strict", "--no-cache")
        assert result.exit_code == 1
        assert "Duplicate keys:" in result.output
        assert "'hello' (ids 4, 1)" in result.output


class TestSyncNotion:
    def test_tally_printed_when_records_fail(self, env, blog, monkeypatch):
        monkeypatch.setenv("NOTION_KEY", "secret")
        monkeypatch.setenv("NOTION_DATABASE_ID", "db")
        destination = MagicMock()
        destination.query_existing.return_value = {}
        destination.create.side_effect = [DestinationError("Notion API error 400: nope", 400), "page-2"]

        with patch("typecho_migrator.cli.NotionDestination", return_value=destination):
            result = _invoke("sync-notion", "--no-cache")

        assert result.exit_code == 0, result.output
        destination.ensure_database_properties.assert_called_once()
        assert "Created:  1" in result.output
        assert "Failed:   1" in result.output
        assert "Notion API error 400: nope" in result.output

    def test_identity_failure_ends_run(self, env, blog, monkeypatch):
        monkeypatch.setenv("NOTION_KEY", "secret")
        monkeypatch.setenv("NOTION_DATABASE_ID", "db")
        destination = MagicMock()
        destination.query_existing.side_effect = DestinationError("Notion API error 401: unauthorized", 401)

        with patch("typecho_migrator.cli.NotionDestination", return_value=destination):
            result = _invoke("sync-notion", "--no-cache", "--dry-run")

        assert result.exit_code == 1
        assert "Total:    0" in result.output
        assert "Destination error: Notion API error 401" in result.output

    def test_dry_run_reads_schema_without_creating(self, env, blog, monkeypatch):
        monkeypatch.setenv("NOTION_KEY", "secret")
        monkeypatch.setenv("NOTION_DATABASE_ID", "db")
        destination = MagicMock()
        destination.query_existing.return_value = {}

        with patch("typecho_migrator.cli.NotionDestination", return_value=destination):
            result = _invoke("sync-notion", "--no-cache", "--dry-run")

        assert result.exit_code == 0, result.output
        destination.ensure_database_properties.assert_called_once_with(create_missing=False)
        destination.create.assert_not_called()

    def test_schema_failure_still_prints_tally(self, env, blog, monkeypatch):
        monkeypatch.setenv("NOTION_KEY", "secret")
        monkeypatch.setenv("NOTION_DATABASE_ID", "db")
        destination = MagicMock()
        destination.ensure_database_properties.side_effect = DestinationError("Notion API error 404: no database", 404)

        with patch("typecho_migrator.cli.NotionDestination", return_value=destination):
            result = _invoke("sync-notion", "--no-cache")

        assert result.exit_code == 1
        assert "Total:    0" in result.output
        assert "Destination error: Notion API error 404" in result.output


class TestImportMxSpace:
    def test_identity_failure_prints_tally(self, env, blog, monkeypatch):
        monkeypatch.setenv("MXSPACE_API_URL", "https://mx.example/api/v2")
        monkeypatch.setenv("MXSPACE_API_KEY", "key")
        destination = MagicMock()
        destination.query_existing.side_effect = DestinationError("MxSpace API error 401: unauthorized", 401)

        with patch("typecho_migrator.cli.MxSpaceDestination", return_value=destination):
            result = _invoke("import-mxspace")

        assert result.exit_code == 1
        assert "Total:    0" in result.output
        assert "Destination error: MxSpace API error 401" in result.output
        destination.create.assert_not_called()


class TestOtherExports:
    def test_remark42(self, env, blog, tmp_path):
        out = tmp_path / "remark.json"
        result = _invoke("export-remark42", "--out", str(out), "--site-url", "https://blog.example", "--no-cache")

        assert result.exit_code == 0, result.output
        lines = out.read_text().splitlines()
        assert json.loads(lines[0]) == {"version": 1, "users": [], "posts": []}
        assert [json.loads(line)["pid"] for line in lines[1:]] == ["", "typecho-1"]

    def test_mxspace(self, env, blog, tmp_path):
        out = tmp_path / "mx"
        result = _invoke("export-mxspace", "--out", str(out))

        assert result.exit_code == 0, result.output
        assert len(bson.decode_all((out / "posts.bson").read_bytes())) == 2
        assert len(bson.decode_all((out / "comments.bson").read_bytes())) == 2


class TestCheckMapping:
    def test_prints_failures(self, env, blog):
        report = MappingReport(
            checked=3,
            passed=2,
            failed=1,
            failures=[MappingFailure(old_url="https://a/x", new_url="https://b/x", error="HTTP 404")],
        )
        with patch("typecho_migrator.cli.check_mapping", return_value=report) as check:
            result = _invoke("check-mapping", "https://a", "https://b", "--concurrency", "2")

        assert result.exit_code == 0, result.output
        assert check.call_args.kwargs["max_workers"] == 2
        assert len(check.call_args.args[0]) == 3
        assert "https://b/x [HTTP 404]" in result.output


class TestClearCache:
    def test_clear(self, env, tmp_path):
        cache = tmp_path / "cache" / "posts.json"
        cache.parent.mkdir()
        cache.write_text("{}")

        assert "Cache cleared." in _invoke("clear-cache").output
        assert not cache.exists()
        assert "No cache file." in _invoke("clear-cache").output
