"""Tests for URL, timestamp and file helpers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, timezone

import pytest
import structlog

from typecho_migrator.models import LinkRecord
from typecho_migrator.utils.db import parse_instant, to_iso
from typecho_migrator.utils.files import write_text_atomic
from typecho_migrator.utils.logging import setup_logging
from typecho_migrator.utils.urls import extract_domain, join_url, normalize_url


class TestNormalizeUrl:
    def test_basic_normalization(self):
        assert normalize_url("  HTTP://WWW.Example.COM/page/  ") == "https://example.com/page"

    def test_strips_tracking_params(self):
        result = normalize_url("https://example.com/page?utm_source=twitter&utm_medium=social&real=1")
        assert result == "https://example.com/page?real=1"

    def test_strips_click_ids_and_any_utm_key(self):
        assert normalize_url("https://example.com/?fbclid=x&utm_id=3&q=1") == "https://example.com?q=1"

    def test_sorts_params(self):
        assert normalize_url("https://example.com/page?z=1&a=2") == "https://example.com/page?a=2&z=1"

    def test_removes_fragment(self):
        assert normalize_url("https://example.com/page#section") == "https://example.com/page"

    def test_root_url(self):
        assert normalize_url("http://friend.example/") == "https://friend.example"

    def test_empty_url(self):
        assert normalize_url("") is None
        assert normalize_url(None) is None

    def test_non_http_scheme(self):
        assert normalize_url("ftp://example.com") is None
        assert normalize_url("mailto:user@example.com") is None


class TestUrlHelpers:
    def test_extract_domain(self):
        assert extract_domain("https://www.Blog.example/x") == "blog.example"
        assert extract_domain(None) is None

    def test_join_url(self):
        assert join_url("https://a.example/", "/archives/x.html") == "https://a.example/archives/x.html"


class TestLinkIdentity:
    def test_identity_uses_normalized_url(self):
        assert LinkRecord(id=1, name="n", url="http://www.a.example/").identity == "https://a.example"

    def test_identity_falls_back_to_raw(self):
        assert LinkRecord(id=1, name="n", url=" weird ").identity == "weird"

    def test_fingerprint_tracks_mutable_fields(self):
        base = LinkRecord(id=1, name="n", url="https://a.example")
        assert base.fingerprint == LinkRecord(id=2, name="n", url="https://b.example").fingerprint
        assert base.fingerprint != LinkRecord(id=1, name="n", url="https://a.example", order=3).fingerprint


class TestParseInstant:
    def test_epoch_seconds(self):
        assert parse_instant(0) == datetime(1970, 1, 1, tzinfo=UTC)

    def test_z_suffix(self):
        assert parse_instant("2024-01-01T00:00:00.000Z") == datetime(2024, 1, 1, tzinfo=UTC)

    def test_offset_converted(self):
        parsed = parse_instant("2024-01-01T08:00:00+08:00")
        assert parsed == datetime(2024, 1, 1, tzinfo=UTC)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_is_utc(self):
        assert parse_instant(datetime(2024, 1, 1)).tzinfo == UTC

    def test_aware_converted(self):
        value = datetime(2024, 1, 1, 3, tzinfo=timezone(timedelta(hours=3)))
        assert parse_instant(value) == datetime(2024, 1, 1, tzinfo=UTC)

    def test_empty(self):
        assert parse_instant(None) is None
        assert parse_instant("") is None

    def test_unsupported(self):
        with pytest.raises(TypeError):
            parse_instant([2024])


class TestToIso:
    def test_millisecond_z_format(self):
        assert to_iso(datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=UTC)) == "2024-01-02T03:04:05.678Z"

    def test_converts_offset(self):
        value = datetime(2024, 1, 1, 8, tzinfo=timezone(timedelta(hours=8)))
        assert to_iso(value) == "2024-01-01T00:00:00.000Z"


class TestWriteTextAtomic:
    def test_creates_parents_and_leaves_no_tmp(self, tmp_path):
        path = write_text_atomic(tmp_path / "a" / "b.md", "hello")
        assert path.read_text() == "hello"
        assert [p.name for p in path.parent.iterdir()] == ["b.md"]


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def _reset(self):
        yield
        logging.getLogger().handlers.clear()
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()

    def test_binds_run_context(self, tmp_path):
        setup_logging(str(tmp_path), "sync-notion")
        context = structlog.contextvars.get_contextvars()
        assert context["command"] == "sync-notion"
        assert len(context["run_id"]) == 8

    def test_handlers_not_stacked(self, tmp_path):
        setup_logging(str(tmp_path))
        setup_logging(str(tmp_path), verbose=True)
        handlers = logging.getLogger().handlers
        assert len(handlers) == 2
        assert handlers[1].level == logging.DEBUG
        assert (tmp_path / "typecho-migrator.log").exists()
        assert logging.getLogger("httpx").level == logging.WARNING
