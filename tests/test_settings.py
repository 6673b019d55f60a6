"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest
import sqlalchemy as sa

from typecho_migrator.errors import ConfigError
from typecho_migrator.settings import Settings


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


class TestDatabaseUrl:
    def test_postgres_default(self):
        url = _settings(
            typecho_db_host="db.local",
            typecho_db_user="blog",
            typecho_db_password="p@ss",
            typecho_db_database="typecho",
        ).database_url()
        assert url.drivername == "postgresql+psycopg2"
        assert (url.host, url.port, url.username, url.password, url.database) == ("db.local", 5432, "blog", "p@ss", "typecho")

    def test_mysql(self):
        url = _settings(typecho_db_adapter="mysql", typecho_db_port=3306, typecho_db_database="t").database_url()
        assert url.drivername == "mysql+pymysql"
        assert url.port == 3306

    def test_sqlite(self):
        url = _settings(typecho_db_adapter="sqlite", typecho_db_database="/tmp/blog.db").database_url()
        assert url == sa.engine.URL.create("sqlite", database="/tmp/blog.db")

    def test_full_url_wins(self):
        assert _settings(typecho_database_url="sqlite://", typecho_db_host="x").database_url() == "sqlite://"

    def test_unknown_adapter(self):
        with pytest.raises(ConfigError, match="Unsupported database adapter: oracle"):
            _settings(typecho_db_adapter="oracle").database_url()


class TestRequire:
    def test_database_lists_missing(self):
        with pytest.raises(ConfigError) as excinfo:
            _settings(typecho_db_host="h").require_database()
        assert str(excinfo.value) == (
            "Missing required environment variable(s): TYPECHO_DB_USER, TYPECHO_DB_PASSWORD, TYPECHO_DB_DATABASE"
        )

    def test_sqlite_needs_only_database(self):
        _settings(typecho_db_adapter="sqlite", typecho_db_database="blog.db").require_database()

    def test_notion(self):
        with pytest.raises(ConfigError, match="NOTION_DATABASE_ID"):
            _settings(notion_key="k").require_notion()
        _settings(notion_key="k", notion_database_id="d").require_notion()

    def test_notion_links(self):
        with pytest.raises(ConfigError, match="NOTION_LINKS_DATABASE_ID"):
            _settings(notion_key="k", notion_database_id="d").require_notion_links()

    def test_mxspace(self):
        with pytest.raises(ConfigError, match="MXSPACE_API_KEY"):
            _settings(mxspace_api_url="https://mx").require_mxspace_api()


class TestEnvironment:
    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("WRITE_DELAY", "1.5")
        monkeypatch.setenv("TYPECHO_DB_PREFIX", "blog_")
        settings = Settings(_env_file=None)
        assert settings.write_delay == 1.5
        assert settings.typecho_db_prefix == "blog_"

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOTION_KEY", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("NOTION_KEY=from-file\n")
        assert Settings(_env_file=env_file).notion_key == "from-file"


class TestDescribe:
    def test_masks_secrets(self):
        lines = _settings(
            typecho_database_url="postgresql://u:secretpw@h/db",
            notion_database_id="0123456789abcdef",
            mxspace_api_url="https://mx",
            mxspace_api_key="abcdefghijkl",
        ).describe()
        text = "\n".join(lines)
        assert "secretpw" not in text
        assert "01234567..." in text
        assert "abcdefghijkl" not in text
