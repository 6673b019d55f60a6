"""Global settings loaded from environment variables via pydantic-settings."""

from __future__ import annotations

import sqlalchemy as sa
from pydantic_settings import BaseSettings, SettingsConfigDict

from typecho_migrator.errors import ConfigError

# SQLAlchemy driver per TYPECHO_DB_ADAPTER value
_DRIVERS = {
    "postgresql": "postgresql+psycopg2",
    "mysql": "mysql+pymysql",
    "sqlite": "sqlite",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Typecho source database
    typecho_db_adapter: str = "postgresql"
    typecho_db_host: str = ""
    typecho_db_port: int = 5432
    typecho_db_user: str = ""
    typecho_db_password: str = ""
    typecho_db_database: str = ""
    typecho_db_prefix: str = "typecho_"
    typecho_database_url: str = ""  # full SQLAlchemy URL, wins over the parts above
    # Notion (secrets, must be env vars)
    notion_key: str = ""
    notion_database_id: str = ""
    notion_links_database_id: str = ""
    # MxSpace
    mxspace_api_url: str = ""
    mxspace_api_key: str = ""
    mxspace_export_dir: str = "./mxspace"
    # File exports
    markdown_export_dir: str = "./posts"
    remark42_site_id: str = "remark"
    site_url: str = ""
    # Operational
    cache_file: str = ".cache/posts.json"
    cache_ttl_hours: float = 24.0
    log_dir: str = "./data/logs"
    write_delay: float = 0.35
    http_timeout: float = 30.0
    proxy_url: str = ""

    def database_url(self) -> sa.engine.URL | str:
        """SQLAlchemy URL for the Typecho database."""
        if self.typecho_database_url:
            return self.typecho_database_url
        driver = _DRIVERS.get(self.typecho_db_adapter)
        if driver is None:
            raise ConfigError(
                f"Unsupported database adapter: {self.typecho_db_adapter}. "
                f"Supported: {', '.join(sorted(_DRIVERS))}."
            )
        if driver == "sqlite":
            return sa.engine.URL.create(driver, database=self.typecho_db_database)
        return sa.engine.URL.create(
            driver,
            username=self.typecho_db_user,
            password=self.typecho_db_password,
            host=self.typecho_db_host,
            port=self.typecho_db_port,
            database=self.typecho_db_database,
        )

    # -- Validation -----------------------------------------------------------

    def require_database(self) -> None:
        if self.typecho_database_url:
            return
        required = ["typecho_db_database"]
        if self.typecho_db_adapter != "sqlite":
            required = ["typecho_db_host", "typecho_db_user", "typecho_db_password", "typecho_db_database"]
        self._require(*required)
        self.database_url()

    def require_notion(self) -> None:
        self._require("notion_key", "notion_database_id")

    def require_notion_links(self) -> None:
        self._require("notion_key", "notion_links_database_id")

    def require_mxspace_api(self) -> None:
        self._require("mxspace_api_url", "mxspace_api_key")

    def _require(self, *fields: str) -> None:
        missing = [name.upper() for name in fields if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")

    def describe(self) -> list[str]:
        """Start-up summary lines, secrets truncated."""
        lines = []
        if self.typecho_database_url:
            lines.append(f"Typecho DB: {sa.engine.make_url(self.typecho_database_url).render_as_string(hide_password=True)}")
        else:
            lines.append(f"Typecho DB: {self.typecho_db_host}:{self.typecho_db_port}/{self.typecho_db_database}")
        lines.append(f"Table prefix: {self.typecho_db_prefix}")
        if self.notion_database_id:
            lines.append(f"Notion database: {self.notion_database_id[:8]}...")
        if self.mxspace_api_url:
            lines.append(f"MxSpace API: {self.mxspace_api_url} (key {self.mxspace_api_key[:8]}...)")
        return lines
