"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
directly -- entry points call get_settings() and pass values down explicitly.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call. Configuration is read once at process start and is immutable for
      the process lifetime (the server context in particular must never change
      while requests are in flight).

  BaseSettings (pydantic-settings): field names map to upper-cased env var
      names (radius_server_id -> RADIUS_SERVER_ID). Values may also come from
      an optional .env file.

  @model_validator(mode="after"): cross-field rules. RADIUS_SERVER_ID is
      mandatory outside DEBUG mode: two servers sharing one database with the
      same (or an empty) context would see each other's grants.

Layer rule: core/ is the kernel. This module may not import from db/,
directory/, access/, or api/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

logger = logging.getLogger("radiusauthz.config")

_DEFAULT_SQLITE_PATH = Path(__file__).resolve().parent.parent / "radius_access.db"


class Settings(BaseSettings):
    """Process settings loaded from environment variables and .env file.

    Every field has a default so Settings() can be built in tests without a
    real environment. Directory credentials left empty put the directory
    client into local-only mode rather than failing startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # ------------------------------------------------------------------
    # Server context
    # ------------------------------------------------------------------

    radius_server_id: str = ""

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    # Full SQLAlchemy URL. Wins over the DB_* parts below when set.
    database_url: str = ""
    db_host: str = ""
    db_port: int = 3306
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_pool_size: int = 10
    db_wait_timeout_ms: int = 60000
    db_wait_interval_ms: int = 1500

    # ------------------------------------------------------------------
    # Directory (Azure AD via Microsoft Graph)
    # ------------------------------------------------------------------

    azure_tenant_id: str = ""
    azure_client_id: str = ""
    azure_client_secret: str = ""
    directory_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Admin API
    # ------------------------------------------------------------------

    # Empty string disables the admin API: every /users request gets a 401.
    admin_api_key: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_server_context(self) -> "Settings":
        """Require RADIUS_SERVER_ID in production, fall back to "dev" in DEBUG mode."""
        self.radius_server_id = self.radius_server_id.strip()
        if not self.radius_server_id:
            if self.debug:
                self.radius_server_id = "dev"
                logger.warning("RADIUS_SERVER_ID not set; using 'dev' server context (DEBUG mode).")
            else:
                raise ValueError(
                    "RADIUS_SERVER_ID is required. Every RADIUS server sharing a database "
                    "must use its own server identifier."
                )
        return self

    @model_validator(mode="after")
    def validate_admin_api_key(self) -> "Settings":
        if self.admin_api_key and len(self.admin_api_key) < 32:
            raise ValueError("ADMIN_API_KEY must be at least 32 characters.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def sqlalchemy_url(self) -> str:
        """Resolve the database URL: DATABASE_URL, then DB_* parts (MySQL), then local SQLite."""
        if self.database_url:
            return self.database_url
        if self.db_host:
            url = URL.create(
                "mysql+pymysql",
                username=self.db_user or None,
                password=self.db_password or None,
                host=self.db_host,
                port=self.db_port,
                database=self.db_name or None,
                query={"charset": "utf8mb4"},
            )
            return url.render_as_string(hide_password=False)
        return f"sqlite:///{_DEFAULT_SQLITE_PATH}"

    @property
    def directory_configured(self) -> bool:
        return bool(self.azure_tenant_id and self.azure_client_id and self.azure_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Return the process Settings singleton.

    In tests: call get_settings.cache_clear() between cases that change the
    environment.
    """
    return Settings()
