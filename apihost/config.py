"""
apihost — Host Configuration
============================

What:  Environment-backed settings for a host, loaded with Pydantic Settings.
How:   Settings reads environment variables (or a .env file), validates
       types and yields one frozen value. Each ApiHost resolves its Settings
       exactly once, at construction, and hands the same value to every
       component it builds (pipeline, database sessions, blob storage).
Who:   ApiHost, DatabaseSessionManager, BlobStorageClient.

Environment variables:
    APP_PORT            Listening port used when start() gets no explicit port
    APP_HOST            Bind address (default 0.0.0.0)
    APP_ENV             Deployment tag; gates dev diagnostics, prefixes blobs
    LOG_LEVEL           DEBUG | INFO | WARNING | ERROR | CRITICAL
    DB_DRIVER           SQLAlchemy async driver name (postgresql+asyncpg)
    DB_HOST / DB_PORT / DB_NAME / DB_USER / DB_PASSWORD
    DB_OPTIONS          Extra driver options as a query string (a=1&b=2)
    STORAGE_ROOT        Root directory of the blob store
    STORAGE_CONTAINER   Container (sub directory) inside STORAGE_ROOT
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_PORT = 80

LOCAL_DEV_ENVIRONMENTS = {"dev", "development", "local"}


class Settings(BaseSettings):
    """
    Settings of a single host.

    All fields have defaults, so a bare ``Settings()`` works in development
    and in tests. Instances are immutable.
    """

    # ── Server ────────────────────────────────────────────────────────────
    app_port: Optional[int] = Field(default=None)
    app_host: str = Field(default="0.0.0.0")
    app_env: str = Field(default="")

    log_level: str = Field(default="INFO")

    # ── Database ──────────────────────────────────────────────────────────
    db_driver: str = Field(default="postgresql+asyncpg")
    db_host: Optional[str] = Field(default=None)
    db_port: Optional[int] = Field(default=None)
    db_name: Optional[str] = Field(default=None)
    db_user: Optional[str] = Field(default=None)
    db_password: Optional[str] = Field(default=None)
    db_options: Optional[str] = Field(default=None)

    # ── Blob Storage ──────────────────────────────────────────────────────
    storage_root: str = Field(default="./storage")
    storage_container: str = Field(default="blobs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "frozen": True,
        "extra": "ignore",
    }

    @field_validator("app_port", "db_port", mode="before")
    @classmethod
    def parse_port(cls, v):
        """Unparseable or empty port values count as "not configured"."""
        if v is None:
            return None
        try:
            port = int(str(v).strip())
        except ValueError:
            return None
        if port < 0 or port > 65535:
            return None
        return port

    @field_validator("app_env", mode="before")
    @classmethod
    def normalize_app_env(cls, v) -> str:
        return "" if v is None else str(v).strip().lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.strip().upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @property
    def is_local_dev(self) -> bool:
        """True when APP_ENV names a local development environment."""
        return self.app_env in LOCAL_DEV_ENVIRONMENTS

    def resolve_port(self, port: Optional[int] = None) -> int:
        """
        Resolve the listening port.

        Precedence: explicit argument > APP_PORT > DEFAULT_PORT (80).
        """
        if port is not None:
            return int(port)
        if self.app_port is not None:
            return self.app_port
        return DEFAULT_PORT
