"""
Configuration management using Pydantic Settings.
Hierarchical: Environment variables → .env file → Defaults
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ADMIN_ROLES = ("super_admin", "it_head", "sys_admin")


class BackendSettings(BaseSettings):
    """Which backend the stores talk to and how to reach it."""

    mode: Literal["sql", "rest"] = Field(
        default="sql",
        description="sql = self-hosted database, rest = hosted PostgREST/GoTrue service",
    )
    url: str | None = Field(default=None, description="Base URL of the hosted backend")
    api_key: SecretStr | None = Field(default=None, description="Public API key for the hosted backend")
    access_token: SecretStr | None = Field(
        default=None,
        description="Optional user access token used by CLI sessions in rest mode",
    )
    timeout_sec: float = Field(default=30.0, description="HTTP timeout for backend calls")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v.rstrip("/") or None

    model_config = SettingsConfigDict(env_prefix="PORTAL_BACKEND_")


class DatabaseSettings(BaseSettings):
    """Database connection settings for the self-hosted backend."""

    engine: Literal["sqlite", "mysql"] = Field(
        default="sqlite",
        description="Database engine to use",
    )
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=3306, description="Database port")
    name: str = Field(default="portal", description="Database name")
    user: str = Field(default="portal_user", description="Database user")
    password: SecretStr = Field(default=SecretStr(""), description="Database password")
    sqlite_path: Path = Field(default=Path("./data/portal.db"), description="SQLite database file")

    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Max overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout seconds")

    driver: str | None = Field(
        default=None,
        description="Optional SQLAlchemy async driver override",
    )

    @property
    def resolved_driver(self) -> str:
        """Return the async driver for the configured engine."""
        if self.driver:
            return self.driver
        return "aiosqlite" if self.engine == "sqlite" else "asyncmy"

    @property
    def url(self) -> str:
        """Get database URL for SQLAlchemy."""
        if self.engine == "sqlite":
            return f"sqlite+{self.resolved_driver}:///{self.sqlite_path}"
        user = quote_plus(self.user)
        password = quote_plus(self.password.get_secret_value())
        base = f"mysql+{self.resolved_driver}://{user}:{password}"
        url = f"{base}@{self.host}:{self.port}/{self.name}"
        return f"{url}?charset=utf8mb4"

    model_config = SettingsConfigDict(env_prefix="PORTAL_DB_")


class SyncSettings(BaseSettings):
    """Data-access, fallback and refresh behaviour of the resource stores."""

    refresh_interval_sec: float = Field(
        default=30.0,
        description="Auto-refresh interval for monitoring-style stores",
    )
    monitoring_fetch_limit: int = Field(
        default=100,
        description="Max log rows fetched per monitoring refresh",
    )
    member_fetch_limit: int = Field(default=1000, description="Max members fetched per load")
    invitation_fetch_limit: int = Field(default=100, description="Max invitations fetched per load")
    recent_join_days: int = Field(
        default=7,
        description="Window (days) counted as a recent join in member statistics",
    )
    admin_roles: tuple[str, ...] | str = Field(
        default=DEFAULT_ADMIN_ROLES,
        description="Roles that grant admin capabilities (comma-separated)",
    )
    optimistic_updates: bool = Field(
        default=False,
        description="Patch local state after a write and reconcile in the background",
    )
    seed_fallback_enabled: bool = Field(
        default=True,
        description="Serve built-in sample data when every live source fails",
    )
    environment_name: str = Field(
        default="production",
        description="Environment label stamped on system log entries",
    )

    @field_validator("admin_roles", mode="before")
    @classmethod
    def parse_admin_roles(cls, value) -> tuple[str, ...]:
        if value is None or value == "":
            return DEFAULT_ADMIN_ROLES
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(",")]
            return tuple(part for part in parts if part) or DEFAULT_ADMIN_ROLES
        return tuple(str(part).strip() for part in value if str(part).strip())

    model_config = SettingsConfigDict(env_prefix="PORTAL_SYNC_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    output: Literal["stdout", "file"] = "stdout"
    file_path: Path | None = Field(default=None, description="Log file path if output=file")
    rotate_mb: int = Field(default=100, description="Log rotation size (MB)")

    model_config = SettingsConfigDict(env_prefix="PORTAL_LOG_")


class MetricsSettings(BaseSettings):
    """Prometheus metrics settings."""

    enabled: bool = Field(default=True, description="Enable metrics export")
    path: str = Field(default="/metrics", description="Metrics endpoint path")

    model_config = SettingsConfigDict(env_prefix="PORTAL_METRICS_")


class Settings(BaseSettings):
    """Root settings object."""

    backend: BackendSettings = Field(default_factory=BackendSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False, description="Debug mode")

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses LRU cache to avoid re-reading environment on every call.
    """
    return Settings()


def validate_settings(settings: Settings | None = None) -> list[str]:
    """Return a list of configuration problems (empty when valid)."""

    settings = settings or get_settings()
    issues: list[str] = []

    if settings.backend.mode == "rest":
        if not settings.backend.url:
            issues.append("PORTAL_BACKEND_URL is required when PORTAL_BACKEND_MODE=rest")
        if settings.backend.api_key is None:
            issues.append("PORTAL_BACKEND_API_KEY is required when PORTAL_BACKEND_MODE=rest")

    if settings.sync.refresh_interval_sec < 1:
        issues.append("PORTAL_SYNC_REFRESH_INTERVAL_SEC must be >= 1")

    if settings.sync.monitoring_fetch_limit < 1:
        issues.append("PORTAL_SYNC_MONITORING_FETCH_LIMIT must be >= 1")

    if not settings.sync.admin_roles:
        issues.append("PORTAL_SYNC_ADMIN_ROLES must name at least one role")

    return issues
