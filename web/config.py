"""Web-facing configuration helpers."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class WebSettings(BaseSettings):
    """Portal API settings sourced from env/.env."""

    session_secret: str = Field(
        default="replace-me",
        description="Secret used to sign session cookies",
    )
    brand_name: str = Field(default="Campus Portal", description="Display name used in API docs")
    cors_origins: list[str] | str = Field(default=["*"], description="Allowed CORS origins (comma-separated)")
    user_header: str = Field(
        default="X-Portal-User",
        description="Header carrying the acting member's email when running against the SQL backend",
    )
    trust_user_header: bool = Field(
        default=False,
        description="Honour the user header without a password sign-in (local development only)",
    )
    monitoring_user_email: str | None = Field(
        default=None,
        description="Admin account used by the shared auto-refreshing monitoring store",
    )

    model_config = SettingsConfigDict(env_prefix="PORTAL_WEB_", env_file=".env", env_file_encoding="utf-8")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


@lru_cache()
def get_web_settings() -> WebSettings:
    """Return cached settings."""

    return WebSettings()
