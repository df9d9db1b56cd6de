"""Tests for shared configuration and logging helpers."""

from pathlib import Path

import pytest
from pydantic import SecretStr

from portal_common.config import (
    DEFAULT_ADMIN_ROLES,
    BackendSettings,
    DatabaseSettings,
    Settings,
    SyncSettings,
    validate_settings,
)
from portal_common.logging import add_app_context, mask_secrets
from portal_common.security import hash_password, verify_password


def test_admin_roles_parsing():
    assert SyncSettings(admin_roles="admin, super_admin ,").admin_roles == ("admin", "super_admin")
    assert SyncSettings(admin_roles="").admin_roles == DEFAULT_ADMIN_ROLES
    assert SyncSettings(admin_roles=[" it_head "]).admin_roles == ("it_head",)
    assert "admin" not in SyncSettings().admin_roles


def test_database_urls():
    sqlite = DatabaseSettings(engine="sqlite", sqlite_path=Path("data/test.db"))
    assert sqlite.url == "sqlite+aiosqlite:///data/test.db"

    mysql = DatabaseSettings(
        engine="mysql", host="db", port=3307, name="portal", user="app", password=SecretStr("p@ss")
    )
    assert mysql.url == "mysql+asyncmy://app:p%40ss@db:3307/portal?charset=utf8mb4"


def test_backend_url_is_normalised():
    assert BackendSettings(url=" https://x.supabase.co/ ").url == "https://x.supabase.co"
    assert BackendSettings(url="  ").url is None


def test_validate_settings_reports_problems():
    settings = Settings(
        backend=BackendSettings(mode="rest", url=None, api_key=None),
        sync=SyncSettings(refresh_interval_sec=0.5),
    )
    issues = validate_settings(settings)
    assert len(issues) == 3
    assert any("PORTAL_BACKEND_URL" in issue for issue in issues)
    assert any("REFRESH_INTERVAL" in issue for issue in issues)

    assert validate_settings(Settings(backend=BackendSettings(mode="sql"))) == []


def test_log_processors():
    event = mask_secrets(None, "info", {"event": "backend_opened", "api_key": "anon", "access_token": None})
    assert event["api_key"] == "***"
    assert event["access_token"] is None

    assert add_app_context(None, "info", {"event": "x"})["app"] == "portal"
    assert add_app_context(None, "info", {"event": "x", "app": "cli"})["app"] == "cli"


def test_password_hashing():
    hashed = hash_password("correct horse")
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)
    assert not verify_password("correct horse", None)
    assert not verify_password("correct horse", "not-a-hash")

    with pytest.raises(ValueError, match="at least 8"):
        hash_password("short")
