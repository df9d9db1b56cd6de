"""Build the configured backend for one caller."""

from portal_common.config import get_settings
from portal_common.db import ensure_schema_ready, get_session_factory
from portal_sync.backend import Backend, CurrentUser
from portal_sync.rest_backend import SupabaseBackend
from portal_sync.sql_backend import SqlBackend


async def open_backend(email: str | None = None, access_token: str | None = None) -> Backend:
    """
    Backend acting as one caller.

    In ``sql`` mode the caller is the member with ``email``; in ``rest`` mode
    it is whoever ``access_token`` belongs to. Without either the backend is
    anonymous. Close it with ``aclose()``.
    """
    settings = get_settings()
    if settings.backend.mode == "rest":
        return SupabaseBackend.from_settings(settings.backend, access_token=access_token)

    await ensure_schema_ready()
    backend = SqlBackend(get_session_factory(), admin_roles=settings.sync.admin_roles)
    if email:
        await backend.resolve_user(email)
    return backend


async def authenticate(email: str, password: str) -> CurrentUser | None:
    """Check a member's password against the self-hosted backend."""
    settings = get_settings()
    await ensure_schema_ready()
    backend = SqlBackend(get_session_factory(), admin_roles=settings.sync.admin_roles)
    try:
        return await backend.authenticate(email, password)
    finally:
        await backend.aclose()
