"""Shared fixtures for the portal test suite."""

from typing import Any

import pytest

from portal_common.config import SyncSettings
from portal_sync.authz import Authorizer
from portal_sync.backend import CurrentUser
from portal_sync.notify import CollectingNotifier
from tests.fakes import FakeBackend, instant_sleep

ADMIN = CurrentUser(id="user-admin", email="admin@example.org", roles=("admin",))
MEMBER = CurrentUser(id="user-member", email="member@example.org", roles=("member",))


@pytest.fixture
def admin() -> CurrentUser:
    return ADMIN


@pytest.fixture
def member() -> CurrentUser:
    return MEMBER


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        refresh_interval_sec=30.0,
        admin_roles="admin,super_admin",
        optimistic_updates=False,
        seed_fallback_enabled=True,
        environment_name="test",
    )


@pytest.fixture
async def make_store(notifier, sync_settings):
    """Build a store over a backend with the shared notifier and settings.

    Stores are closed at teardown so no auto-refresh task outlives a test.
    """
    created = []

    def factory(store_cls, backend: FakeBackend, user: CurrentUser | None = None, **kwargs: Any):
        kwargs.setdefault("notifier", notifier)
        kwargs.setdefault("settings", sync_settings)
        kwargs.setdefault("auto_refresh", False)
        kwargs.setdefault("sleep", instant_sleep)
        store = store_cls(backend, Authorizer(user, sync_settings.admin_roles), **kwargs)
        created.append(store)
        return store

    yield factory

    for store in created:
        await store.close()
