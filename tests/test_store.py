"""Tests for the resource store lifecycle shared by every feature area."""

import asyncio

import pytest

from portal_sync.notify import NotificationLevel
from portal_sync.resources.members import MembersStore
from portal_sync.resources.monitoring import MonitoringStore
from portal_sync.seeds import static_seed
from portal_sync.store import ResourceStore
from tests.fakes import FakeBackend


class ItemsStore(ResourceStore[int]):
    resource = "items"
    collection_names = ("items",)

    def __init__(self, *args, gate=None, **kwargs):
        self.gate = gate
        self.loads = 0
        super().__init__(*args, **kwargs)

    async def load(self):
        self.loads += 1
        if self.gate is not None:
            await self.gate.wait()
        items = await self.resolver("items", [self.table_tier("items", None)]).resolve()
        return {"items": items}

    def derive(self, collections, now):
        return len(collections["items"])


SEEDS = {"items": static_seed([{"id": "seed-1"}, {"id": "seed-2"}])}


async def test_open_loads_once_and_close_is_idempotent(make_store):
    backend = FakeBackend({"items": [{"id": "a"}, {"id": "b"}]})
    store = make_store(ItemsStore, backend, seeds=SEEDS)

    async with store:
        await store.open()
        assert store.loads == 1
        assert store.is_open
        assert store.stats == 2
        assert store.total() == 2
        assert not store.using_fallback_data
        assert store.error is None

    assert not store.is_open
    await store.close()
    with pytest.raises(RuntimeError):
        await store.open()


async def test_degraded_mode_notifies_once(make_store, notifier):
    backend = FakeBackend({"items": []})
    backend.fail("query", "items")
    store = make_store(ItemsStore, backend, seeds=SEEDS)

    await store.open()
    await store.refresh()

    assert store.using_fallback_data
    assert [r["id"] for r in store.collection] == ["seed-1", "seed-2"]
    assert store.error is None
    assert len(notifier.messages(NotificationLevel.INFO)) == 1

    backend.recover("query", "items")
    backend.rows("items").append({"id": "live"})
    await store.refresh()
    assert not store.using_fallback_data
    assert [r["id"] for r in store.collection] == ["live"]


async def test_exhausted_sources_set_error(make_store, notifier):
    backend = FakeBackend({"items": [{"id": "a"}]})
    backend.fail("query", "items")
    store = make_store(ItemsStore, backend, seeds={})

    await store.open()

    assert store.collection == []
    assert not store.using_fallback_data
    assert "Unable to load items" in store.error
    assert len(notifier.messages(NotificationLevel.ERROR)) == 1

    backend.recover("query", "items")
    await store.refresh()
    assert store.error is None
    assert store.stats == 1


async def test_seed_fallback_can_be_disabled(make_store, sync_settings):
    backend = FakeBackend()
    settings = sync_settings.model_copy(update={"seed_fallback_enabled": False})
    store = make_store(ItemsStore, backend, seeds=SEEDS, settings=settings)

    await store.open()
    assert store.collection == []
    assert store.error is not None


async def test_only_the_newest_refresh_is_applied(make_store):
    gate = asyncio.Event()
    backend = FakeBackend({"items": [{"id": "old"}]})
    store = make_store(ItemsStore, backend, seeds={}, gate=gate)

    slow = asyncio.ensure_future(store.refresh())
    await asyncio.sleep(0)
    assert store.is_loading

    store.gate = None
    backend.tables["items"] = [{"id": "new-1"}, {"id": "new-2"}]
    await store.refresh()
    assert store.stats == 2

    backend.tables["items"] = [{"id": "stale"}]
    gate.set()
    await slow
    assert [r["id"] for r in store.collection] == ["new-1", "new-2"]
    assert not store.is_loading


async def test_refresh_after_close_is_ignored(make_store):
    backend = FakeBackend({"items": [{"id": "a"}]})
    store = make_store(ItemsStore, backend)
    await store.open()
    await store.close()

    await store.refresh()
    assert backend.count("query", "items") == 1


async def test_monitoring_store_auto_refreshes_for_admins(make_store, admin):
    backend = FakeBackend({"system_logs": [], "system_health_metrics": []})
    store = make_store(MonitoringStore, backend, admin, auto_refresh=None)

    await store.open()
    assert store.auto_refresh_running

    for _ in range(20):
        await asyncio.sleep(0)
    assert backend.count("query", "system_logs") > 1

    await store.close()
    assert not store.auto_refresh_running
    settled = backend.count("query", "system_logs")
    for _ in range(5):
        await asyncio.sleep(0)
    assert backend.count("query", "system_logs") == settled


async def test_monitoring_auto_refresh_stops_after_sign_out(make_store, admin):
    backend = FakeBackend({"system_logs": [], "system_health_metrics": []})
    store = make_store(MonitoringStore, backend, admin, auto_refresh=None)
    await store.open()

    store.authorizer.revoke()
    for _ in range(20):
        if not store.auto_refresh_running:
            break
        await asyncio.sleep(0)
    assert not store.auto_refresh_running


async def test_monitoring_auto_refresh_not_started_for_members(make_store, member):
    backend = FakeBackend({"system_logs": [], "system_health_metrics": []})
    store = make_store(MonitoringStore, backend, member, auto_refresh=None)
    await store.open()

    assert not store.auto_refresh_running
    assert backend.count("query") == 0
    assert store.collections == {"logs": [], "metrics": []}


async def test_refresh_twice_gives_identical_state(make_store, admin):
    backend = FakeBackend(
        {
            "profiles": [
                {"id": "p1", "user_id": "u1", "full_name": "Amina", "email": "a@example.org",
                 "status": "active", "created_at": "2026-01-05T10:00:00+00:00"},
                {"id": "p2", "user_id": "u2", "full_name": "Bello", "email": "b@example.org",
                 "status": "inactive", "created_at": "2025-11-20T10:00:00+00:00"},
            ],
            "user_roles": [{"id": "r1", "user_id": "u1", "role": "admin", "created_at": "2026-01-05T10:00:00+00:00"}],
            "member_invitations": [
                {"id": "i1", "full_name": "New", "email": "new@example.org", "status": "pending",
                 "created_at": "2026-01-06T10:00:00+00:00"},
            ],
        }
    )
    store = make_store(MembersStore, backend, admin)
    await store.open()

    await store.refresh()
    collections, stats = store.collections, store.stats
    await store.refresh()

    assert store.collections == collections
    assert store.stats == stats
    assert len(store.collection) == 2
