"""Tests for the events store."""

from datetime import timedelta

import pytest

from portal_common.utils import utcnow
from portal_sync.authz import Authorizer
from portal_sync.errors import (
    AuthorizationError,
    BackendError,
    DuplicateRecordError,
    MutationError,
    ValidationError,
)
from portal_sync.resources.events import DEFAULT_STATUSES, EventsStore, attendance_summary, popular_types
from tests.fakes import FakeBackend


def day(offset):
    return (utcnow().date() + timedelta(days=offset)).isoformat()


def make_events():
    return [
        {"id": "e1", "title": "Friday lecture", "type": "friday", "status": "published", "date": day(3),
         "max_attendees": 100, "current_attendees": 40, "organizer_id": "user-member"},
        {"id": "e2", "title": "Tafsir circle", "type": "dars", "status": "completed", "date": day(-10),
         "max_attendees": 30, "current_attendees": 30, "created_by": "user-other"},
        {"id": "e3", "title": "Python workshop", "type": "workshop", "status": "published", "date": day(10),
         "max_attendees": None, "current_attendees": 0, "organizer_id": "user-other"},
        {"id": "e4", "title": "Friday khutbah", "type": "friday", "status": "draft", "date": day(20),
         "max_attendees": 50, "current_attendees": 0, "organizer_id": "user-member"},
        {"id": "e5", "title": "Charity drive", "type": "charity", "status": "cancelled", "date": day(-2),
         "max_attendees": 10, "current_attendees": 5},
    ]


def event_backend(**procedures):
    return FakeBackend({"events": make_events()}, procedures=procedures)


def test_public_listing_query_defaults(member, sync_settings):
    store = EventsStore(FakeBackend(), Authorizer(member), settings=sync_settings, page=3, limit=10)
    query = store.build_query()

    assert query.in_ == {"status": list(DEFAULT_STATUSES)}
    assert query.eq == {}
    assert (query.offset, query.limit, query.count) == (20, 10, True)
    assert query.order_by == "date" and not query.descending

    everything = EventsStore(
        FakeBackend(), Authorizer(member), settings=sync_settings, status="all", type="all"
    ).build_query()
    assert everything.in_ == {} and everything.eq == {}

    drafts = EventsStore(
        FakeBackend(), Authorizer(member), settings=sync_settings, status="draft", featured=True
    ).build_query()
    assert drafts.eq == {"status": "draft", "is_featured": True}


@pytest.mark.parametrize("page, limit", [(0, 20), (1, 0), (-1, -1)])
def test_rejects_invalid_paging(member, sync_settings, page, limit):
    with pytest.raises(ValidationError):
        EventsStore(FakeBackend(), Authorizer(member), settings=sync_settings, page=page, limit=limit)


async def test_paging_uses_the_exact_total(make_store, member):
    store = make_store(EventsStore, event_backend(), member, status="all", limit=2, page=2)
    await store.open()

    assert [e["id"] for e in store.collection] == ["e1", "e3"]
    assert store.total() == 5
    assert store.total_pages == 3


async def test_default_listing_hides_drafts_and_cancelled(make_store, member):
    store = make_store(EventsStore, event_backend(), member)
    await store.open()
    assert [e["id"] for e in store.collection] == ["e2", "e1", "e3"]


async def test_date_range_and_search(make_store, member):
    store = make_store(
        EventsStore, event_backend(), member, status="all", date_from=day(0), date_to=day(15), search="friday"
    )
    await store.open()
    assert [e["id"] for e in store.collection] == ["e1"]


async def test_stats(make_store, member):
    store = make_store(EventsStore, event_backend(), member, status="all")
    await store.open()

    stats = store.stats
    assert stats.total_events == 5
    assert stats.upcoming_events == 3
    assert stats.completed_events == 1
    assert stats.total_attendees == 75
    assert stats.average_attendance == 25.0
    assert stats.fill_rate == 39
    assert stats.popular_types[0] == ("friday", 2)
    assert [name for name, _ in stats.popular_types[1:]] == ["charity", "dars", "workshop"]


def test_attendance_helpers():
    assert attendance_summary([]) == (0.0, 0)
    events = [{"current_attendees": 1}, {"current_attendees": 2}, {"current_attendees": 2}]
    assert attendance_summary(events) == (1.67, 0)
    assert popular_types([{"type": "b"}, {"type": "a"}, {}]) == (("a", 1), ("b", 1), ("unknown", 1))


async def test_members_create_drafts_they_organize(make_store, member):
    backend = event_backend()
    store = make_store(EventsStore, backend, member, status="all")
    await store.open()

    created = await store.create(
        {"title": " Study night ", "type": "social", "date": day(5), "max_attendees": "25", "status": "published"}
    )

    assert created["title"] == "Study night"
    assert created["status"] == "draft"
    assert created["organizer_id"] == member.id
    assert created["created_by"] == member.id
    assert created["current_attendees"] == 0
    assert created["max_attendees"] == 25
    assert store.total() == 6


async def test_create_validation(make_store, member):
    store = make_store(EventsStore, event_backend(), member)
    await store.open()

    with pytest.raises(ValidationError, match="event type"):
        await store.create({"title": "x", "type": "party", "date": day(1)})
    with pytest.raises(ValidationError, match="YYYY-MM-DD"):
        await store.create({"title": "x", "type": "social", "date": "soon"})
    with pytest.raises(ValidationError, match="max_attendees"):
        await store.create({"title": "x", "type": "social", "date": day(1), "max_attendees": 0})


async def test_owner_may_update_but_others_may_not(make_store, member):
    backend = event_backend()
    store = make_store(EventsStore, backend, member, status="all")
    await store.open()

    updated = await store.update("e1", {"location": " Main hall "})
    assert updated["location"] == "Main hall"

    with pytest.raises(AuthorizationError):
        await store.update("e2", {"location": "Elsewhere"})
    with pytest.raises(AuthorizationError):
        await store.delete("e3")
    assert backend.count("update", "events") == 1
    assert backend.count("delete", "events") == 0


async def test_admin_may_delete_any_event(make_store, admin):
    backend = event_backend()
    store = make_store(EventsStore, backend, admin, status="all")
    await store.open()

    await store.delete("e3")
    assert "e3" not in {e["id"] for e in backend.rows("events")}


async def test_register_full_event(make_store, member):
    backend = event_backend(register_for_event=lambda args: {"success": False, "error": "Event is full"})
    store = make_store(EventsStore, backend, member)
    await store.open()

    with pytest.raises(MutationError, match="Event is full"):
        await store.register("e1", special_requirements="  ")
    assert (
        "call",
        "register_for_event",
        {"p_event_id": "e1", "p_special_requirements": None},
    ) in backend.history


async def test_register_twice(make_store, member):
    def register(args):
        raise BackendError("duplicate key value violates unique constraint", code="23505")

    store = make_store(EventsStore, event_backend(register_for_event=register), member)
    await store.open()

    with pytest.raises(DuplicateRecordError, match="Already registered"):
        await store.register("e1")


async def test_cancel_registration(make_store, member):
    backend = event_backend(cancel_event_registration=lambda args: {"success": True})
    store = make_store(EventsStore, backend, member)
    await store.open()

    await store.cancel_registration("e1")
    assert ("call", "cancel_event_registration", {"p_event_id": "e1"}) in backend.history
