"""Tests for the messages store."""

import pytest

from portal_sync.errors import AuthorizationError, MutationError, ValidationError
from portal_sync.resources.messages import MessagesStore, delivery_funnel
from tests.fakes import FakeBackend

MESSAGES = [
    {"id": "msg-1", "type": "announcement", "title": "Welcome week", "content": "Join us on Monday",
     "status": "sent", "priority": "high", "delivery_count": 40, "open_count": 30, "click_count": 5,
     "created_at": "2026-03-03T09:00:00+00:00"},
    {"id": "msg-2", "type": "reminder", "title": "Dues reminder", "content": "Dues are due Friday",
     "status": "draft", "priority": "normal", "delivery_count": 0, "open_count": 0, "click_count": 0,
     "created_at": "2026-03-02T09:00:00+00:00"},
    {"id": "msg-3", "type": "announcement", "title": "Elections", "content": "Nominations are open",
     "status": "scheduled", "priority": "normal", "delivery_count": "20", "open_count": 4, "click_count": None,
     "created_at": "2026-03-01T09:00:00+00:00"},
]


def message_backend(**procedures):
    return FakeBackend({"messages": MESSAGES, "message_logs": []}, procedures=procedures)


async def test_analytics(make_store, admin):
    store = make_store(MessagesStore, message_backend(), admin)
    await store.open()

    analytics = store.stats
    assert analytics.total_messages == 3
    assert analytics.by_type == {"announcement": 2, "reminder": 1}
    assert analytics.by_status == {"sent": 1, "draft": 1, "scheduled": 1}
    assert analytics.total_deliveries == 60
    assert analytics.total_opens == 34
    assert analytics.total_clicks == 5
    assert analytics.open_rate == 57
    assert analytics.click_rate == 8


async def test_filters_and_search(make_store, admin):
    store = make_store(MessagesStore, message_backend(), admin, type="announcement", search="NOMINATIONS")
    await store.open()
    assert [m["id"] for m in store.collection] == ["msg-3"]


async def test_non_admins_see_nothing(make_store, member):
    backend = message_backend()
    store = make_store(MessagesStore, backend, member)
    await store.open()

    assert store.collection == []
    assert store.stats.total_messages == 0
    assert backend.count("query", "messages") == 0
    with pytest.raises(AuthorizationError):
        await store.delivery_stats("msg-1")


def test_delivery_funnel_counts_later_stages_as_earlier_ones():
    logs = [
        {"status": "sent"},
        {"status": "delivered"},
        {"status": "opened"},
        {"status": "clicked"},
        {"status": "bounced"},
        {"status": "failed"},
        {"status": None},
    ]
    stats = delivery_funnel(logs)
    assert stats.total == 7
    assert stats.sent == 4
    assert stats.delivered == 3
    assert stats.opened == 2
    assert stats.clicked == 1
    assert stats.failed == 2


async def test_delivery_stats_reads_logs(make_store, admin):
    backend = message_backend()
    backend.rows("message_logs").extend(
        [
            {"id": "d1", "message_id": "msg-1", "status": "opened"},
            {"id": "d2", "message_id": "msg-1", "status": "sent"},
            {"id": "d3", "message_id": "msg-2", "status": "sent"},
        ]
    )
    store = make_store(MessagesStore, backend, admin)
    await store.open()

    stats = await store.delivery_stats("msg-1")
    assert (stats.total, stats.sent, stats.opened) == (2, 2, 1)

    backend.fail("query", "message_logs")
    assert (await store.delivery_stats("msg-1")).total == 0


async def test_create_sets_status_from_schedule(make_store, admin):
    backend = message_backend()
    store = make_store(MessagesStore, backend, admin)
    await store.open()

    draft = await store.create({"type": "General", "title": " Hello ", "content": "Body"})
    assert draft["status"] == "draft"
    assert draft["type"] == "general"
    assert draft["title"] == "Hello"
    assert draft["recipients"] == "all"
    assert draft["priority"] == "normal"
    assert (draft["delivery_count"], draft["open_count"], draft["click_count"]) == (0, 0, 0)
    assert draft["created_by"] == admin.id

    scheduled = await store.create(
        {"type": "reminder", "title": "Later", "content": "Body", "scheduled_for": "2026-12-01T08:00:00Z"}
    )
    assert scheduled["status"] == "scheduled"

    with pytest.raises(ValidationError, match="Message type"):
        await store.create({"type": "spam", "title": "x", "content": "y"})
    with pytest.raises(ValidationError, match="ISO-8601"):
        await store.create({"type": "general", "title": "x", "content": "y", "scheduled_for": "next week"})


async def test_sent_messages_cannot_be_edited(make_store, admin):
    backend = message_backend()
    store = make_store(MessagesStore, backend, admin)
    await store.open()

    with pytest.raises(ValidationError, match="no longer be edited"):
        await store.update("msg-1", {"title": "Changed"})

    updated = await store.update("msg-2", {"scheduled_for": "2026-12-01T08:00:00+00:00", "status": "sent"})
    assert updated["status"] == "scheduled"
    assert backend.count("update", "messages") == 1


async def test_send_failure_envelope(make_store, admin):
    backend = message_backend(send_message=lambda args: {"success": False, "error": "Message already sent"})
    store = make_store(MessagesStore, backend, admin)
    await store.open()

    with pytest.raises(MutationError, match="Message already sent"):
        await store.send("msg-1")
    assert ("call", "send_message", {"p_message_id": "msg-1"}) in backend.history
