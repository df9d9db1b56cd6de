"""Tests for the self-hosted backend and its procedures against SQLite."""

from datetime import timedelta

import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine

from portal_common.models.base import Base, new_id
from portal_common.security import hash_password
from portal_common.utils import utcnow
from portal_sync.backend import CurrentUser, Query
from portal_sync.errors import BackendError, BackendErrorKind, MutationError, PermissionDeniedError
from portal_sync.resources.events import EventsStore
from portal_sync.resources.members import MembersStore
from portal_sync.resources.messages import MessagesStore
from portal_sync.resources.monitoring import MonitoringStore
from portal_sync.resources.volunteers import VolunteersStore
from portal_sync.sql_backend import SqlBackend

ADMIN_ROLES = ("admin", "super_admin")


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def backend_for(engine):
    def build(user=None):
        return SqlBackend.for_engine(engine, user=user, admin_roles=ADMIN_ROLES)

    return build


async def add_member(backend, email, full_name, role=None, **extra):
    user_id = new_id()
    profile = await backend.insert(
        "profiles", {"user_id": user_id, "email": email, "full_name": full_name, **extra}
    )
    roles = ()
    if role is not None:
        await backend.insert("user_roles", {"user_id": user_id, "role": role})
        roles = (role,)
    return profile, CurrentUser(id=user_id, email=email, roles=roles)


@pytest.fixture
async def people(backend_for):
    """An admin and two ordinary members."""
    root = backend_for()
    _, admin = await add_member(
        root, "admin@example.org", "Portal Admin", role="admin", college="Engineering"
    )
    amina_profile, amina = await add_member(root, "amina@example.org", "Amina Yusuf", role="member")
    _, bello = await add_member(root, "bello@example.org", "Bello Musa", college="Sciences")
    return {"admin": admin, "amina": amina, "amina_profile": amina_profile, "bello": bello}


async def test_insert_query_update_delete(backend_for):
    backend = backend_for()
    created = await backend.insert(
        "profiles", {"email": "zainab@example.org", "full_name": "Zainab Ali", "college": "Engineering"}
    )
    assert created["status"] == "active"
    assert isinstance(created["created_at"], str)
    await backend.insert(
        "profiles", {"email": "umar@example.org", "full_name": "Umar Sani", "status": "alumni"}
    )
    await backend.insert("profiles", {"email": "hauwa@example.org", "full_name": "Hauwa Zainab"})

    active = await backend.query("profiles", Query(eq={"status": "active"}, order_by="full_name"))
    assert [r["full_name"] for r in active.records] == ["Hauwa Zainab", "Zainab Ali"]

    found = await backend.query(
        "profiles", Query(search="ZAINAB", search_fields=("full_name",), limit=1, count=True)
    )
    assert len(found.records) == 1
    assert found.total == 2

    updated = await backend.update("profiles", created["id"], {"phone": "0803", "id": "ignored"})
    assert updated["phone"] == "0803"
    assert updated["id"] == created["id"]

    await backend.delete("profiles", created["id"])
    remaining = await backend.query("profiles", Query(count=True))
    assert remaining.total == 2


async def test_search_treats_wildcards_literally(backend_for):
    backend = backend_for()
    await backend.insert("profiles", {"email": "a@example.org", "full_name": "Ada 100% Lovelace"})
    await backend.insert("profiles", {"email": "b@example.org", "full_name": "Grace_Hopper"})
    await backend.insert("profiles", {"email": "c@example.org", "full_name": "Alan Turing"})

    async def names(term):
        result = await backend.query("profiles", Query(search=term, search_fields=("full_name",)))
        return sorted(r["full_name"] for r in result.records)

    assert await names("%") == ["Ada 100% Lovelace"]
    assert await names("_") == ["Grace_Hopper"]
    assert await names("a_a") == []
    assert await names("turing") == ["Alan Turing"]


async def test_error_kinds(backend_for):
    backend = backend_for()
    await backend.insert("profiles", {"email": "dup@example.org", "full_name": "First"})

    with pytest.raises(BackendError) as duplicate:
        await backend.insert("profiles", {"email": "dup@example.org", "full_name": "Second"})
    assert duplicate.value.kind is BackendErrorKind.DUPLICATE

    with pytest.raises(BackendError) as missing_table:
        await backend.query("no_such_table")
    assert missing_table.value.kind is BackendErrorKind.MISSING_SCHEMA

    with pytest.raises(BackendError) as missing_column:
        await backend.query("profiles", Query(eq={"nickname": "x"}))
    assert missing_column.value.kind is BackendErrorKind.MISSING_SCHEMA

    with pytest.raises(BackendError) as missing_procedure:
        await backend.call("no_such_procedure")
    assert missing_procedure.value.kind is BackendErrorKind.MISSING_SCHEMA

    with pytest.raises(BackendError) as not_found:
        await backend.update("profiles", new_id(), {"phone": "1"})
    assert not_found.value.kind is BackendErrorKind.NOT_FOUND

    with pytest.raises(BackendError) as bad_value:
        await backend.insert("profiles", {"email": "x@example.org", "full_name": "X", "status": "bogus"})
    assert bad_value.value.code == "22P02"


async def test_resolve_user_reads_roles(backend_for, people):
    backend = backend_for()
    user = await backend.resolve_user("  ADMIN@example.org ")
    assert user == people["admin"]
    assert await backend.current_user() == user
    assert await backend_for().resolve_user("nobody@example.org") is None


async def test_authenticate_checks_the_stored_password(engine, backend_for, people):
    admin = people["admin"]
    credentials = Base.metadata.tables["member_credentials"]
    async with engine.begin() as conn:
        await conn.execute(
            insert(credentials).values(
                id=new_id(), user_id=admin.id, password_hash=hash_password("correct horse")
            )
        )

    assert await backend_for().authenticate("admin@example.org", "wrong horse") is None
    assert await backend_for().authenticate("amina@example.org", "correct horse") is None
    assert await backend_for().authenticate("nobody@example.org", "correct horse") is None

    backend = backend_for()
    user = await backend.authenticate(" Admin@Example.org", "correct horse")
    assert user == admin
    assert await backend.current_user() == admin

    with pytest.raises(BackendError) as hidden:
        await backend.query("member_credentials")
    assert hidden.value.kind is BackendErrorKind.PERMISSION


async def test_membership_request_approval_workflow(make_store, backend_for, people):
    requester = CurrentUser(id=new_id(), email="new@example.org")
    request_store = make_store(MembersStore, backend_for(requester), requester)
    await request_store.open()
    await request_store.create_request({"full_name": "New Person", "email": "New@Example.org", "year": 1})

    admin = people["admin"]
    store = make_store(MembersStore, backend_for(admin), admin)
    await store.open()

    assert store.stats.pending_requests == 1
    assert store.stats.total_members == 3
    invitation = store.pending_requests()[0]
    assert invitation["invitation_type"] == "member_request"

    await store.approve(invitation["id"])

    members = {m["email"]: m for m in store.collection}
    assert members["new@example.org"]["role"] == "member"
    assert members["new@example.org"]["status"] == "active"
    assert members["admin@example.org"]["role"] == "admin"
    assert store.stats.pending_requests == 0

    with pytest.raises(MutationError, match="already been accepted"):
        await store.approve(invitation["id"])


async def test_procedures_enforce_admin_rights(backend_for, people):
    member_backend = backend_for(people["amina"])
    with pytest.raises(BackendError) as denied:
        await member_backend.call("get_member_invitations", {})
    assert denied.value.kind is BackendErrorKind.PERMISSION

    with pytest.raises(BackendError) as duplicate:
        await backend_for(people["admin"]).call(
            "create_member_invitation", {"p_full_name": "Again", "p_email": "amina@example.org"}
        )
    assert duplicate.value.kind is BackendErrorKind.DUPLICATE


async def test_volunteer_application_and_hours(make_store, backend_for, people):
    admin, amina, bello = people["admin"], people["amina"], people["bello"]
    admin_store = make_store(VolunteersStore, backend_for(admin), admin)
    await admin_store.open()
    task = await admin_store.create_task({"title": "Usher", "category": "events", "max_volunteers": 1})

    member_store = make_store(VolunteersStore, backend_for(amina), amina)
    await member_store.open()
    application = await member_store.apply(task["id"], message="Count me in")
    assert application["volunteer_id"] == people["amina_profile"]["id"]

    await admin_store.refresh()
    assert admin_store.stats.pending_applications == 1
    assert admin_store.applications[0]["volunteer_name"] == "Amina Yusuf"
    await admin_store.approve(application["id"])
    assert admin_store.find(task["id"])["status"] == "assigned"

    result = await member_store.log_hours(application["id"], 2.5)
    assert result["hours_logged"] == 2.5
    await member_store.log_hours(application["id"], 1)
    await member_store.refresh()
    assert member_store.stats.total_hours == 3.5

    outsider_store = make_store(VolunteersStore, backend_for(bello), bello)
    with pytest.raises(PermissionDeniedError):
        await outsider_store.log_hours(application["id"], 1)


async def test_send_message_logs_deliveries(make_store, backend_for, people):
    admin = people["admin"]
    store = make_store(MessagesStore, backend_for(admin), admin)
    await store.open()

    message = await store.create({"type": "announcement", "title": "Welcome", "content": "Hello all"})
    assert message["status"] == "draft"
    await store.send(message["id"])

    sent = store.find(message["id"])
    assert sent["status"] == "sent"
    assert sent["delivery_count"] == 3
    stats = await store.delivery_stats(message["id"])
    assert (stats.total, stats.sent, stats.delivered) == (3, 3, 0)

    with pytest.raises(MutationError, match="already been sent"):
        await store.send(message["id"])

    college = await store.create(
        {"type": "general", "title": "Engineers", "content": "Lab night", "recipients": "college",
         "recipient_filter": {"college": "Engineering"}}
    )
    await store.send(college["id"])
    assert store.find(college["id"])["delivery_count"] == 1


async def test_event_capacity_and_cancellation(make_store, backend_for, people):
    admin, amina, bello = people["admin"], people["amina"], people["bello"]
    event = await backend_for(admin).insert(
        "events",
        {"title": "Workshop", "type": "workshop", "date": "2030-05-01", "status": "published",
         "max_attendees": 1},
    )

    amina_store = make_store(EventsStore, backend_for(amina), amina)
    bello_store = make_store(EventsStore, backend_for(bello), bello)
    await amina_store.open()
    await bello_store.open()

    await amina_store.register(event["id"])
    assert amina_store.find(event["id"])["current_attendees"] == 1

    with pytest.raises(MutationError, match="Event is full"):
        await bello_store.register(event["id"])
    with pytest.raises(MutationError, match="Already registered"):
        await amina_store.register(event["id"])

    await amina_store.cancel_registration(event["id"])
    assert amina_store.find(event["id"])["current_attendees"] == 0

    await bello_store.register(event["id"])
    await amina_store.refresh()
    assert amina_store.find(event["id"])["current_attendees"] == 1


async def test_send_without_recipients_shows_failed_status(make_store, backend_for, people):
    admin = people["admin"]
    store = make_store(MessagesStore, backend_for(admin), admin)
    await store.open()
    message = await store.create(
        {"type": "general", "title": "Nobody", "content": "Anyone there?", "recipients": "specific",
         "recipient_filter": {"emails": ["ghost@example.org"]}}
    )

    with pytest.raises(MutationError, match="No recipients"):
        await store.send(message["id"])

    assert store.find(message["id"])["status"] == "failed"


async def test_rejected_requester_can_apply_again(make_store, backend_for, people):
    requester = CurrentUser(id=new_id(), email="again@example.org")
    request_store = make_store(MembersStore, backend_for(requester), requester)
    await request_store.open()
    await request_store.create_request({"full_name": "Try Again", "email": "again@example.org"})

    with pytest.raises(MutationError, match="awaiting review"):
        await request_store.create_request({"full_name": "Try Again", "email": "again@example.org"})

    admin = people["admin"]
    store = make_store(MembersStore, backend_for(admin), admin)
    await store.open()
    first = store.pending_requests()[0]
    await store.reject(first["id"], reason="Incomplete details")
    assert store.pending_requests() == []

    await request_store.create_request(
        {"full_name": "Try Again", "email": "again@example.org", "department": "Physics"}
    )

    await store.refresh()
    [reopened] = store.pending_requests()
    assert reopened["id"] == first["id"]
    assert reopened["department"] == "Physics"
    assert reopened["rejection_reason"] is None


async def test_clear_old_logs_deletes_in_one_statement(make_store, backend_for, people):
    admin = people["admin"]
    root = backend_for()
    for age in (1, 10, 45, 90):
        await root.insert(
            "system_logs",
            {"level": "info", "category": "system", "message": f"{age} days old",
             "created_at": (utcnow() - timedelta(days=age)).isoformat()},
        )

    with pytest.raises(BackendError) as denied:
        await backend_for(people["amina"]).call("clear_old_logs", {"p_days_to_keep": 30})
    assert denied.value.kind is BackendErrorKind.PERMISSION

    store = make_store(MonitoringStore, backend_for(admin), admin)
    await store.open()
    assert await store.clear_old_logs(days_to_keep=30) == 2

    remaining = await root.query("system_logs", Query(order_by="created_at", descending=True))
    assert [r["message"] for r in remaining.records] == ["1 days old", "10 days old"]
    assert store.stats.total_logs == 2
