"""Tests for the members store."""

from datetime import timedelta

import pytest

from portal_common.utils import utcnow
from portal_sync.errors import (
    AuthorizationError,
    BackendError,
    DuplicateRecordError,
    MutationError,
    ValidationError,
)
from portal_sync.notify import NotificationLevel
from portal_sync.resources.members import DUPLICATE_MEMBER_MESSAGE, MembersStore, role_from_bio
from tests.fakes import FakeBackend


def iso(**delta):
    return (utcnow() - timedelta(**delta)).isoformat()


MEMBERS = [
    {"id": "m1", "user_id": "u1", "full_name": "Amina Yusuf", "email": "amina@example.org",
     "college": "Engineering", "status": "active", "role": "admin", "created_at": iso(days=3)},
    {"id": "m2", "user_id": "u2", "full_name": "Bello Musa", "email": "bello@example.org",
     "college": "Sciences", "status": "inactive", "role": "member", "created_at": iso(days=90)},
    {"id": "m3", "user_id": "u3", "full_name": "Aisha Bello", "email": "aisha@example.org",
     "college": "Engineering", "status": "active", "role": "member", "created_at": iso(days=10)},
]

INVITATIONS = [
    {"id": "i1", "full_name": "New Person", "email": "new@example.org", "status": "invited",
     "created_at": iso(days=1)},
    {"id": "i2", "full_name": "Requester", "email": "req@example.org", "status": "pending",
     "created_at": iso(days=2)},
    {"id": "i3", "full_name": "Amina Yusuf", "email": "AMINA@example.org", "status": "accepted",
     "created_at": iso(days=5)},
]


def rpc_backend(**procedures):
    handlers = {
        "get_members_with_roles": lambda args: [dict(m) for m in MEMBERS],
        "get_member_invitations": lambda args: [dict(i) for i in INVITATIONS],
    }
    handlers.update(procedures)
    return FakeBackend(procedures=handlers)


async def test_loads_members_and_invitations_through_procedures(make_store, admin):
    backend = rpc_backend()
    store = make_store(MembersStore, backend, admin)
    await store.open()

    assert [m["id"] for m in store.collection] == ["m1", "m2", "m3"]
    assert len(store.collections["invitations"]) == 3
    assert not store.using_fallback_data

    stats = store.stats
    assert stats.total_members == 3
    assert stats.active_members == 2
    assert stats.active_rate == 67
    assert stats.pending_invitations == 1
    assert stats.pending_requests == 1
    assert stats.recent_joins == 1

    args = backend.history[0][2]
    assert args["p_status"] is None and args["p_college"] is None


async def test_status_filter_is_forwarded(make_store, admin):
    backend = rpc_backend()
    store = make_store(MembersStore, backend, admin, status="active", college="all")
    await store.open()

    args = next(payload for method, target, payload in backend.history if target == "get_members_with_roles")
    assert args["p_status"] == "active"
    assert args["p_college"] is None


async def test_join_tier_attaches_roles_and_reads_legacy_bio(make_store, admin):
    backend = FakeBackend(
        {
            "profiles": [
                {"id": "p1", "user_id": "u1", "full_name": "Amina", "email": "a@example.org",
                 "status": "active", "created_at": iso(days=1)},
                {"id": "p2", "user_id": "u2", "full_name": None, "email": "b@example.org",
                 "status": "active", "bio": "Role: Treasurer | Joined 2023", "created_at": iso(days=2)},
            ],
            "user_roles": [{"id": "r1", "user_id": "u1", "role": "admin", "created_at": iso(days=1)}],
            "member_invitations": [],
        }
    )
    store = make_store(MembersStore, backend, admin)
    await store.open()

    members = {m["id"]: m for m in store.collection}
    assert members["p1"]["role"] == "admin"
    assert members["p2"]["role"] == "Treasurer"
    assert members["p2"]["full_name"] == "Unknown"
    assert backend.count("call", "get_members_with_roles") == 1


async def test_join_tier_survives_missing_roles_table(make_store, admin):
    backend = FakeBackend(
        {
            "profiles": [{"id": "p1", "user_id": "u1", "full_name": "Amina", "email": "a@example.org"}],
            "member_invitations": [],
        }
    )
    store = make_store(MembersStore, backend, admin)
    await store.open()

    assert [m["id"] for m in store.collection] == ["p1"]
    assert store.collection[0]["role"] is None
    assert not store.using_fallback_data


async def test_seed_fallback_when_everything_fails(make_store, admin, notifier):
    store = make_store(MembersStore, FakeBackend(), admin)
    await store.open()

    assert store.using_fallback_data
    assert all(m["id"].startswith("seed-") for m in store.collection)
    assert store.stats.total_members == len(store.collection)
    assert store.error is None
    assert len(notifier.messages(NotificationLevel.INFO)) == 1


async def test_no_seed_means_error(make_store, admin):
    store = make_store(MembersStore, FakeBackend(), admin, seeds={})
    await store.open()

    assert store.collection == []
    assert "Unable to load members" in store.error


async def test_non_admin_never_loads_invitations(make_store, member):
    backend = rpc_backend()
    store = make_store(MembersStore, backend, member)
    await store.open()

    assert len(store.collection) == 3
    assert store.collections["invitations"] == []
    assert backend.count("call", "get_member_invitations") == 0
    assert backend.count("query", "member_invitations") == 0


async def test_combined_skips_invitations_for_existing_members(make_store, admin):
    store = make_store(MembersStore, rpc_backend(), admin)
    await store.open()

    combined = store.combined()
    assert [r["id"] for r in combined] == ["m1", "m2", "m3", "i1", "i2"]
    assert [r["id"] for r in store.pending_requests()] == ["i2"]


async def test_filter_members(make_store, admin):
    store = make_store(MembersStore, rpc_backend(), admin)
    await store.open()

    assert [m["id"] for m in store.filter_members(search="bello")] == ["m2", "m3"]
    assert [m["id"] for m in store.filter_members(college="Engineering", role="member")] == ["m3"]
    assert len(store.filter_members(status="all")) == 3


async def test_create_invitation_normalizes_payload(make_store, admin, notifier):
    captured = []

    def create(args):
        captured.append(args)
        return {"success": True, "invitation_id": "i9"}

    backend = rpc_backend(create_member_invitation=create)
    store = make_store(MembersStore, backend, admin)
    await store.open()

    await store.create_invitation(
        {"full_name": " Zainab Ali ", "email": " Zainab@Example.ORG", "year": "2", "college": ""}
    )

    assert captured == [
        {
            "p_full_name": "Zainab Ali",
            "p_email": "zainab@example.org",
            "p_phone": None,
            "p_college": None,
            "p_department": None,
            "p_year": 2,
            "p_notes": None,
            "p_intended_role": "member",
        }
    ]
    assert backend.count("call", "get_members_with_roles") == 2
    assert notifier.messages(NotificationLevel.SUCCESS) == ["Member invitation created successfully"]


async def test_duplicate_invitation_reports_friendly_message(make_store, admin, notifier):
    def create(args):
        raise BackendError('duplicate key value violates unique constraint "member_invitations_email_key"', code="23505")

    store = make_store(MembersStore, rpc_backend(create_member_invitation=create), admin)
    await store.open()
    before = len(store.collections["invitations"])

    with pytest.raises(DuplicateRecordError) as excinfo:
        await store.create_invitation({"full_name": "Amina", "email": "amina@example.org"})
    assert len(store.collections["invitations"]) == before
    assert excinfo.value.message == DUPLICATE_MEMBER_MESSAGE
    assert notifier.messages(NotificationLevel.ERROR) == [DUPLICATE_MEMBER_MESSAGE]


async def test_member_cannot_invite(make_store, member):
    backend = rpc_backend()
    store = make_store(MembersStore, backend, member)
    await store.open()

    with pytest.raises(AuthorizationError):
        await store.create_invitation({"full_name": "X", "email": "x@example.org"})
    assert backend.count("call", "create_member_invitation") == 0


async def test_invalid_email_is_rejected_before_the_call(make_store, member):
    backend = rpc_backend(create_member_request=lambda args: {"success": True})
    store = make_store(MembersStore, backend, member)
    await store.open()

    with pytest.raises(ValidationError):
        await store.create_request({"full_name": "X", "email": "nope"})
    assert backend.count("call", "create_member_request") == 0

    await store.create_request({"full_name": "X", "email": "x@example.org"})
    sent = next(p for m, t, p in backend.history if t == "create_member_request")
    assert "p_intended_role" not in sent


async def test_approve_reloads_and_notifies(make_store, admin, notifier):
    backend = rpc_backend(approve_member_request=lambda args: {"success": True, "user_id": "u9"})
    store = make_store(MembersStore, backend, admin)
    await store.open()

    await store.approve("i2", role="")

    call = next(p for m, t, p in backend.history if t == "approve_member_request")
    assert call == {"p_invitation_id": "i2", "p_approved_role": "member"}
    assert backend.count("call", "get_member_invitations") == 2
    assert notifier.messages(NotificationLevel.SUCCESS) == ["Member request approved"]


async def test_approve_failure_envelope(make_store, admin, notifier):
    backend = rpc_backend(
        approve_member_request=lambda args: {"success": False, "error": "Invitation has already been accepted"}
    )
    store = make_store(MembersStore, backend, admin)
    await store.open()

    with pytest.raises(MutationError, match="already been accepted"):
        await store.approve("i3")
    assert notifier.messages(NotificationLevel.SUCCESS) == []
    assert backend.count("call", "get_members_with_roles") == 2


async def test_reject_defaults_reason(make_store, admin):
    backend = rpc_backend(reject_member_request=lambda args: {"success": True})
    store = make_store(MembersStore, backend, admin)
    await store.open()

    await store.reject("i2", reason="   ")
    call = next(p for m, t, p in backend.history if t == "reject_member_request")
    assert call["p_reason"] == "No reason provided"


async def test_members_may_edit_only_their_own_profile(make_store, member):
    own = {"id": "p-own", "user_id": member.id, "full_name": "Me", "email": member.email}
    other = {"id": "p-other", "user_id": "u-other", "full_name": "Them", "email": "them@example.org"}
    backend = FakeBackend({"profiles": [own, other], "user_roles": []})
    store = make_store(MembersStore, backend, member)
    await store.open()

    updated = await store.update("p-own", {"phone": " 0803 ", "role": "admin"})
    assert updated["phone"] == "0803"
    sent = next(p for m, t, p in backend.history if m == "update")
    assert sent == {"id": "p-own", "phone": "0803"}
    assert backend.rows("profiles")[0].get("role") is None

    with pytest.raises(AuthorizationError, match="owner"):
        await store.update("p-other", {"phone": "1"})
    assert backend.count("update", "profiles") == 1


async def test_update_requires_changes(make_store, admin):
    store = make_store(MembersStore, FakeBackend({"profiles": [{"id": "p1"}], "user_roles": []}), admin)
    await store.open()

    with pytest.raises(ValidationError, match="Nothing to update"):
        await store.update("p1", {"email": "changed@example.org"})
    with pytest.raises(ValidationError, match="Full name"):
        await store.update("p1", {"full_name": "  "})


async def test_optimistic_delete_removes_locally(make_store, admin):
    backend = FakeBackend({"profiles": [{"id": "p1"}, {"id": "p2"}], "user_roles": []})
    store = make_store(MembersStore, backend, admin, optimistic=True)
    await store.open()

    await store.delete("p1")
    assert [m["id"] for m in store.collection] == ["p2"]
    assert [r["id"] for r in backend.rows("profiles")] == ["p2"]


@pytest.mark.parametrize(
    "bio, role",
    [("Role: IT Head", "IT Head"), ("Joined 2021 | Role: member ", "member"), ("No marker", None), (None, None)],
)
def test_role_from_bio(bio, role):
    assert role_from_bio(bio) == role


async def test_only_admins_change_member_status(make_store, member, admin):
    own = {"id": "p-own", "user_id": member.id, "full_name": "Me", "email": member.email,
           "status": "suspended"}
    backend = FakeBackend({"profiles": [own], "user_roles": []})
    store = make_store(MembersStore, backend, member)
    await store.open()

    with pytest.raises(AuthorizationError, match="only an admin can change"):
        await store.update("p-own", {"status": "active", "phone": "0803"})
    assert backend.count("update", "profiles") == 0
    assert backend.rows("profiles")[0]["status"] == "suspended"

    admin_store = make_store(MembersStore, backend, admin)
    await admin_store.open()
    updated = await admin_store.update("p-own", {"status": "active"})
    assert updated["status"] == "active"
