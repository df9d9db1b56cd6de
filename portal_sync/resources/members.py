"""Members and membership invitations/requests."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from portal_common.logging import get_logger
from portal_sync.authz import Permission
from portal_sync.backend import Query, QueryResult, Record
from portal_sync.errors import AuthorizationError, ValidationError
from portal_sync.fallback import FallbackTier, Resolution, left_join
from portal_sync.orchestrator import (
    LocalPatch,
    Mutation,
    clean_text,
    normalize_email,
    optional_int,
    require_fields,
    require_identifier,
)
from portal_sync.reconciler import FilterCriteria, active_value, rate_percent, within_window
from portal_sync.result import Err, Ok, Result
from portal_sync.store import ResourceStore

logger = get_logger(__name__)

MEMBER_SEARCH_FIELDS = ("full_name", "email", "department", "college")
EDITABLE_PROFILE_FIELDS = ("full_name", "phone", "college", "department", "year", "bio", "status")
DUPLICATE_MEMBER_MESSAGE = "A member with this email already exists."
ROLE_MARKER = re.compile(r"Role:\s*([^|]+)")


@dataclass(frozen=True)
class MemberStats:
    total_members: int = 0
    active_members: int = 0
    pending_invitations: int = 0
    pending_requests: int = 0
    recent_joins: int = 0
    active_rate: int = 0


def role_from_bio(bio: Any) -> str | None:
    """Profiles created before roles existed carry ``Role: X`` in their bio."""
    if not bio:
        return None
    match = ROLE_MARKER.search(str(bio))
    return match.group(1).strip() if match else None


def normalize_member(record: Mapping[str, Any]) -> Record:
    member = dict(record)
    member["full_name"] = member.get("full_name") or "Unknown"
    member["email"] = member.get("email") or ""
    if not member.get("role"):
        member["role"] = role_from_bio(member.get("bio"))
    return member


class MembersStore(ResourceStore[MemberStats]):
    resource = "members"
    collection_names = ("members", "invitations")

    def __init__(self, *args: Any, status: str | None = None, college: str | None = None, **kwargs: Any) -> None:
        self.status = status
        self.college = college
        super().__init__(*args, **kwargs)

    # -- loading --------------------------------------------------------

    async def load(self) -> dict[str, Resolution]:
        status, college = active_value(self.status), active_value(self.college)
        member_query = Query(
            eq={k: v for k, v in (("status", status), ("college", college)) if v is not None},
            order_by="created_at",
            descending=True,
            limit=self.settings.member_fetch_limit,
        )
        members = await self.resolver(
            "members",
            [
                FallbackTier("rpc", lambda: self._members_rpc(status, college)),
                FallbackTier("join", lambda: self._members_join(member_query)),
            ],
            seed_query=member_query,
        ).resolve()
        members = Resolution(
            records=[normalize_member(r) for r in members.records],
            total=members.total,
            tier=members.tier,
            degraded=members.degraded,
            error=members.error,
        )

        if not self.authorizer.is_admin:
            return {"members": members, "invitations": Resolution.skipped()}

        invitation_query = Query(
            order_by="created_at", descending=True, limit=self.settings.invitation_fetch_limit
        )
        invitations = await self.resolver(
            "invitations",
            [
                FallbackTier(
                    "rpc",
                    lambda: self.accessor.call_records(
                        "get_member_invitations",
                        {"p_status": None, "p_limit": self.settings.invitation_fetch_limit, "p_offset": 0},
                    ),
                ),
                self.table_tier("member_invitations", invitation_query),
            ],
            seed_query=invitation_query,
        ).resolve()
        return {"members": members, "invitations": invitations}

    async def _members_rpc(self, status: str | None, college: str | None) -> Result[QueryResult]:
        return await self.accessor.call_records(
            "get_members_with_roles",
            {
                "p_limit": self.settings.member_fetch_limit,
                "p_offset": 0,
                "p_status": status,
                "p_college": college,
            },
        )

    async def _members_join(self, query: Query) -> Result[QueryResult]:
        profiles = await self.accessor.fetch("profiles", query)
        if isinstance(profiles, Err):
            return profiles

        user_ids = [p["user_id"] for p in profiles.value.records if p.get("user_id")]
        roles: list[Record] = []
        if user_ids:
            lookup = await self.accessor.fetch(
                "user_roles", Query(in_={"user_id": user_ids}, order_by="created_at")
            )
            if isinstance(lookup, Ok):
                roles = lookup.value.records
            else:
                logger.warning("member_roles_unavailable", error=lookup.error.message)

        joined = left_join(
            profiles.value.records, roles, "user_id", "user_id", attach_as="role", value_field="role"
        )
        return Ok(QueryResult(joined, profiles.value.total))

    # -- derived state --------------------------------------------------

    def derive(self, collections: Mapping[str, list[Record]], now: datetime) -> MemberStats:
        members = collections["members"]
        invitations = collections["invitations"]
        window = timedelta(days=self.settings.recent_join_days)
        active = sum(1 for m in members if m.get("status") == "active")
        return MemberStats(
            total_members=len(members),
            active_members=active,
            pending_invitations=sum(1 for i in invitations if i.get("status") == "invited"),
            pending_requests=sum(1 for i in invitations if i.get("status") == "pending"),
            recent_joins=sum(1 for m in members if within_window(m.get("created_at"), now, window)),
            active_rate=rate_percent(active, len(members)),
        )

    def combined(self) -> list[Record]:
        """Members followed by invitations that have no member with the same email."""
        members = self._reconciler.get("members")
        emails = {str(m.get("email") or "").lower() for m in members}
        extra = [
            i for i in self._reconciler.get("invitations")
            if str(i.get("email") or "").lower() not in emails
        ]
        return members + extra

    def pending_requests(self) -> list[Record]:
        return [i for i in self._reconciler.get("invitations") if i.get("status") == "pending"]

    def filter_members(
        self,
        search: str | None = None,
        college: str | None = None,
        status: str | None = None,
        role: str | None = None,
    ) -> list[Record]:
        return self.filter(
            FilterCriteria(
                search=search,
                search_fields=MEMBER_SEARCH_FIELDS,
                exact={"college": college, "status": status, "role": role},
            )
        )

    # -- mutations ------------------------------------------------------

    def _invitation_payload(self, data: Mapping[str, Any], include_role: bool) -> dict[str, Any]:
        require_fields(data, "full_name", "email")
        payload = {
            "p_full_name": clean_text(data.get("full_name")),
            "p_email": normalize_email(data.get("email")),
            "p_phone": clean_text(data.get("phone")),
            "p_college": clean_text(data.get("college")),
            "p_department": clean_text(data.get("department")),
            "p_year": optional_int(data.get("year"), "year"),
            "p_notes": clean_text(data.get("notes")),
        }
        if include_role:
            payload["p_intended_role"] = clean_text(data.get("intended_role")) or "member"
        return payload

    @staticmethod
    def _invitation_patch(status: str):
        def patch(payload: dict[str, Any], result: Any) -> list[LocalPatch]:
            record = {
                "id": result.get("invitation_id") if isinstance(result, Mapping) else None,
                "full_name": payload["p_full_name"],
                "email": payload["p_email"],
                "college": payload["p_college"],
                "department": payload["p_department"],
                "year": payload["p_year"],
                "status": status,
            }
            return [LocalPatch("invitations", upsert=record)] if record["id"] else []

        return patch

    async def create_invitation(self, data: Mapping[str, Any]) -> Any:
        return await self.execute(
            Mutation(
                action="create_invitation",
                permission=Permission.ADMIN,
                prepare=lambda: self._invitation_payload(data, include_role=True),
                perform=lambda payload: self.backend.call("create_member_invitation", payload),
                success_message="Member invitation created successfully",
                failure_message="Failed to create member invitation",
                duplicate_message=DUPLICATE_MEMBER_MESSAGE,
                local_patch=self._invitation_patch("invited"),
            )
        )

    async def create_request(self, data: Mapping[str, Any]) -> Any:
        return await self.execute(
            Mutation(
                action="create_request",
                permission=Permission.AUTHENTICATED,
                prepare=lambda: self._invitation_payload(data, include_role=False),
                perform=lambda payload: self.backend.call("create_member_request", payload),
                success_message="Membership request submitted. An admin will review it shortly.",
                failure_message="Failed to submit membership request",
                duplicate_message=DUPLICATE_MEMBER_MESSAGE,
                local_patch=self._invitation_patch("pending"),
            )
        )

    async def approve(self, invitation_id: str, role: str = "member") -> Any:
        def prepare() -> dict[str, Any]:
            return {
                "p_invitation_id": require_identifier(invitation_id, "invitation id"),
                "p_approved_role": clean_text(role) or "member",
            }

        return await self.execute(
            Mutation(
                action="approve",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda payload: self.backend.call("approve_member_request", payload),
                success_message="Member request approved",
                failure_message="Failed to approve member request",
                duplicate_message=DUPLICATE_MEMBER_MESSAGE,
                local_patch=lambda payload, _: [
                    LocalPatch("invitations", upsert={"id": payload["p_invitation_id"], "status": "accepted"})
                ],
            )
        )

    async def reject(self, invitation_id: str, reason: str | None = None) -> Any:
        def prepare() -> dict[str, Any]:
            return {
                "p_invitation_id": require_identifier(invitation_id, "invitation id"),
                "p_reason": clean_text(reason) or "No reason provided",
            }

        return await self.execute(
            Mutation(
                action="reject",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda payload: self.backend.call("reject_member_request", payload),
                success_message="Member request rejected",
                failure_message="Failed to reject member request",
                local_patch=lambda payload, _: [
                    LocalPatch("invitations", upsert={"id": payload["p_invitation_id"], "status": "rejected"})
                ],
            )
        )

    async def update(self, member_id: str, patch: Mapping[str, Any]) -> Record:
        existing = self.find(member_id) or {}

        def prepare() -> dict[str, Any]:
            require_identifier(member_id, "member id")
            changes = {k: patch[k] for k in EDITABLE_PROFILE_FIELDS if k in patch}
            if not changes:
                raise ValidationError("Nothing to update")
            if "status" in changes and not self.authorizer.is_admin:
                raise AuthorizationError("Unauthorized: only an admin can change a member's status")
            if "full_name" in changes and clean_text(changes["full_name"]) is None:
                raise ValidationError("Full name cannot be empty")
            for key in ("full_name", "phone", "college", "department", "bio"):
                if key in changes:
                    changes[key] = clean_text(changes[key])
            if "year" in changes:
                changes["year"] = optional_int(changes["year"], "year")
            return changes

        return await self.execute(
            Mutation(
                action="update",
                permission=Permission.OWNER_OR_ADMIN,
                owner_id=existing.get("user_id"),
                prepare=prepare,
                perform=lambda changes: self.backend.update("profiles", member_id, changes),
                success_message="Member updated successfully",
                failure_message="Failed to update member",
                duplicate_message=DUPLICATE_MEMBER_MESSAGE,
                local_patch=lambda changes, _: [LocalPatch("members", upsert={"id": member_id, **changes})],
            )
        )

    async def delete(self, member_id: str) -> None:
        await self.execute(
            Mutation(
                action="delete",
                permission=Permission.ADMIN,
                prepare=lambda: require_identifier(member_id, "member id"),
                perform=lambda record_id: self.backend.delete("profiles", record_id),
                success_message="Member deleted successfully",
                failure_message="Failed to delete member",
                local_patch=lambda record_id, _: [LocalPatch("members", remove_id=record_id)],
            )
        )
