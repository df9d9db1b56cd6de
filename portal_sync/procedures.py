"""
Server-side procedures for the self-hosted backend.

Each procedure mirrors a remote procedure of the hosted service and runs in
one transaction, so multi-row workflows (approve a membership request,
register for an event) either fully apply or not at all. Business-rule
refusals are returned as ``{"success": False, "error": ...}`` envelopes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy import MetaData, Table, case, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal_common.logging import get_logger
from portal_common.models.base import new_id
from portal_common.utils import coerce_float, days_ago, parse_timestamp, utcnow
from portal_sync.backend import CurrentUser, Record
from portal_sync.errors import BackendError
from portal_sync.sql_backend import coerce_values, to_record

logger = get_logger(__name__)

Procedure = Callable[["ProcedureContext", dict[str, Any]], Awaitable[Any]]


def failure(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


@dataclass
class ProcedureContext:
    """Session and caller identity handed to every procedure."""

    session: AsyncSession
    user: CurrentUser | None
    admin_roles: tuple[str, ...]
    metadata: MetaData

    def table(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is None:
            raise BackendError(f'relation "public.{name}" does not exist', code="42P01")
        return table

    @property
    def is_admin(self) -> bool:
        return self.user is not None and any(role in self.admin_roles for role in self.user.roles)

    def require_user(self, procedure: str) -> CurrentUser:
        if self.user is None:
            raise BackendError(f"permission denied for function {procedure}", code="42501")
        return self.user

    def require_admin(self, procedure: str) -> CurrentUser:
        user = self.require_user(procedure)
        if not self.is_admin:
            raise BackendError(f"permission denied for function {procedure}", code="42501")
        return user

    async def fetch_one(self, table_name: str, **where: Any) -> Record | None:
        table = self.table(table_name)
        stmt = select(table).where(*(table.c[key] == value for key, value in where.items()))
        row = (await self.session.execute(stmt)).mappings().first()
        return to_record(row) if row is not None else None

    async def fetch_all(self, stmt) -> list[Record]:
        return [to_record(row) for row in (await self.session.execute(stmt)).mappings().all()]

    async def insert(self, table_name: str, values: dict[str, Any]) -> str:
        table = self.table(table_name)
        values = coerce_values(table, values)
        values.setdefault("id", new_id())
        await self.session.execute(insert(table).values(**values))
        return values["id"]

    async def update(self, table_name: str, record_id: str, values: dict[str, Any]) -> None:
        table = self.table(table_name)
        values = coerce_values(table, values)
        values["updated_at"] = utcnow()
        await self.session.execute(update(table).where(table.c.id == record_id).values(**values))


class ProcedureRegistry:
    """Name → procedure mapping."""

    def __init__(self) -> None:
        self._procedures: dict[str, Procedure] = {}

    def register(self, name: str) -> Callable[[Procedure], Procedure]:
        def decorator(fn: Procedure) -> Procedure:
            self._procedures[name] = fn
            return fn

        return decorator

    def get(self, name: str) -> Procedure | None:
        return self._procedures.get(name)

    def names(self) -> list[str]:
        return sorted(self._procedures)

    def __contains__(self, name: object) -> bool:
        return name in self._procedures


default_procedures = ProcedureRegistry()
register = default_procedures.register


def _page(records: list[Record], limit: Any, offset: Any) -> list[Record]:
    start = int(offset or 0)
    return records[start:start + int(limit)] if limit is not None else records[start:]


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@register("get_members_with_roles")
async def get_members_with_roles(ctx: ProcedureContext, args: dict[str, Any]) -> list[Record]:
    profiles = ctx.table("profiles")
    roles = ctx.table("user_roles")
    stmt = (
        select(profiles, roles.c.role)
        .select_from(profiles.outerjoin(roles, roles.c.user_id == profiles.c.user_id))
        .order_by(profiles.c.created_at.desc(), roles.c.created_at.asc())
    )
    if args.get("p_status"):
        stmt = stmt.where(profiles.c.status == args["p_status"])
    if args.get("p_college"):
        stmt = stmt.where(profiles.c.college == args["p_college"])

    seen: set[str] = set()
    members: list[Record] = []
    for record in await ctx.fetch_all(stmt):
        if record["id"] in seen:
            continue
        seen.add(record["id"])
        members.append(record)
    return _page(members, args.get("p_limit"), args.get("p_offset"))


@register("get_member_invitations")
async def get_member_invitations(ctx: ProcedureContext, args: dict[str, Any]) -> list[Record]:
    ctx.require_admin("get_member_invitations")
    invitations = ctx.table("member_invitations")
    stmt = select(invitations).order_by(invitations.c.created_at.desc())
    if args.get("p_status"):
        stmt = stmt.where(invitations.c.status == args["p_status"])
    if args.get("p_offset"):
        stmt = stmt.offset(int(args["p_offset"]))
    if args.get("p_limit") is not None:
        stmt = stmt.limit(int(args["p_limit"]))
    return await ctx.fetch_all(stmt)


async def _insert_invitation(
    ctx: ProcedureContext, args: dict[str, Any], *, status: str, invitation_type: str
) -> dict[str, Any]:
    """Create an invitation, or reopen a closed one for the same email."""
    email = (args.get("p_email") or "").strip().lower()
    if await ctx.fetch_one("profiles", email=email) is not None:
        raise BackendError(
            'duplicate key value violates unique constraint "profiles_email_key"', code="23505"
        )

    values = {
        "full_name": (args.get("p_full_name") or "").strip(),
        "email": email,
        "phone": args.get("p_phone"),
        "college": args.get("p_college"),
        "department": args.get("p_department"),
        "year": args.get("p_year"),
        "intended_role": args.get("p_intended_role") or "member",
        "notes": args.get("p_notes"),
        "status": status,
        "invitation_type": invitation_type,
        "created_by": ctx.user.id if ctx.user else None,
        "created_by_email": ctx.user.email if ctx.user else None,
    }

    previous = await ctx.fetch_one("member_invitations", email=email)
    if previous is None:
        invitation_id = await ctx.insert("member_invitations", values)
        return {"success": True, "invitation_id": invitation_id}
    if previous["status"] in ("pending", "invited"):
        return failure("A membership request for this email is already awaiting review")

    # email is unique on member_invitations, so a closed row is reused.
    await ctx.update(
        "member_invitations",
        previous["id"],
        {
            **values,
            "approved_role": None,
            "rejection_reason": None,
            "processed_by": None,
            "processed_at": None,
        },
    )
    logger.info("member_invitation_reopened", invitation_id=previous["id"], previous=previous["status"])
    return {"success": True, "invitation_id": previous["id"]}


@register("create_member_invitation")
async def create_member_invitation(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.require_admin("create_member_invitation")
    return await _insert_invitation(ctx, args, status="invited", invitation_type="admin_invite")


@register("create_member_request")
async def create_member_request(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.require_user("create_member_request")
    return await _insert_invitation(ctx, args, status="pending", invitation_type="member_request")


@register("approve_member_request")
async def approve_member_request(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    admin = ctx.require_admin("approve_member_request")
    invitation = await ctx.fetch_one("member_invitations", id=args.get("p_invitation_id"))
    if invitation is None:
        return failure("Invitation not found")
    if invitation["status"] not in ("pending", "invited"):
        return failure(f"Invitation has already been {invitation['status']}")

    role = args.get("p_approved_role") or invitation.get("intended_role") or "member"
    now = utcnow()

    profile = await ctx.fetch_one("profiles", email=invitation["email"])
    if profile is None:
        user_id = new_id()
        profile_id = await ctx.insert(
            "profiles",
            {
                "user_id": user_id,
                "full_name": invitation["full_name"],
                "email": invitation["email"],
                "phone": invitation.get("phone"),
                "college": invitation.get("college"),
                "department": invitation.get("department"),
                "year": invitation.get("year"),
                "bio": invitation.get("bio"),
                "status": "active",
                "invitation_id": invitation["id"],
                "invitation_accepted_at": now,
                "created_by": admin.id,
            },
        )
    else:
        profile_id = profile["id"]
        user_id = profile["user_id"] or profile["id"]
        await ctx.update(
            "profiles",
            profile_id,
            {"status": "active", "invitation_id": invitation["id"], "invitation_accepted_at": now},
        )

    if await ctx.fetch_one("user_roles", user_id=user_id, role=role) is None:
        await ctx.insert("user_roles", {"user_id": user_id, "role": role})

    await ctx.update(
        "member_invitations",
        invitation["id"],
        {"status": "accepted", "approved_role": role, "processed_by": admin.id, "processed_at": now},
    )
    logger.info("member_request_approved", invitation_id=invitation["id"], role=role)
    return {"success": True, "profile_id": profile_id}


@register("reject_member_request")
async def reject_member_request(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    admin = ctx.require_admin("reject_member_request")
    invitation = await ctx.fetch_one("member_invitations", id=args.get("p_invitation_id"))
    if invitation is None:
        return failure("Invitation not found")
    if invitation["status"] not in ("pending", "invited"):
        return failure(f"Invitation has already been {invitation['status']}")
    await ctx.update(
        "member_invitations",
        invitation["id"],
        {
            "status": "rejected",
            "rejection_reason": args.get("p_reason") or "No reason provided",
            "processed_by": admin.id,
            "processed_at": utcnow(),
        },
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Volunteers
# ---------------------------------------------------------------------------


@register("get_volunteer_applications")
async def get_volunteer_applications(ctx: ProcedureContext, args: dict[str, Any]) -> list[Record]:
    volunteer_id = args.get("p_volunteer_id")
    if volunteer_id is None:
        ctx.require_admin("get_volunteer_applications")
    else:
        ctx.require_user("get_volunteer_applications")

    applications = ctx.table("volunteer_applications")
    tasks = ctx.table("volunteer_tasks")
    profiles = ctx.table("profiles")

    stmt = select(applications).order_by(applications.c.created_at.desc())
    if volunteer_id is not None:
        stmt = stmt.where(applications.c.volunteer_id == volunteer_id)
    rows = await ctx.fetch_all(stmt)

    task_ids = {row["task_id"] for row in rows}
    volunteer_ids = {row["volunteer_id"] for row in rows}
    task_map = {
        task["id"]: task
        for task in await ctx.fetch_all(select(tasks).where(tasks.c.id.in_(task_ids)))
    } if task_ids else {}
    name_map = {
        profile["id"]: profile["full_name"]
        for profile in await ctx.fetch_all(select(profiles).where(profiles.c.id.in_(volunteer_ids)))
    } if volunteer_ids else {}

    for row in rows:
        row["task"] = task_map.get(row["task_id"])
        row["volunteer_name"] = name_map.get(row["volunteer_id"], "Unknown")
    return rows


@register("approve_volunteer_application")
async def approve_volunteer_application(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    admin = ctx.require_admin("approve_volunteer_application")
    application = await ctx.fetch_one("volunteer_applications", id=args.get("p_application_id"))
    if application is None:
        return failure("Application not found")
    if application["status"] != "pending":
        return failure(f"Application has already been {application['status']}")

    await ctx.update(
        "volunteer_applications",
        application["id"],
        {"status": "approved", "approved_by": admin.id, "approved_at": utcnow()},
    )

    task = await ctx.fetch_one("volunteer_tasks", id=application["task_id"])
    if task is not None:
        assigned = list(task.get("assigned_to") or [])
        if application["volunteer_id"] not in assigned:
            assigned.append(application["volunteer_id"])
        patch: dict[str, Any] = {"assigned_to": assigned}
        if task["status"] == "open" and len(assigned) >= int(task.get("max_volunteers") or 1):
            patch["status"] = "assigned"
        await ctx.update("volunteer_tasks", task["id"], patch)
    return {"success": True}


@register("reject_volunteer_application")
async def reject_volunteer_application(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.require_admin("reject_volunteer_application")
    application = await ctx.fetch_one("volunteer_applications", id=args.get("p_application_id"))
    if application is None:
        return failure("Application not found")
    if application["status"] != "pending":
        return failure(f"Application has already been {application['status']}")
    await ctx.update(
        "volunteer_applications",
        application["id"],
        {"status": "rejected", "admin_notes": args.get("p_reason")},
    )
    return {"success": True}


@register("log_volunteer_hours")
async def log_volunteer_hours(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    user = ctx.require_user("log_volunteer_hours")
    hours = coerce_float(args.get("p_hours"))
    if hours <= 0:
        return failure("Hours must be greater than zero")

    application = await ctx.fetch_one("volunteer_applications", id=args.get("p_application_id"))
    if application is None:
        return failure("Application not found")
    if application["status"] not in ("approved", "completed"):
        return failure("Hours can only be logged for approved applications")

    if not ctx.is_admin:
        volunteer = await ctx.fetch_one("profiles", id=application["volunteer_id"])
        owner = volunteer and (volunteer.get("user_id") or volunteer["id"])
        if owner != user.id:
            raise BackendError("permission denied for function log_volunteer_hours", code="42501")

    applications = ctx.table("volunteer_applications")
    await ctx.session.execute(
        update(applications)
        .where(applications.c.id == application["id"])
        .values(hours_logged=applications.c.hours_logged + hours, updated_at=utcnow())
    )
    refreshed = await ctx.fetch_one("volunteer_applications", id=application["id"])
    return {"success": True, "hours_logged": refreshed["hours_logged"] if refreshed else None}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def _recipients(ctx: ProcedureContext, message: Record) -> list[Record]:
    profiles = ctx.table("profiles")
    roles = ctx.table("user_roles")
    audience = message.get("recipients") or "all"
    recipient_filter = message.get("recipient_filter") or {}

    stmt = select(profiles).where(profiles.c.status == "active")
    if audience == "admins":
        admin_users = select(roles.c.user_id).where(roles.c.role.in_(ctx.admin_roles))
        stmt = stmt.where(profiles.c.user_id.in_(admin_users))
    elif audience == "college":
        stmt = stmt.where(profiles.c.college == recipient_filter.get("college"))
    elif audience == "specific":
        emails = [str(e).strip().lower() for e in recipient_filter.get("emails") or []]
        stmt = stmt.where(profiles.c.email.in_(emails))
    return await ctx.fetch_all(stmt)


@register("send_message")
async def send_message(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.require_admin("send_message")
    message = await ctx.fetch_one("messages", id=args.get("p_message_id"))
    if message is None:
        return failure("Message not found")
    if message["status"] == "sent":
        return failure("Message has already been sent")

    now = utcnow()
    recipients = await _recipients(ctx, message)
    if not recipients:
        await ctx.update("messages", message["id"], {"status": "failed"})
        return failure("No recipients matched this message")

    for recipient in recipients:
        await ctx.insert(
            "message_logs",
            {
                "message_id": message["id"],
                "recipient_email": recipient["email"],
                "recipient_user_id": recipient.get("user_id"),
                "status": "sent",
                "sent_at": now,
            },
        )
    await ctx.update(
        "messages",
        message["id"],
        {"status": "sent", "sent_at": now, "delivery_count": len(recipients)},
    )
    logger.info("message_sent", message_id=message["id"], recipients=len(recipients))
    return {"success": True, "delivery_count": len(recipients)}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@register("register_for_event")
async def register_for_event(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    user = ctx.require_user("register_for_event")
    event = await ctx.fetch_one("events", id=args.get("p_event_id"))
    if event is None:
        return failure("Event not found")
    if event["status"] != "published":
        return failure("Event is not open for registration")

    existing = await ctx.fetch_one("event_registrations", event_id=event["id"], user_id=user.id)
    if existing is not None and existing["status"] != "cancelled":
        return failure("Already registered for this event")

    capacity = event.get("max_attendees")
    if capacity is not None and int(event.get("current_attendees") or 0) >= int(capacity):
        return failure("Event is full")

    deadline = parse_timestamp(event.get("registration_deadline"))
    if deadline is not None and deadline < utcnow():
        return failure("Registration deadline has passed")

    values = {
        "status": "registered",
        "registration_date": utcnow(),
        "special_requirements": args.get("p_special_requirements"),
    }
    if existing is not None:
        registration_id = existing["id"]
        await ctx.update("event_registrations", registration_id, values)
    else:
        registration_id = await ctx.insert(
            "event_registrations", {"event_id": event["id"], "user_id": user.id, **values}
        )

    events = ctx.table("events")
    await ctx.session.execute(
        update(events)
        .where(events.c.id == event["id"])
        .values(current_attendees=events.c.current_attendees + 1, updated_at=utcnow())
    )
    return {"success": True, "registration_id": registration_id}


@register("cancel_event_registration")
async def cancel_event_registration(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    user = ctx.require_user("cancel_event_registration")
    registration = await ctx.fetch_one(
        "event_registrations", event_id=args.get("p_event_id"), user_id=user.id
    )
    if registration is None or registration["status"] != "registered":
        return failure("No active registration for this event")

    await ctx.update("event_registrations", registration["id"], {"status": "cancelled"})
    events = ctx.table("events")
    await ctx.session.execute(
        update(events)
        .where(events.c.id == registration["event_id"])
        .values(
            current_attendees=case(
                (events.c.current_attendees > 0, events.c.current_attendees - 1),
                else_=0,
            ),
            updated_at=utcnow(),
        )
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@register("clear_old_logs")
async def clear_old_logs(ctx: ProcedureContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.require_admin("clear_old_logs")
    try:
        days = int(args.get("p_days_to_keep", 30))
    except (TypeError, ValueError):
        return failure("p_days_to_keep must be a whole number")
    if days < 0:
        return failure("p_days_to_keep cannot be negative")

    logs = ctx.table("system_logs")
    cutoff = days_ago(days)
    result = await ctx.session.execute(delete(logs).where(logs.c.created_at < cutoff))
    logger.info("system_logs_pruned", deleted=result.rowcount, days_to_keep=days)
    return {"success": True, "deleted_count": result.rowcount}
