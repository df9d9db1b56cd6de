"""Admin communications: broadcast messages and delivery analytics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from portal_common.logging import get_logger
from portal_common.utils import coerce_int, parse_timestamp
from portal_sync.authz import Permission
from portal_sync.backend import Query, Record
from portal_sync.errors import ValidationError
from portal_sync.fallback import Resolution
from portal_sync.orchestrator import (
    LocalPatch,
    Mutation,
    clean_text,
    require_fields,
    require_identifier,
)
from portal_sync.reconciler import active_value, count_by, rate_percent
from portal_sync.result import Err
from portal_sync.store import ResourceStore

logger = get_logger(__name__)

MESSAGE_TYPES = ("announcement", "newsletter", "reminder", "urgent", "general")
MESSAGE_PRIORITIES = ("low", "normal", "high", "urgent")
RECIPIENT_GROUPS = ("all", "members", "admins", "specific", "college")
EDITABLE_MESSAGE_FIELDS = (
    "type",
    "title",
    "content",
    "recipients",
    "recipient_filter",
    "priority",
    "scheduled_for",
)

# Each delivery state also counts toward the earlier funnel stages.
_FUNNEL = {
    "sent": {"sent", "delivered", "opened", "clicked"},
    "delivered": {"delivered", "opened", "clicked"},
    "opened": {"opened", "clicked"},
    "clicked": {"clicked"},
    "failed": {"failed", "bounced"},
}


@dataclass(frozen=True)
class MessageAnalytics:
    total_messages: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    total_deliveries: int = 0
    total_opens: int = 0
    total_clicks: int = 0
    open_rate: int = 0
    click_rate: int = 0


@dataclass(frozen=True)
class MessageDeliveryStats:
    total: int = 0
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    failed: int = 0


def delivery_funnel(logs: list[Record]) -> MessageDeliveryStats:
    statuses = [str(log.get("status")) for log in logs]
    counts = {stage: sum(1 for s in statuses if s in members) for stage, members in _FUNNEL.items()}
    return MessageDeliveryStats(total=len(logs), **counts)


def _choice(value: Any, allowed: tuple[str, ...], label: str, default: str | None = None) -> str:
    choice = (clean_text(value) or default or "").lower()
    if choice not in allowed:
        raise ValidationError(f"{label} must be one of: {', '.join(allowed)}")
    return choice


class MessagesStore(ResourceStore[MessageAnalytics]):
    resource = "messages"
    collection_names = ("messages",)

    def __init__(
        self,
        *args: Any,
        type: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        search: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.type = type
        self.status = status
        self.priority = priority
        self.search = search
        super().__init__(*args, **kwargs)

    async def load(self) -> dict[str, Resolution]:
        if not self.authorizer.is_admin:
            return {"messages": Resolution.skipped()}
        eq = {
            key: value
            for key, value in (
                ("type", active_value(self.type)),
                ("status", active_value(self.status)),
                ("priority", active_value(self.priority)),
            )
            if value is not None
        }
        query = Query(
            eq=eq,
            search=active_value(self.search),
            search_fields=("title", "content"),
            order_by="created_at",
            descending=True,
        )
        messages = await self.resolver(
            "messages", [self.table_tier("messages", query)], seed_query=query
        ).resolve()
        return {"messages": messages}

    def derive(self, collections: Mapping[str, list[Record]], now: datetime) -> MessageAnalytics:
        messages = collections["messages"]
        deliveries = sum(coerce_int(m.get("delivery_count")) for m in messages)
        opens = sum(coerce_int(m.get("open_count")) for m in messages)
        clicks = sum(coerce_int(m.get("click_count")) for m in messages)
        return MessageAnalytics(
            total_messages=len(messages),
            by_type=count_by(messages, "type"),
            by_status=count_by(messages, "status"),
            by_priority=count_by(messages, "priority"),
            total_deliveries=deliveries,
            total_opens=opens,
            total_clicks=clicks,
            open_rate=rate_percent(opens, deliveries),
            click_rate=rate_percent(clicks, deliveries),
        )

    async def delivery_stats(self, message_id: str) -> MessageDeliveryStats:
        """Delivery funnel for one message, read from its delivery logs."""
        self.authorizer.require(Permission.ADMIN)
        outcome = await self.accessor.fetch(
            "message_logs", Query(eq={"message_id": require_identifier(message_id, "message id")})
        )
        if isinstance(outcome, Err):
            logger.warning("delivery_stats_unavailable", message_id=message_id, error=outcome.error.message)
            return MessageDeliveryStats()
        return delivery_funnel(outcome.value.records)

    # -- mutations ------------------------------------------------------

    def _message_fields(self, data: Mapping[str, Any], partial: bool) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if not partial or "type" in data:
            fields["type"] = _choice(data.get("type"), MESSAGE_TYPES, "Message type")
        if not partial or "recipients" in data:
            fields["recipients"] = _choice(data.get("recipients"), RECIPIENT_GROUPS, "Recipients", "all")
        if not partial or "priority" in data:
            fields["priority"] = _choice(data.get("priority"), MESSAGE_PRIORITIES, "Priority", "normal")
        for key in ("title", "content"):
            if not partial or key in data:
                fields[key] = clean_text(data.get(key))
                if fields[key] is None:
                    raise ValidationError(f"{key.capitalize()} cannot be empty")
        if "recipient_filter" in data:
            fields["recipient_filter"] = data.get("recipient_filter")
        if "scheduled_for" in data or not partial:
            scheduled = data.get("scheduled_for")
            if scheduled and parse_timestamp(scheduled) is None:
                raise ValidationError("scheduled_for must be an ISO-8601 timestamp")
            fields["scheduled_for"] = scheduled or None
        return fields

    async def create(self, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_fields(data, "type", "title", "content")
            record = self._message_fields(data, partial=False)
            user = self.authorizer.user
            record.update(
                status="scheduled" if record.get("scheduled_for") else "draft",
                delivery_count=0,
                open_count=0,
                click_count=0,
                created_by=user.id if user else None,
            )
            return record

        return await self.execute(
            Mutation(
                action="create",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda record: self.backend.insert("messages", record),
                success_message="Message created successfully",
                failure_message="Failed to create message",
                local_patch=lambda _, created: [LocalPatch("messages", upsert=created)],
            )
        )

    async def update(self, message_id: str, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_identifier(message_id, "message id")
            changes = self._message_fields(
                {k: v for k, v in data.items() if k in EDITABLE_MESSAGE_FIELDS}, partial=True
            )
            if not changes:
                raise ValidationError("Nothing to update")
            existing = self.find(message_id)
            if existing is not None and existing.get("status") == "sent":
                raise ValidationError("Sent messages can no longer be edited")
            if "scheduled_for" in changes:
                changes["status"] = "scheduled" if changes["scheduled_for"] else "draft"
            return changes

        return await self.execute(
            Mutation(
                action="update",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda changes: self.backend.update("messages", message_id, changes),
                success_message="Message updated successfully",
                failure_message="Failed to update message",
                local_patch=lambda _, updated: [LocalPatch("messages", upsert=updated)],
            )
        )

    async def delete(self, message_id: str) -> None:
        await self.execute(
            Mutation(
                action="delete",
                permission=Permission.ADMIN,
                prepare=lambda: require_identifier(message_id, "message id"),
                perform=lambda record_id: self.backend.delete("messages", record_id),
                success_message="Message deleted successfully",
                failure_message="Failed to delete message",
                local_patch=lambda record_id, _: [LocalPatch("messages", remove_id=record_id)],
            )
        )

    async def send(self, message_id: str) -> Any:
        return await self.execute(
            Mutation(
                action="send",
                permission=Permission.ADMIN,
                prepare=lambda: {"p_message_id": require_identifier(message_id, "message id")},
                perform=lambda payload: self.backend.call("send_message", payload),
                success_message="Message sent successfully",
                failure_message="Failed to send message",
            )
        )
