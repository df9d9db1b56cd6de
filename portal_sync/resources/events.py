"""Events: paged programme listing, registrations and attendance statistics."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from portal_common.utils import coerce_int, parse_date, parse_timestamp
from portal_sync.authz import Permission
from portal_sync.backend import Query, Record
from portal_sync.errors import ValidationError
from portal_sync.fallback import Resolution
from portal_sync.orchestrator import (
    LocalPatch,
    Mutation,
    clean_text,
    optional_int,
    require_fields,
    require_identifier,
)
from portal_sync.reconciler import active_value, count_by, rate_percent
from portal_sync.store import ResourceStore

DEFAULT_PAGE_SIZE = 20
DEFAULT_STATUSES = ("published", "completed")
EVENT_TYPES = ("friday", "dars", "workshop", "special", "meeting", "conference", "social", "charity")
EVENT_FIELDS = (
    "title",
    "description",
    "type",
    "category",
    "date",
    "start_time",
    "end_time",
    "location",
    "venue_details",
    "max_attendees",
    "registration_required",
    "registration_deadline",
    "price",
    "currency",
    "speaker",
    "speaker_bio",
    "status",
    "is_featured",
    "image_url",
    "tags",
    "requirements",
)
EVENT_STATUSES = ("draft", "published", "cancelled", "completed")


@dataclass(frozen=True)
class EventStats:
    total_events: int = 0
    upcoming_events: int = 0
    completed_events: int = 0
    total_attendees: int = 0
    average_attendance: float = 0.0
    fill_rate: int = 0
    popular_types: tuple[tuple[str, int], ...] = ()


def attendance_summary(events: list[Record]) -> tuple[float, int]:
    """Average attendance (events with attendees only) and capacity fill rate."""
    attended = [coerce_int(e.get("current_attendees")) for e in events if coerce_int(e.get("current_attendees")) > 0]
    average = round(sum(attended) / len(attended), 2) if attended else 0.0

    capped = [e for e in events if coerce_int(e.get("max_attendees")) > 0]
    capacity = sum(coerce_int(e.get("max_attendees")) for e in capped)
    filled = sum(coerce_int(e.get("current_attendees")) for e in capped)
    return average, rate_percent(filled, capacity)


def popular_types(events: list[Record]) -> tuple[tuple[str, int], ...]:
    counts = count_by(events, "type")
    return tuple(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


class EventsStore(ResourceStore[EventStats]):
    resource = "events"
    collection_names = ("events",)

    def __init__(
        self,
        *args: Any,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort_by: str = "date",
        descending: bool = False,
        type: str | None = None,
        category: str | None = None,
        status: str | None = None,
        featured: bool | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        search: str | None = None,
        **kwargs: Any,
    ) -> None:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        self.page = page
        self.limit = limit
        self.sort_by = sort_by
        self.descending = descending
        self.type = type
        self.category = category
        self.status = status
        self.featured = featured
        self.date_from = date_from
        self.date_to = date_to
        self.search = search
        super().__init__(*args, **kwargs)

    def build_query(self) -> Query:
        eq: dict[str, Any] = {}
        in_: dict[str, Any] = {}
        for column, value in (("type", self.type), ("category", self.category)):
            if active_value(value) is not None:
                eq[column] = value
        # no status means the public listing; "all" lifts the filter
        if self.status is None:
            in_["status"] = list(DEFAULT_STATUSES)
        elif active_value(self.status) is not None:
            eq["status"] = self.status
        if self.featured is not None:
            eq["is_featured"] = self.featured

        gte = {"date": self.date_from} if active_value(self.date_from) else {}
        lte = {"date": self.date_to} if active_value(self.date_to) else {}
        return Query(
            eq=eq,
            in_=in_,
            gte=gte,
            lte=lte,
            search=active_value(self.search),
            search_fields=("title", "description"),
            order_by=self.sort_by,
            descending=self.descending,
            offset=(self.page - 1) * self.limit,
            limit=self.limit,
            count=True,
        )

    async def load(self) -> dict[str, Resolution]:
        query = self.build_query()
        events = await self.resolver(
            "events", [self.table_tier("events", query)], seed_query=query
        ).resolve()
        return {"events": events}

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total() / self.limit) if self.total() else 0

    def derive(self, collections: Mapping[str, list[Record]], now: datetime) -> EventStats:
        events = collections["events"]
        today = now.date()
        average, fill_rate = attendance_summary(events)
        return EventStats(
            total_events=len(events),
            upcoming_events=sum(
                1 for e in events if (day := parse_date(e.get("date"))) is not None and day >= today
            ),
            completed_events=sum(1 for e in events if e.get("status") == "completed"),
            total_attendees=sum(coerce_int(e.get("current_attendees")) for e in events),
            average_attendance=average,
            fill_rate=fill_rate,
            popular_types=popular_types(events),
        )

    # -- mutations ------------------------------------------------------

    @staticmethod
    def _event_changes(data: Mapping[str, Any]) -> dict[str, Any]:
        changes = {key: data[key] for key in EVENT_FIELDS if key in data}
        for key in ("title", "description", "category", "location", "speaker"):
            if key in changes:
                changes[key] = clean_text(changes[key])
        if "type" in changes and changes["type"] not in EVENT_TYPES:
            raise ValidationError(f"Unknown event type {changes['type']!r}")
        if "status" in changes and changes["status"] not in EVENT_STATUSES:
            raise ValidationError(f"Unknown event status {changes['status']!r}")
        if "date" in changes and parse_date(changes["date"]) is None:
            raise ValidationError("date must be YYYY-MM-DD")
        if changes.get("registration_deadline") and parse_timestamp(changes["registration_deadline"]) is None:
            raise ValidationError("registration_deadline must be an ISO-8601 timestamp")
        if "max_attendees" in changes:
            changes["max_attendees"] = optional_int(changes["max_attendees"], "max_attendees")
            if changes["max_attendees"] is not None and changes["max_attendees"] < 1:
                raise ValidationError("max_attendees must be positive")
        return changes

    def _owner(self, event_id: str) -> str | None:
        event = self.find(event_id) or {}
        return event.get("organizer_id") or event.get("created_by")

    async def create(self, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_fields(data, "title", "type", "date")
            record = {"description": "", "category": "general", "location": "", "tags": [], "requirements": []}
            record.update({k: v for k, v in self._event_changes(data).items() if v is not None})
            user = self.authorizer.user
            record.update(
                status="draft",
                current_attendees=0,
                organizer_id=user.id if user else None,
                created_by=user.id if user else None,
            )
            return record

        return await self.execute(
            Mutation(
                action="create",
                permission=Permission.AUTHENTICATED,
                prepare=prepare,
                perform=lambda record: self.backend.insert("events", record),
                success_message="Event created successfully",
                failure_message="Failed to create event",
                local_patch=lambda _, created: [LocalPatch("events", upsert=created)],
            )
        )

    async def update(self, event_id: str, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_identifier(event_id, "event id")
            changes = self._event_changes(data)
            if not changes:
                raise ValidationError("Nothing to update")
            if "title" in changes and changes["title"] is None:
                raise ValidationError("Title cannot be empty")
            return changes

        return await self.execute(
            Mutation(
                action="update",
                permission=Permission.OWNER_OR_ADMIN,
                owner_id=self._owner(event_id),
                prepare=prepare,
                perform=lambda changes: self.backend.update("events", event_id, changes),
                success_message="Event updated successfully",
                failure_message="Failed to update event",
                local_patch=lambda _, updated: [LocalPatch("events", upsert=updated)],
            )
        )

    async def delete(self, event_id: str) -> None:
        await self.execute(
            Mutation(
                action="delete",
                permission=Permission.OWNER_OR_ADMIN,
                owner_id=self._owner(event_id),
                prepare=lambda: require_identifier(event_id, "event id"),
                perform=lambda record_id: self.backend.delete("events", record_id),
                success_message="Event deleted successfully",
                failure_message="Failed to delete event",
                local_patch=lambda record_id, _: [LocalPatch("events", remove_id=record_id)],
            )
        )

    async def register(self, event_id: str, special_requirements: str | None = None) -> Any:
        return await self.execute(
            Mutation(
                action="register",
                permission=Permission.AUTHENTICATED,
                prepare=lambda: {
                    "p_event_id": require_identifier(event_id, "event id"),
                    "p_special_requirements": clean_text(special_requirements),
                },
                perform=lambda payload: self.backend.call("register_for_event", payload),
                success_message="Successfully registered for event",
                failure_message="Failed to register for event",
                duplicate_message="Already registered for this event",
            )
        )

    async def cancel_registration(self, event_id: str) -> Any:
        return await self.execute(
            Mutation(
                action="cancel_registration",
                permission=Permission.AUTHENTICATED,
                prepare=lambda: {"p_event_id": require_identifier(event_id, "event id")},
                perform=lambda payload: self.backend.call("cancel_event_registration", payload),
                success_message="Registration cancelled",
                failure_message="Failed to cancel registration",
            )
        )
