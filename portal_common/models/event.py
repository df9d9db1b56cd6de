"""Event models - published programmes and member registrations."""

import enum
from datetime import date as calendar_date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal_common.models.base import Base, GUID, status_enum


class EventType(str, enum.Enum):
    FRIDAY = "friday"
    DARS = "dars"
    WORKSHOP = "workshop"
    SPECIAL = "special"
    MEETING = "meeting"
    CONFERENCE = "conference"
    SOCIAL = "social"
    CHARITY = "charity"


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RegistrationStatus(str, enum.Enum):
    REGISTERED = "registered"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class Event(Base):
    """A scheduled programme (Friday khutbah, dars, workshop, ...)."""

    __tablename__ = "events"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[EventType] = mapped_column(status_enum(EventType), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[str] = mapped_column(String(10), nullable=False, default="00:00")
    end_time: Mapped[str] = mapped_column(String(10), nullable=False, default="00:00")
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    venue_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_attendees: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_attendees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    registration_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    registration_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    speaker: Mapped[str | None] = mapped_column(String(255), nullable=True)
    speaker_bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    organizer_id: Mapped[str | None] = mapped_column(GUID(), nullable=True, index=True)
    status: Mapped[EventStatus] = mapped_column(
        status_enum(EventStatus), nullable=False, default=EventStatus.DRAFT, index=True
    )
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    requirements: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)

    def __repr__(self) -> str:
        return f"<Event(title={self.title!r}, date={self.date})>"


class EventRegistration(Base):
    """A member's registration for an event."""

    __tablename__ = "event_registrations"

    event_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(GUID(), nullable=False, index=True)
    status: Mapped[RegistrationStatus] = mapped_column(
        status_enum(RegistrationStatus), nullable=False, default=RegistrationStatus.REGISTERED
    )
    registration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    special_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_event_registrations_event_user", "event_id", "user_id", unique=True),
    )
