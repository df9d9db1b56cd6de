"""Outbound communication models - messages and their per-recipient delivery logs."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal_common.models.base import Base, GUID, status_enum


class MessageType(str, enum.Enum):
    ANNOUNCEMENT = "announcement"
    NEWSLETTER = "newsletter"
    REMINDER = "reminder"
    URGENT = "urgent"
    GENERAL = "general"


class MessageStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


class MessagePriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class RecipientGroup(str, enum.Enum):
    ALL = "all"
    MEMBERS = "members"
    ADMINS = "admins"
    SPECIFIC = "specific"
    COLLEGE = "college"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"
    BOUNCED = "bounced"


class Message(Base):
    """A broadcast message composed by an admin."""

    __tablename__ = "messages"

    type: Mapped[MessageType] = mapped_column(status_enum(MessageType), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    recipients: Mapped[RecipientGroup] = mapped_column(
        status_enum(RecipientGroup), nullable=False, default=RecipientGroup.ALL
    )
    recipient_filter: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[MessageStatus] = mapped_column(
        status_enum(MessageStatus), nullable=False, default=MessageStatus.DRAFT, index=True
    )
    priority: Mapped[MessagePriority] = mapped_column(
        status_enum(MessagePriority), nullable=False, default=MessagePriority.NORMAL
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    open_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)

    def __repr__(self) -> str:
        return f"<Message(title={self.title!r}, status={self.status})>"


class MessageLog(Base):
    """Delivery state of one message for one recipient."""

    __tablename__ = "message_logs"

    message_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_user_id: Mapped[str | None] = mapped_column(GUID(), nullable=True)
    status: Mapped[DeliveryStatus] = mapped_column(
        status_enum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
