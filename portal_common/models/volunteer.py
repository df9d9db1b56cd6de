"""Volunteer tasks and the applications members submit for them."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal_common.models.base import Base, GUID, status_enum


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, enum.Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"


class VolunteerTask(Base):
    """A unit of volunteer work published by admins."""

    __tablename__ = "volunteer_tasks"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    priority: Mapped[TaskPriority] = mapped_column(
        status_enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM
    )
    status: Mapped[TaskStatus] = mapped_column(
        status_enum(TaskStatus), nullable=False, default=TaskStatus.OPEN, index=True
    )
    required_skills: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    estimated_hours: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    max_volunteers: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)
    assigned_to: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<VolunteerTask(title={self.title!r}, status={self.status})>"


class VolunteerApplication(Base):
    """A member's application to work on a volunteer task."""

    __tablename__ = "volunteer_applications"

    task_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("volunteer_tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    volunteer_id: Mapped[str] = mapped_column(
        GUID(), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[ApplicationStatus] = mapped_column(
        status_enum(ApplicationStatus), nullable=False, default=ApplicationStatus.PENDING
    )
    application_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hours_logged: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    __table_args__ = (
        Index(
            "ix_volunteer_applications_task_volunteer",
            "task_id",
            "volunteer_id",
            unique=True,
        ),
    )
