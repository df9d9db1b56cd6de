"""Request bodies accepted by the portal API."""

from typing import Any

from pydantic import BaseModel, Field


class SessionIn(BaseModel):
    email: str
    password: str = Field(min_length=1)


class InvitationIn(BaseModel):
    full_name: str
    email: str
    phone: str | None = None
    college: str | None = None
    department: str | None = None
    year: int | None = None
    notes: str | None = None
    intended_role: str | None = None


class ApproveIn(BaseModel):
    role: str = "member"


class RejectIn(BaseModel):
    reason: str | None = None


class MemberPatch(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    college: str | None = None
    department: str | None = None
    year: int | None = None
    bio: str | None = None
    status: str | None = None


class TaskIn(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    status: str | None = None
    required_skills: list[str] | None = None
    estimated_hours: float | None = None
    max_volunteers: int | None = None
    location: str | None = None
    deadline: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    tags: list[str] | None = None
    notes: str | None = None


class ApplicationIn(BaseModel):
    message: str | None = None


class HoursIn(BaseModel):
    hours: float = Field(gt=0)


class LogIn(BaseModel):
    level: str
    message: str
    category: str
    service_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MetricIn(BaseModel):
    service_name: str
    metric_name: str
    metric_value: float | None = None
    metric_unit: str | None = None
    status: str = "operational"
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageIn(BaseModel):
    type: str | None = None
    title: str | None = None
    content: str | None = None
    recipients: str | None = None
    recipient_filter: dict[str, Any] | None = None
    priority: str | None = None
    scheduled_for: str | None = None


class EventIn(BaseModel):
    title: str | None = None
    description: str | None = None
    type: str | None = None
    category: str | None = None
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    location: str | None = None
    venue_details: str | None = None
    max_attendees: int | None = None
    registration_required: bool | None = None
    registration_deadline: str | None = None
    price: float | None = None
    currency: str | None = None
    speaker: str | None = None
    speaker_bio: str | None = None
    status: str | None = None
    is_featured: bool | None = None
    image_url: str | None = None
    tags: list[str] | None = None
    requirements: list[str] | None = None


class RegistrationIn(BaseModel):
    special_requirements: str | None = None


def changes(body: BaseModel) -> dict[str, Any]:
    """Only the fields the client actually sent."""

    return body.model_dump(exclude_unset=True)
