"""
SQLAlchemy database models for the portal.
"""

from portal_common.models.base import Base, GUID
from portal_common.models.member import (
    InvitationStatus,
    InvitationType,
    MemberCredential,
    MemberInvitation,
    MemberStatus,
    Profile,
    UserRole,
)
from portal_common.models.volunteer import (
    ApplicationStatus,
    TaskPriority,
    TaskStatus,
    VolunteerApplication,
    VolunteerTask,
)
from portal_common.models.monitoring import LogLevel, ServiceStatus, SystemHealthMetric, SystemLog
from portal_common.models.messaging import (
    DeliveryStatus,
    Message,
    MessageLog,
    MessagePriority,
    MessageStatus,
    MessageType,
    RecipientGroup,
)
from portal_common.models.event import Event, EventRegistration, EventStatus, EventType, RegistrationStatus

__all__ = [
    "Base",
    "GUID",
    "Profile",
    "UserRole",
    "MemberCredential",
    "MemberInvitation",
    "MemberStatus",
    "InvitationStatus",
    "InvitationType",
    "VolunteerTask",
    "VolunteerApplication",
    "TaskPriority",
    "TaskStatus",
    "ApplicationStatus",
    "SystemLog",
    "SystemHealthMetric",
    "LogLevel",
    "ServiceStatus",
    "Message",
    "MessageLog",
    "MessageType",
    "MessageStatus",
    "MessagePriority",
    "RecipientGroup",
    "DeliveryStatus",
    "Event",
    "EventRegistration",
    "EventType",
    "EventStatus",
    "RegistrationStatus",
]
