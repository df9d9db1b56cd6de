"""Member models - profiles, role assignments and membership invitations."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portal_common.models.base import Base, GUID, status_enum


class MemberStatus(str, enum.Enum):
    """Lifecycle of a member profile."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ALUMNI = "alumni"
    INVITED = "invited"
    PENDING = "pending"
    SUSPENDED = "suspended"


class InvitationStatus(str, enum.Enum):
    """Lifecycle of an admin invitation or a self-service membership request."""

    PENDING = "pending"
    INVITED = "invited"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class InvitationType(str, enum.Enum):
    ADMIN_INVITE = "admin_invite"
    MEMBER_REQUEST = "member_request"


class Profile(Base):
    """A member of the organization."""

    __tablename__ = "profiles"

    user_id: Mapped[str | None] = mapped_column(GUID(), nullable=True, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    college: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[MemberStatus] = mapped_column(
        status_enum(MemberStatus), nullable=False, default=MemberStatus.ACTIVE, index=True
    )
    invitation_id: Mapped[str | None] = mapped_column(
        GUID(), ForeignKey("member_invitations.id", ondelete="SET NULL"), nullable=True
    )
    invitation_accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)

    def __repr__(self) -> str:
        return f"<Profile(email={self.email!r}, status={self.status})>"


class UserRole(Base):
    """Role granted to an authenticated user (admin roles unlock management actions)."""

    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(GUID(), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="member")

    __table_args__ = (
        Index("ix_user_roles_user_role", "user_id", "role", unique=True),
    )


class MemberCredential(Base):
    """Password hash for signing in to the self-hosted backend.

    Kept apart from ``profiles`` so member listings never carry the hash.
    """

    __tablename__ = "member_credentials"

    user_id: Mapped[str] = mapped_column(GUID(), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)


class MemberInvitation(Base):
    """Invitation sent by an admin, or a membership request awaiting review."""

    __tablename__ = "member_invitations"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    college: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[InvitationStatus] = mapped_column(
        status_enum(InvitationStatus), nullable=False, default=InvitationStatus.INVITED, index=True
    )
    invitation_type: Mapped[InvitationType] = mapped_column(
        status_enum(InvitationType), nullable=False, default=InvitationType.ADMIN_INVITE
    )
    intended_role: Mapped[str] = mapped_column(String(64), nullable=False, default="member")
    approved_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)
    created_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_by: Mapped[str | None] = mapped_column(GUID(), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<MemberInvitation(email={self.email!r}, status={self.status})>"
