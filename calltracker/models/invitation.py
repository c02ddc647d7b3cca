"""Invitation model: time-bounded, single-use offer to join an organization."""

import json
import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, String, Text, text
from sqlmodel import Column, Field, SQLModel

from calltracker.core.permissions import Permission, Role, TeamRole
from calltracker.models.base import new_uuid, utc_field, utcnow


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    REVOKED = "revoked"


class Invitation(SQLModel, table=True):
    __tablename__ = "invitations"
    __table_args__ = (
        # At most one pending invitation per (organization, email).
        Index(
            "uq_invitations_pending_email",
            "organization_id",
            "email",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_invitations_org_status_created", "organization_id", "status", "created_at"),
        Index("ix_invitations_expires_status", "expires_at", "status"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    email: str = Field(max_length=320, nullable=False, index=True)
    inviter_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)

    role: Role = Field(default=Role.AGENT)
    permissions: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    team_id: uuid.UUID | None = Field(default=None, foreign_key="teams.id", nullable=True, index=True)
    team_role: TeamRole = Field(default=TeamRole.AGENT)

    # Unique across every invitation ever issued; rows are never deleted.
    token: str = Field(max_length=64, unique=True, nullable=False, index=True)

    # Plain string column so the partial index predicate is backend-neutral.
    status: InvitationStatus = Field(
        default=InvitationStatus.PENDING,
        sa_column=Column(String(20), nullable=False, index=True),
    )
    message: str = Field(default="", max_length=500)

    created_at: datetime = utc_field(default_factory=utcnow, nullable=False)
    updated_at: datetime = utc_field(default_factory=utcnow, nullable=False)
    expires_at: datetime = utc_field(nullable=False)
    accepted_at: datetime | None = utc_field(default=None)
    declined_at: datetime | None = utc_field(default=None)
    revoked_at: datetime | None = utc_field(default=None)
    accepted_user_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", nullable=True)

    reminders_sent: int = Field(default=0)
    next_reminder_at: datetime | None = utc_field(default=None)

    @property
    def permission_list(self) -> list[str]:
        return json.loads(self.permissions or "[]")

    def set_permissions(self, permissions) -> None:
        self.permissions = json.dumps(sorted(str(p) for p in permissions))

    def effective_status(self, now: datetime) -> InvitationStatus:
        """Stored status, except a pending invitation past expiry reads as expired."""
        status = InvitationStatus(self.status)
        if status == InvitationStatus.PENDING and self.expires_at <= now:
            return InvitationStatus.EXPIRED
        return status

    def is_usable(self, now: datetime) -> bool:
        return self.effective_status(now) == InvitationStatus.PENDING


# ── Pydantic schemas ─────────────────────────────────────────

class InvitationCreate(SQLModel):
    email: str = Field(max_length=320)
    role: Role = Role.AGENT
    team_id: uuid.UUID | None = None
    team_role: TeamRole = TeamRole.AGENT
    permissions: list[Permission] | None = None
    message: str = Field(default="", max_length=500)


class InvitationRead(SQLModel):
    """Public contract: token, status, expiry, role, organization, team."""
    id: uuid.UUID
    organization_id: uuid.UUID
    email: str
    role: Role
    team_id: uuid.UUID | None
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime
    invitation_url: str


class InvitationDetails(SQLModel):
    """What an invitee sees before accepting."""
    organization_id: uuid.UUID
    organization_name: str
    team_name: str | None
    email: str
    role: Role
    message: str
    expires_at: datetime
    days_remaining: int


class InvitationAccept(SQLModel):
    display_name: str = Field(default="", max_length=255)
    password: str = Field(min_length=8, max_length=128)


class ReminderRead(SQLModel):
    reminders_sent: int
    next_reminder_at: datetime | None
