"""Team model and soft-removable membership records."""

import uuid
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from calltracker.core.permissions import TeamRole
from calltracker.models.base import TimestampMixin, new_uuid, utc_field, utcnow


class Team(TimestampMixin, SQLModel, table=True):
    __tablename__ = "teams"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(max_length=100, nullable=False)
    description: str = Field(default="", max_length=500)
    manager_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", nullable=True, index=True)
    is_active: bool = Field(default=True)


class TeamMember(SQLModel, table=True):
    """One row per (team, user). Removal flips is_active to keep history."""

    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    team_id: uuid.UUID = Field(foreign_key="teams.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    team_role: TeamRole = Field(default=TeamRole.AGENT)
    is_active: bool = Field(default=True)
    joined_at: datetime = utc_field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class TeamCreate(SQLModel):
    name: str = Field(max_length=100)
    description: str = Field(default="", max_length=500)
    manager_id: uuid.UUID | None = None


class TeamRead(SQLModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    description: str
    manager_id: uuid.UUID | None
    is_active: bool


class TeamMemberAdd(SQLModel):
    user_id: uuid.UUID
    team_role: TeamRole = TeamRole.AGENT


class TeamMemberRead(SQLModel):
    team_id: uuid.UUID
    user_id: uuid.UUID
    team_role: TeamRole
    is_active: bool
    joined_at: datetime
