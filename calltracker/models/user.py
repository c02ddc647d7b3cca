"""User model: the principal. Belongs to exactly one organization.

``organization_id`` is ``None`` only for super-admins, who are unscoped.
"""

import json
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from calltracker.core.permissions import Permission, Role, default_permissions
from calltracker.models.base import TimestampMixin, new_uuid, utc_field


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    organization_id: uuid.UUID | None = Field(
        default=None, foreign_key="organizations.id", nullable=True, index=True,
    )
    email: str = Field(max_length=320, nullable=False, index=True)
    password_hash: str = Field(nullable=False)
    display_name: str = Field(default="", max_length=255)
    role: Role = Field(default=Role.AGENT, index=True)

    # JSON array of permission tokens. Normally default_permissions(role),
    # but explicit overrides are stored verbatim and win.
    permissions: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))

    # Primary team; multi-team membership
    # lives in team_members.
    team_id: uuid.UUID | None = Field(default=None, nullable=True)

    is_active: bool = Field(default=True)
    last_login_at: datetime | None = utc_field(default=None)

    @property
    def permission_set(self) -> frozenset[str]:
        return frozenset(json.loads(self.permissions or "[]"))

    def set_permissions(self, permissions: Iterable[str]) -> None:
        self.permissions = json.dumps(sorted(str(p) for p in permissions))

    def assign_role(self, role: Role, permissions: Iterable[str] | None = None) -> None:
        """Change role; permissions reset to the role defaults unless overridden."""
        self.role = role
        self.set_permissions(default_permissions(role) if permissions is None else permissions)


# ── Pydantic schemas ─────────────────────────────────────────

class UserCreate(SQLModel):
    email: str = Field(max_length=320)
    password: str = Field(min_length=8, max_length=128)
    display_name: str = Field(default="", max_length=255)
    role: Role = Role.AGENT
    permissions: list[Permission] | None = None
    team_id: uuid.UUID | None = None


class RoleUpdate(SQLModel):
    role: Role
    permissions: list[Permission] | None = None


class UserRead(SQLModel):
    id: uuid.UUID
    organization_id: uuid.UUID | None
    email: str
    display_name: str
    role: Role
    permissions: list[str]
    team_id: uuid.UUID | None
    is_active: bool


def to_user_read(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        organization_id=user.organization_id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        permissions=sorted(user.permission_set),
        team_id=user.team_id,
        is_active=user.is_active,
    )
