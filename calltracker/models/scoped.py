"""Ownership columns shared by every record the data scope filters."""

import uuid

from sqlmodel import Field, SQLModel


class ScopedRecordMixin(SQLModel):
    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    team_id: uuid.UUID | None = Field(default=None, foreign_key="teams.id", nullable=True, index=True)
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    assigned_to: uuid.UUID | None = Field(default=None, foreign_key="users.id", nullable=True, index=True)
    owner_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", nullable=True, index=True)
