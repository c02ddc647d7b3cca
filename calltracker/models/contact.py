"""Contact model: a lead or customer record owned by a tenant."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from calltracker.models.base import TimestampMixin, new_uuid
from calltracker.models.scoped import ScopedRecordMixin


class ContactStatus(StrEnum):
    NEW = "new"
    CONTACTED = "contacted"
    INTERESTED = "interested"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"


class Contact(ScopedRecordMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "contacts"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=100, nullable=False)
    phone: str = Field(max_length=32, nullable=False)
    email: str | None = Field(default=None, max_length=320)
    company: str | None = Field(default=None, max_length=100)
    status: ContactStatus = Field(default=ContactStatus.NEW)
    is_active: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class ContactCreate(SQLModel):
    name: str = Field(max_length=100)
    phone: str = Field(max_length=32)
    email: str | None = Field(default=None, max_length=320)
    company: str | None = Field(default=None, max_length=100)
    team_id: uuid.UUID | None = None
    assigned_to: uuid.UUID | None = None


class ContactUpdate(SQLModel):
    name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=32)
    email: str | None = Field(default=None, max_length=320)
    company: str | None = Field(default=None, max_length=100)
    status: ContactStatus | None = None
    assigned_to: uuid.UUID | None = None


class ContactRead(SQLModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    team_id: uuid.UUID | None
    created_by: uuid.UUID
    assigned_to: uuid.UUID | None
    name: str
    phone: str
    email: str | None
    company: str | None
    status: ContactStatus
    created_at: datetime
