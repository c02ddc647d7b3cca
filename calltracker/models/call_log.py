"""Call log model: one tracked phone call."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from calltracker.models.base import TimestampMixin, new_uuid, utc_field, utcnow
from calltracker.models.scoped import ScopedRecordMixin


class CallDirection(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    MISSED = "missed"


class CallLog(ScopedRecordMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "call_logs"
    # Monthly usage counts scan by organization and creation time.
    __table_args__ = (Index("ix_call_logs_org_created", "organization_id", "created_at"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    contact_id: uuid.UUID | None = Field(default=None, foreign_key="contacts.id", nullable=True)
    phone_number: str = Field(max_length=32, nullable=False)
    direction: CallDirection = Field(default=CallDirection.OUTGOING)
    duration_seconds: int = Field(default=0)
    notes: str = Field(default="", max_length=2000)
    called_at: datetime = utc_field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class CallLogCreate(SQLModel):
    phone_number: str = Field(max_length=32)
    direction: CallDirection = CallDirection.OUTGOING
    duration_seconds: int = Field(default=0, ge=0)
    notes: str = Field(default="", max_length=2000)
    contact_id: uuid.UUID | None = None
    team_id: uuid.UUID | None = None


class CallLogRead(SQLModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    team_id: uuid.UUID | None
    created_by: uuid.UUID
    contact_id: uuid.UUID | None
    phone_number: str
    direction: CallDirection
    duration_seconds: int
    notes: str
    called_at: datetime
