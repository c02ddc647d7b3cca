"""Shared base fields and helpers for the calltracker tables."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    PostgreSQL keeps the offset in ``timestamptz``; SQLite drops it, so values
    read back without tzinfo are tagged as UTC. Naive values bound in queries
    are taken to be UTC as well.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_field(**kwargs):
    """A ``datetime`` column stored as :class:`UTCDateTime`."""
    return Field(sa_type=UTCDateTime, **kwargs)


class TimestampMixin(SQLModel):
    """Created / updated timestamps shared by organizations, users, teams and scoped records."""

    created_at: datetime = utc_field(default_factory=utcnow, nullable=False)
    updated_at: datetime = utc_field(default_factory=utcnow, nullable=False)

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or utcnow()
