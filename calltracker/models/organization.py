"""Organization model: the tenant and unit of data isolation."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from calltracker.models.base import TimestampMixin, new_uuid, utc_field

# Limit value meaning "no cap".
UNLIMITED = -1


class SubscriptionPlan(StrEnum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class LimitedResource(StrEnum):
    USERS = "users"
    CALLS = "calls"
    CONTACTS = "contacts"
    TEAMS = "teams"


# users, calls (per month), contacts, teams
PLAN_LIMITS: dict[SubscriptionPlan, dict[LimitedResource, int]] = {
    SubscriptionPlan.FREE: {
        LimitedResource.USERS: 3,
        LimitedResource.CALLS: 500,
        LimitedResource.CONTACTS: 100,
        LimitedResource.TEAMS: 1,
    },
    SubscriptionPlan.PRO: {
        LimitedResource.USERS: 10,
        LimitedResource.CALLS: 5_000,
        LimitedResource.CONTACTS: 1_000,
        LimitedResource.TEAMS: 5,
    },
    SubscriptionPlan.BUSINESS: {
        LimitedResource.USERS: 50,
        LimitedResource.CALLS: 50_000,
        LimitedResource.CONTACTS: 10_000,
        LimitedResource.TEAMS: 20,
    },
    SubscriptionPlan.ENTERPRISE: {
        LimitedResource.USERS: UNLIMITED,
        LimitedResource.CALLS: UNLIMITED,
        LimitedResource.CONTACTS: UNLIMITED,
        LimitedResource.TEAMS: UNLIMITED,
    },
}

STATUS_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.TRIAL: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.SUSPENDED}),
    SubscriptionStatus.SUSPENDED: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.EXPIRED: frozenset(),
}


class Organization(TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=100, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)
    is_active: bool = Field(default=True)

    subscription_plan: SubscriptionPlan = Field(default=SubscriptionPlan.FREE)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIAL, index=True)
    subscription_ends_at: datetime | None = utc_field(default=None)

    user_limit: int = Field(default=PLAN_LIMITS[SubscriptionPlan.FREE][LimitedResource.USERS])
    call_limit: int = Field(default=PLAN_LIMITS[SubscriptionPlan.FREE][LimitedResource.CALLS])
    contact_limit: int = Field(default=PLAN_LIMITS[SubscriptionPlan.FREE][LimitedResource.CONTACTS])
    team_limit: int = Field(default=PLAN_LIMITS[SubscriptionPlan.FREE][LimitedResource.TEAMS])

    def limit_for(self, resource: LimitedResource) -> int:
        match resource:
            case LimitedResource.USERS:
                return self.user_limit
            case LimitedResource.CALLS:
                return self.call_limit
            case LimitedResource.CONTACTS:
                return self.contact_limit
            case LimitedResource.TEAMS:
                return self.team_limit

    def apply_plan(self, plan: SubscriptionPlan) -> None:
        """Switch plan and rewrite every limit from the plan table."""
        limits = PLAN_LIMITS[plan]
        self.subscription_plan = plan
        self.user_limit = limits[LimitedResource.USERS]
        self.call_limit = limits[LimitedResource.CALLS]
        self.contact_limit = limits[LimitedResource.CONTACTS]
        self.team_limit = limits[LimitedResource.TEAMS]

    def can_transition_to(self, new_status: SubscriptionStatus) -> bool:
        return new_status in STATUS_TRANSITIONS[SubscriptionStatus(self.subscription_status)]


# ── Pydantic schemas ─────────────────────────────────────────

class OrganizationRead(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    is_active: bool
    subscription_plan: SubscriptionPlan
    subscription_status: SubscriptionStatus
    user_limit: int
    call_limit: int
    contact_limit: int
    team_limit: int


class SubscriptionUpdate(SQLModel):
    subscription_plan: SubscriptionPlan | None = None
    subscription_status: SubscriptionStatus | None = None


class ResourceUsage(SQLModel):
    current: int
    limit: int


class SubscriptionUsageRead(SQLModel):
    """Plan, status and current usage against each limit (``-1`` is unlimited)."""

    organization_id: uuid.UUID
    subscription_plan: SubscriptionPlan
    subscription_status: SubscriptionStatus
    subscription_ends_at: datetime | None
    limits: dict[LimitedResource, ResourceUsage]
