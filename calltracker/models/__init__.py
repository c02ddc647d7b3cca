"""Import all models so SQLModel.metadata picks them up."""

from calltracker.models.call_log import CallDirection, CallLog, CallLogCreate, CallLogRead
from calltracker.models.contact import Contact, ContactCreate, ContactRead, ContactStatus, ContactUpdate
from calltracker.models.invitation import (
    Invitation,
    InvitationAccept,
    InvitationCreate,
    InvitationDetails,
    InvitationRead,
    InvitationStatus,
)
from calltracker.models.organization import (
    LimitedResource,
    Organization,
    OrganizationRead,
    SubscriptionPlan,
    SubscriptionStatus,
    SubscriptionUpdate,
)
from calltracker.models.team import Team, TeamCreate, TeamMember, TeamMemberAdd, TeamRead
from calltracker.models.user import RoleUpdate, User, UserCreate, UserRead

__all__ = [
    "CallDirection",
    "CallLog",
    "CallLogCreate",
    "CallLogRead",
    "Contact",
    "ContactCreate",
    "ContactRead",
    "ContactStatus",
    "ContactUpdate",
    "Invitation",
    "InvitationAccept",
    "InvitationCreate",
    "InvitationDetails",
    "InvitationRead",
    "InvitationStatus",
    "LimitedResource",
    "Organization",
    "OrganizationRead",
    "RoleUpdate",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "SubscriptionUpdate",
    "Team",
    "TeamCreate",
    "TeamMember",
    "TeamMemberAdd",
    "TeamRead",
    "User",
    "UserCreate",
    "UserRead",
]
