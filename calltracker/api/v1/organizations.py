"""Organization signup, lookup and subscription management."""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import select

from calltracker.api.deps import Context, Session, TenantContext, require_permission, require_role
from calltracker.core.errors import ConflictError, NotFoundError
from calltracker.core.permissions import Permission, Role
from calltracker.core.security import create_jwt, hash_password
from calltracker.models.organization import (
    LimitedResource,
    Organization,
    OrganizationRead,
    ResourceUsage,
    SubscriptionUpdate,
    SubscriptionUsageRead,
)
from calltracker.models.user import User, UserRead, to_user_read
from calltracker.services.limits import count_usage
from calltracker.services.principals import SqlPrincipalStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations", tags=["organizations"])


# ── Signup request / response schemas ────────────────────────

class OrganizationSignup(BaseModel):
    """Everything needed to create an organization and its first admin."""
    organization_name: str = Field(max_length=100)
    organization_slug: str = Field(max_length=100, pattern=r"^[a-z0-9\-]+$")
    admin_email: EmailStr
    admin_password: str = Field(min_length=8, max_length=128)
    admin_display_name: str = Field(default="", max_length=255)


class SignupResponse(BaseModel):
    organization: OrganizationRead
    user: UserRead
    access_token: str
    token_type: str = "bearer"


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new organization",
)
async def signup_organization(body: OrganizationSignup, session: Session) -> SignupResponse:
    """Create an organization on the free trial plus its org_admin.

    This is the only unauthenticated write outside the invitation token routes.
    """
    existing = await session.execute(
        select(Organization).where(Organization.slug == body.organization_slug)
    )
    if existing.scalar_one_or_none():
        raise ConflictError(f"Slug '{body.organization_slug}' is already taken")

    if await SqlPrincipalStore(session).find_active_by_email(body.admin_email) is not None:
        raise ConflictError("User with this email already exists")

    organization = Organization(name=body.organization_name, slug=body.organization_slug)
    session.add(organization)
    await session.flush()

    user = User(
        organization_id=organization.id,
        email=body.admin_email.lower(),
        password_hash=hash_password(body.admin_password),
        display_name=body.admin_display_name,
    )
    user.assign_role(Role.ORG_ADMIN)
    session.add(user)
    await session.commit()
    await session.refresh(organization)
    await session.refresh(user)

    logger.info("Organization %s created with admin %s", organization.id, user.id)
    token = create_jwt(subject=str(user.id), organization_id=str(organization.id), role=user.role)
    return SignupResponse(
        organization=OrganizationRead.model_validate(organization),
        user=to_user_read(user),
        access_token=token,
    )


@router.get("/me", response_model=OrganizationRead)
async def get_current_organization(ctx: Context) -> OrganizationRead:
    return OrganizationRead.model_validate(ctx.require_target())


@router.get("/{organization_id}", response_model=OrganizationRead)
async def get_organization(organization_id: uuid.UUID, ctx: Context) -> OrganizationRead:
    # The context has already rejected foreign organizations for non-super-admins.
    return OrganizationRead.model_validate(ctx.require_target())


@router.get("/{organization_id}/subscription", response_model=SubscriptionUsageRead)
async def get_subscription(
    organization_id: uuid.UUID,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.MANAGE_BILLING)),
) -> SubscriptionUsageRead:
    """Current usage of every limited resource next to its plan limit."""
    organization = ctx.require_target()
    limits = {}
    for resource in LimitedResource:
        limits[resource] = ResourceUsage(
            current=await count_usage(session, organization.id, resource),
            limit=organization.limit_for(resource),
        )
    return SubscriptionUsageRead(
        organization_id=organization.id,
        subscription_plan=organization.subscription_plan,
        subscription_status=organization.subscription_status,
        subscription_ends_at=organization.subscription_ends_at,
        limits=limits,
    )


@router.patch("/{organization_id}/subscription", response_model=OrganizationRead)
async def update_subscription(
    organization_id: uuid.UUID,
    body: SubscriptionUpdate,
    session: Session,
    ctx: TenantContext = Depends(require_role(Role.SUPER_ADMIN)),
) -> OrganizationRead:
    """Change plan (rewrites every limit) and/or move the subscription status."""
    organization = await session.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")

    if body.subscription_status is not None and body.subscription_status != organization.subscription_status:
        if not organization.can_transition_to(body.subscription_status):
            raise ConflictError(
                f"Cannot move subscription from {organization.subscription_status} "
                f"to {body.subscription_status}"
            )
        organization.subscription_status = body.subscription_status

    if body.subscription_plan is not None:
        organization.apply_plan(body.subscription_plan)

    session.add(organization)
    await session.commit()
    await session.refresh(organization)
    logger.info(
        "Subscription for %s set to %s/%s by %s",
        organization.id,
        organization.subscription_plan,
        organization.subscription_status,
        ctx.principal.id,
    )
    return OrganizationRead.model_validate(organization)
