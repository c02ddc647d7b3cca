"""Authentication endpoints: login + current user."""

from fastapi import APIRouter
from pydantic import BaseModel, EmailStr

from calltracker.api.deps import Context, Session
from calltracker.core.errors import AuthenticationError, AuthorizationError
from calltracker.core.security import create_jwt, verify_password
from calltracker.models.base import utcnow
from calltracker.models.organization import Organization, OrganizationRead, SubscriptionStatus
from calltracker.models.user import UserRead, to_user_read
from calltracker.services.principals import SqlPrincipalStore

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Schemas ──────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    organization: OrganizationRead | None


class MeResponse(BaseModel):
    user: UserRead
    organization: OrganizationRead | None


# ── Routes ───────────────────────────────────────────────────

@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, session: Session) -> LoginResponse:
    """Authenticate with email + password, receive a JWT."""
    user = await SqlPrincipalStore(session).find_active_by_email(body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    organization = None
    if user.organization_id is not None:
        organization = await session.get(Organization, user.organization_id)
        if organization is None or not organization.is_active:
            raise AuthorizationError("Organization is not active.")
        if organization.subscription_status == SubscriptionStatus.SUSPENDED:
            raise AuthorizationError("Organization subscription is suspended.")

    user.last_login_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)

    token = create_jwt(
        subject=str(user.id),
        organization_id=str(user.organization_id) if user.organization_id else None,
        role=user.role,
    )
    return LoginResponse(
        access_token=token,
        user=to_user_read(user),
        organization=OrganizationRead.model_validate(organization) if organization else None,
    )


@router.get("/me", response_model=MeResponse)
async def get_me(ctx: Context) -> MeResponse:
    """Return the current authenticated user and their organization."""
    return MeResponse(
        user=to_user_read(ctx.principal),
        organization=OrganizationRead.model_validate(ctx.organization) if ctx.organization else None,
    )
