"""Users management: organization-scoped, gated on user permissions."""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import select

from calltracker.api.deps import (
    Context,
    Session,
    TenantContext,
    require_limit,
    require_permission,
)
from calltracker.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from calltracker.core.permissions import (
    INVITABLE_ROLES,
    MANAGER_SUBORDINATE_ROLES,
    Permission,
    Role,
    can_manage_user,
)
from calltracker.core.security import hash_password
from calltracker.models.organization import LimitedResource
from calltracker.models.user import RoleUpdate, User, UserCreate, UserRead, to_user_read
from calltracker.services.principals import SqlPrincipalStore
from calltracker.services.teams import add_member, get_organization_team

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _check_assignable(ctx: TenantContext, role: Role) -> None:
    if role not in INVITABLE_ROLES:
        raise ValidationError("Invalid role specified", field="role")
    if role == Role.ORG_ADMIN and ctx.principal.role not in (Role.SUPER_ADMIN, Role.ORG_ADMIN):
        raise AuthorizationError("Cannot assign org_admin role", required=str(Role.ORG_ADMIN))
    if ctx.principal.role == Role.MANAGER and role not in MANAGER_SUBORDINATE_ROLES:
        raise AuthorizationError(
            "Managers can only assign agent or viewer roles", required=str(Role.ORG_ADMIN)
        )


@router.get("", response_model=list[UserRead])
async def list_users(
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.VIEW_ALL_USERS)),
) -> list[UserRead]:
    organization = ctx.require_target()
    stmt = (
        select(User)
        .where(User.organization_id == organization.id)
        .order_by(User.email.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return [to_user_read(u) for u in result.scalars().all()]


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(require_permission(Permission.MANAGE_USER_ROLES)),
        Depends(require_limit(LimitedResource.USERS)),
    ],
)
async def create_user(body: UserCreate, ctx: Context, session: Session) -> UserRead:
    organization = ctx.require_target()
    _check_assignable(ctx, body.role)

    if await SqlPrincipalStore(session).find_active_by_email(body.email) is not None:
        raise ConflictError("User with this email already exists")

    team = None
    if body.team_id is not None:
        team = await get_organization_team(session, body.team_id, organization.id)

    user = User(
        organization_id=organization.id,
        email=body.email.strip().lower(),
        password_hash=hash_password(body.password),
        display_name=body.display_name,
        team_id=body.team_id,
    )
    user.assign_role(body.role, body.permissions)
    session.add(user)
    await session.flush()
    if team is not None:
        await add_member(session, team.id, user.id)
    await session.commit()
    await session.refresh(user)

    logger.info("User %s created in org %s by %s", user.id, organization.id, ctx.principal.id)
    return to_user_read(user)


@router.patch("/{user_id}/role", response_model=UserRead)
async def update_user_role(
    user_id: uuid.UUID,
    body: RoleUpdate,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.MANAGE_USER_ROLES)),
) -> UserRead:
    """Change a user's role. Permissions reset to the role defaults unless given."""
    user = await _get_or_404(user_id, ctx, session)
    _ensure_can_manage(ctx, user)
    _check_assignable(ctx, body.role)

    user.assign_role(body.role, body.permissions)
    user.touch()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("User %s role set to %s by %s", user.id, user.role, ctx.principal.id)
    return to_user_read(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_user(
    user_id: uuid.UUID,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.MANAGE_USER_ROLES)),
) -> None:
    user = await _get_or_404(user_id, ctx, session)
    if user.id == ctx.principal.id:
        raise ValidationError("You cannot deactivate yourself", field="user_id")
    _ensure_can_manage(ctx, user)
    user.is_active = False
    user.touch()
    session.add(user)
    await session.commit()


# ── Internal helpers ──────────────────────────────────────────

def _ensure_can_manage(ctx: TenantContext, user: User) -> None:
    if not can_manage_user(ctx.principal, user):
        logger.warning("User %s denied management of user %s", ctx.principal.id, user.id)
        raise AuthorizationError("You cannot manage this user")


async def _get_or_404(user_id: uuid.UUID, ctx: TenantContext, session) -> User:
    organization = ctx.require_target()
    stmt = select(User).where(
        User.id == user_id,
        User.organization_id == organization.id,
    )
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user
