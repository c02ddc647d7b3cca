"""Teams and team membership.

Organization admins manage every team. Anyone else holding the team
permissions only manages teams they already manage, and can never hand out
the team manager role. Membership feeds the data scope resolver.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import select

from calltracker.api.deps import (
    Context,
    Session,
    Store,
    TenantContext,
    require_limit,
    require_permission,
)
from calltracker.core.errors import AuthorizationError, NotFoundError
from calltracker.core.permissions import Permission, Role, TeamRole
from calltracker.models.organization import LimitedResource
from calltracker.models.team import Team, TeamCreate, TeamMemberAdd, TeamMemberRead, TeamRead
from calltracker.services.principals import PrincipalStore
from calltracker.services.teams import (
    add_member,
    get_membership,
    get_organization_user,
    remove_member,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teams", tags=["teams"])

_ADMIN_ROLES = (Role.SUPER_ADMIN, Role.ORG_ADMIN)


@router.get("", response_model=list[TeamRead])
async def list_teams(ctx: Context, session: Session) -> list[TeamRead]:
    organization = ctx.require_target()
    stmt = (
        select(Team)
        .where(Team.organization_id == organization.id, Team.is_active.is_(True))  # type: ignore[union-attr]
        .order_by(Team.name.asc())  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt)
    return [TeamRead.model_validate(t) for t in result.scalars().all()]


@router.post(
    "",
    response_model=TeamRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(require_permission(Permission.MANAGE_TEAMS)),
        Depends(require_limit(LimitedResource.TEAMS)),
    ],
)
async def create_team(body: TeamCreate, ctx: Context, session: Session) -> TeamRead:
    organization = ctx.require_target()
    manager = None
    if body.manager_id is not None:
        if ctx.principal.role not in _ADMIN_ROLES and body.manager_id != ctx.principal.id:
            raise AuthorizationError(
                "Only organization admins can appoint another team manager",
                required=str(Role.ORG_ADMIN),
            )
        manager = await get_organization_user(
            session, body.manager_id, organization.id, field="manager_id"
        )

    team = Team(
        organization_id=organization.id,
        name=body.name,
        description=body.description,
        manager_id=body.manager_id,
    )
    session.add(team)
    await session.flush()
    if manager is not None:
        await add_member(session, team.id, manager.id, team_role=TeamRole.MANAGER)
    await session.commit()
    await session.refresh(team)
    logger.info("Team %s created in org %s", team.id, organization.id)
    return TeamRead.model_validate(team)


@router.post(
    "/{team_id}/members",
    response_model=TeamMemberRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_team_member(
    team_id: uuid.UUID,
    body: TeamMemberAdd,
    session: Session,
    store: Store,
    ctx: TenantContext = Depends(require_permission(Permission.MANAGE_TEAM_MEMBERS)),
) -> TeamMemberRead:
    team = await _get_team_or_404(team_id, ctx, session)
    await _ensure_can_manage_members(ctx, team, store, body.team_role)
    user = await get_organization_user(session, body.user_id, team.organization_id)
    member = await add_member(session, team.id, user.id, body.team_role)
    await session.commit()
    await session.refresh(member)
    return TeamMemberRead.model_validate(member)


@router.delete("/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    team_id: uuid.UUID,
    user_id: uuid.UUID,
    session: Session,
    store: Store,
    ctx: TenantContext = Depends(require_permission(Permission.MANAGE_TEAM_MEMBERS)),
) -> None:
    team = await _get_team_or_404(team_id, ctx, session)
    member = await get_membership(session, team.id, user_id)
    if member is None or not member.is_active:
        raise NotFoundError("Team member not found")
    await _ensure_can_manage_members(ctx, team, store, member.team_role)
    await remove_member(session, member)
    await session.commit()
    logger.info("User %s removed from team %s", user_id, team.id)


# ── Internal helpers ──────────────────────────────────────────

async def _ensure_can_manage_members(
    ctx: TenantContext, team: Team, store: PrincipalStore, team_role: TeamRole
) -> None:
    principal = ctx.principal
    if principal.role in _ADMIN_ROLES:
        return
    if team_role == TeamRole.MANAGER:
        raise AuthorizationError(
            "Only organization admins can change team managers", required=str(Role.ORG_ADMIN)
        )
    if team.id not in await store.managed_team_ids(principal):
        logger.warning(
            "User %s denied membership change on unmanaged team %s", principal.id, team.id
        )
        raise AuthorizationError("You can only manage members of teams you manage")


async def _get_team_or_404(team_id: uuid.UUID, ctx: TenantContext, session) -> Team:
    organization = ctx.require_target()
    stmt = select(Team).where(
        Team.id == team_id,
        Team.organization_id == organization.id,
        Team.is_active.is_(True),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    team = result.scalar_one_or_none()
    if team is None:
        raise NotFoundError("Team not found")
    return team
