"""Team membership and organization reference checks. Members are soft-removed, never deleted."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from calltracker.core.errors import ValidationError
from calltracker.core.permissions import TeamRole
from calltracker.models.base import utcnow
from calltracker.models.team import Team, TeamMember
from calltracker.models.user import User

logger = logging.getLogger(__name__)


async def get_membership(
    session: AsyncSession, team_id: uuid.UUID, user_id: uuid.UUID
) -> TeamMember | None:
    stmt = select(TeamMember).where(
        TeamMember.team_id == team_id,
        TeamMember.user_id == user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def add_member(
    session: AsyncSession,
    team_id: uuid.UUID,
    user_id: uuid.UUID,
    team_role: TeamRole = TeamRole.AGENT,
) -> TeamMember:
    """Add or reactivate a membership. Caller commits."""
    member = await get_membership(session, team_id, user_id)
    if member is None:
        member = TeamMember(team_id=team_id, user_id=user_id, team_role=team_role)
    else:
        member.is_active = True
        member.team_role = team_role
        member.joined_at = utcnow()
    session.add(member)
    await session.flush()
    logger.info("User %s joined team %s as %s", user_id, team_id, team_role)
    return member


async def remove_member(session: AsyncSession, member: TeamMember) -> None:
    """Flip the membership inactive. Caller commits."""
    member.is_active = False
    session.add(member)
    await session.flush()


async def get_organization_team(
    session: AsyncSession, team_id: uuid.UUID, organization_id: uuid.UUID, *, field: str = "team_id"
) -> Team:
    """An active team of the organization, else a validation error on ``field``."""
    team = await session.get(Team, team_id)
    if team is None or team.organization_id != organization_id or not team.is_active:
        raise ValidationError("Invalid team specified", field=field)
    return team


async def get_organization_user(
    session: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID, *, field: str = "user_id"
) -> User:
    """An active user of the organization, else a validation error on ``field``."""
    user = await session.get(User, user_id)
    if user is None or user.organization_id != organization_id or not user.is_active:
        raise ValidationError("User does not belong to this organization", field=field)
    return user
