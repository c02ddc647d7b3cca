"""Principal lookups behind a narrow, storage-agnostic interface.

The tenant context and scope resolver only talk to :class:`PrincipalStore`;
:class:`SqlPrincipalStore` is the SQLModel-backed implementation.
"""

import uuid
from typing import Protocol

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from calltracker.core.permissions import Role, TeamRole
from calltracker.models.organization import Organization
from calltracker.models.team import Team, TeamMember
from calltracker.models.user import User


class PrincipalStore(Protocol):
    async def get_principal(self, principal_id: uuid.UUID) -> User | None: ...

    async def get_organization(self, organization_id: uuid.UUID) -> Organization | None: ...

    async def find_active_by_email(self, email: str) -> User | None: ...

    async def managed_team_ids(self, principal: User) -> set[uuid.UUID]: ...


class SqlPrincipalStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_principal(self, principal_id: uuid.UUID) -> User | None:
        return await self.session.get(User, principal_id)

    async def get_organization(self, organization_id: uuid.UUID) -> Organization | None:
        return await self.session.get(Organization, organization_id)

    async def find_active_by_email(self, email: str) -> User | None:
        stmt = select(User).where(
            func.lower(User.email) == email.strip().lower(),
            User.is_active.is_(True),  # type: ignore[union-attr]
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def managed_team_ids(self, principal: User) -> set[uuid.UUID]:
        """Teams the principal manages: as team manager, manager member, or primary team."""
        if principal.role != Role.MANAGER:
            return set()

        led = select(Team.id).where(
            Team.organization_id == principal.organization_id,
            Team.is_active.is_(True),  # type: ignore[union-attr]
            or_(
                Team.manager_id == principal.id,
                Team.id.in_(  # type: ignore[union-attr]
                    select(TeamMember.team_id).where(
                        TeamMember.user_id == principal.id,
                        TeamMember.team_role == TeamRole.MANAGER,
                        TeamMember.is_active.is_(True),  # type: ignore[union-attr]
                    )
                ),
            ),
        )
        result = await self.session.execute(led)
        team_ids = set(result.scalars().all())
        if principal.team_id is not None:
            team_ids.add(principal.team_id)
        return team_ids
