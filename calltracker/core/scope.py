"""Data scope resolver: which records a principal may act on.

An :class:`AccessScope` is derived from a principal's role and the teams it
manages, then compiled into a SQLAlchemy predicate. The organization filter is
always applied; role only decides how much further the predicate narrows.
Every list, read, update and delete of a scoped record goes through
:meth:`AccessScope.build_scoped_query`.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select

from calltracker.core.errors import NotFoundError
from calltracker.core.permissions import Role
from calltracker.models.scoped import ScopedRecordMixin

RecordT = TypeVar("RecordT", bound=ScopedRecordMixin)


@dataclass(frozen=True)
class AccessScope:
    organization_id: uuid.UUID
    principal_id: uuid.UUID
    can_view_all: bool = False
    can_view_team: bool = False
    can_view_own: bool = True
    team_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    def build_scoped_query(self, model: Any, *criteria: ColumnElement[bool]) -> ColumnElement[bool]:
        """Merge caller criteria with the organization filter and role narrowing."""
        clauses = [*criteria, model.organization_id == self.organization_id]

        if self.can_view_all:
            return and_(*clauses)

        branches = [
            model.assigned_to == self.principal_id,
            model.created_by == self.principal_id,
        ]
        if self.can_view_team:
            # Independent of the own-record branches: an empty team set
            # still leaves assigned/created visible.
            if self.team_ids:
                branches.append(model.team_id.in_(sorted(self.team_ids)))
        else:
            branches.append(model.owner_id == self.principal_id)

        clauses.append(or_(*branches))
        return and_(*clauses)


def resolve_access_scope(
    role: Role,
    principal_id: uuid.UUID,
    organization_id: uuid.UUID,
    managed_team_ids: Iterable[uuid.UUID] = (),
) -> AccessScope:
    """Build the scope for ``role``. ``managed_team_ids`` only matters for managers."""
    match role:
        case Role.SUPER_ADMIN | Role.ORG_ADMIN:
            return AccessScope(
                organization_id=organization_id,
                principal_id=principal_id,
                can_view_all=True,
            )
        case Role.MANAGER:
            return AccessScope(
                organization_id=organization_id,
                principal_id=principal_id,
                can_view_team=True,
                team_ids=frozenset(t for t in managed_team_ids if t is not None),
            )
        case Role.AGENT | Role.VIEWER:
            return AccessScope(
                organization_id=organization_id,
                principal_id=principal_id,
                can_view_own=True,
            )


async def scoped_get(
    session: AsyncSession,
    model: type[RecordT],
    record_id: uuid.UUID,
    scope: AccessScope,
    *,
    label: str = "Record",
) -> RecordT:
    """Fetch one record by id through the scope predicate, 404 otherwise."""
    stmt = select(model).where(scope.build_scoped_query(model, model.id == record_id))
    result = await session.execute(stmt)
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFoundError(f"{label} not found")
    return record
