"""Contacts CRUD. Every read and write goes through the caller's data scope."""

import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import select

from calltracker.api.deps import (
    Context,
    Scope,
    Session,
    TenantContext,
    require_any_permission,
    require_limit,
)
from calltracker.core.errors import NotFoundError
from calltracker.core.permissions import Permission
from calltracker.core.scope import scoped_get
from calltracker.models.contact import Contact, ContactCreate, ContactRead, ContactStatus, ContactUpdate
from calltracker.models.organization import LimitedResource
from calltracker.services.teams import get_organization_team, get_organization_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contacts", tags=["contacts"])

_can_view = require_any_permission(
    Permission.VIEW_ALL_CONTACTS,
    Permission.VIEW_TEAM_CONTACTS,
    Permission.VIEW_OWN_CONTACTS,
)
_can_manage = require_any_permission(
    Permission.MANAGE_ALL_CONTACTS,
    Permission.MANAGE_TEAM_CONTACTS,
    Permission.MANAGE_OWN_CONTACTS,
)


@router.get("", response_model=list[ContactRead])
async def list_contacts(
    scope: Scope,
    session: Session,
    ctx: TenantContext = Depends(_can_view),
    status_filter: ContactStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ContactRead]:
    criteria = [Contact.is_active.is_(True)]  # type: ignore[union-attr]
    if status_filter is not None:
        criteria.append(Contact.status == status_filter)
    stmt = (
        select(Contact)
        .where(scope.build_scoped_query(Contact, *criteria))
        .order_by(Contact.created_at.desc())  # type: ignore[attr-defined]
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [ContactRead.model_validate(c) for c in result.scalars().all()]


@router.post(
    "",
    response_model=ContactRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_can_manage), Depends(require_limit(LimitedResource.CONTACTS))],
)
async def create_contact(body: ContactCreate, ctx: Context, session: Session) -> ContactRead:
    organization = ctx.require_target()
    await _check_references(session, organization.id, body.team_id, body.assigned_to)
    contact = Contact(
        organization_id=organization.id,
        created_by=ctx.principal.id,
        owner_id=ctx.principal.id,
        assigned_to=body.assigned_to or ctx.principal.id,
        team_id=body.team_id or ctx.principal.team_id,
        name=body.name,
        phone=body.phone,
        email=body.email,
        company=body.company,
    )
    session.add(contact)
    await session.commit()
    await session.refresh(contact)
    logger.info("Contact %s created in org %s", contact.id, organization.id)
    return ContactRead.model_validate(contact)


@router.get("/{contact_id}", response_model=ContactRead)
async def get_contact(
    contact_id: uuid.UUID,
    scope: Scope,
    session: Session,
    ctx: TenantContext = Depends(_can_view),
) -> ContactRead:
    contact = await _get_active(contact_id, scope, session)
    return ContactRead.model_validate(contact)


@router.patch("/{contact_id}", response_model=ContactRead)
async def update_contact(
    contact_id: uuid.UUID,
    body: ContactUpdate,
    scope: Scope,
    session: Session,
    ctx: TenantContext = Depends(_can_manage),
) -> ContactRead:
    contact = await _get_active(contact_id, scope, session)
    await _check_references(session, contact.organization_id, None, body.assigned_to)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(contact, field, value)
    contact.touch()
    session.add(contact)
    await session.commit()
    await session.refresh(contact)
    return ContactRead.model_validate(contact)


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: uuid.UUID,
    scope: Scope,
    session: Session,
    ctx: TenantContext = Depends(_can_manage),
) -> None:
    contact = await _get_active(contact_id, scope, session)
    contact.is_active = False
    contact.touch()
    session.add(contact)
    await session.commit()
    logger.info("Contact %s deleted by %s", contact.id, ctx.principal.id)


async def _get_active(contact_id: uuid.UUID, scope, session) -> Contact:
    contact = await scoped_get(session, Contact, contact_id, scope, label="Contact")
    if not contact.is_active:
        raise NotFoundError("Contact not found")
    return contact


async def _check_references(
    session, organization_id: uuid.UUID, team_id: uuid.UUID | None, assigned_to: uuid.UUID | None
) -> None:
    if team_id is not None:
        await get_organization_team(session, team_id, organization_id)
    if assigned_to is not None:
        await get_organization_user(session, assigned_to, organization_id, field="assigned_to")
