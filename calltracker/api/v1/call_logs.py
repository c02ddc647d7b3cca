"""Call log endpoints. Creation counts against the monthly call limit."""

import logging
from datetime import datetime

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
from calltracker.core.errors import ValidationError
from calltracker.core.permissions import Permission
from calltracker.core.scope import scoped_get
from calltracker.models.call_log import CallDirection, CallLog, CallLogCreate, CallLogRead
from calltracker.models.contact import Contact
from calltracker.models.organization import LimitedResource
from calltracker.services.teams import get_organization_team

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/call-logs", tags=["call-logs"])


@router.get("", response_model=list[CallLogRead])
async def list_call_logs(
    scope: Scope,
    session: Session,
    ctx: TenantContext = Depends(
        require_any_permission(
            Permission.VIEW_ALL_CALL_LOGS,
            Permission.VIEW_TEAM_CALL_LOGS,
            Permission.VIEW_OWN_CALL_LOGS,
        )
    ),
    direction: CallDirection | None = Query(default=None),
    since: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[CallLogRead]:
    criteria = []
    if direction is not None:
        criteria.append(CallLog.direction == direction)
    if since is not None:
        criteria.append(CallLog.called_at >= since)
    stmt = (
        select(CallLog)
        .where(scope.build_scoped_query(CallLog, *criteria))
        .order_by(CallLog.called_at.desc())  # type: ignore[attr-defined]
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [CallLogRead.model_validate(c) for c in result.scalars().all()]


@router.post(
    "",
    response_model=CallLogRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(
            require_any_permission(
                Permission.MANAGE_ALL_CALL_LOGS,
                Permission.MANAGE_TEAM_CALL_LOGS,
                Permission.MANAGE_OWN_CALL_LOGS,
            )
        ),
        Depends(require_limit(LimitedResource.CALLS)),
    ],
)
async def create_call_log(
    body: CallLogCreate,
    ctx: Context,
    scope: Scope,
    session: Session,
) -> CallLogRead:
    organization = ctx.require_target()
    if body.contact_id is not None:
        # The contact must be visible to the caller, not merely in the org.
        await scoped_get(session, Contact, body.contact_id, scope, label="Contact")
    if not body.phone_number.strip():
        raise ValidationError("Phone number is required", field="phone_number")
    if body.team_id is not None:
        await get_organization_team(session, body.team_id, organization.id)

    call = CallLog(
        organization_id=organization.id,
        created_by=ctx.principal.id,
        owner_id=ctx.principal.id,
        assigned_to=ctx.principal.id,
        team_id=body.team_id or ctx.principal.team_id,
        contact_id=body.contact_id,
        phone_number=body.phone_number.strip(),
        direction=body.direction,
        duration_seconds=body.duration_seconds,
        notes=body.notes,
    )
    session.add(call)
    await session.commit()
    await session.refresh(call)
    logger.info("Call log %s recorded in org %s", call.id, organization.id)
    return CallLogRead.model_validate(call)
