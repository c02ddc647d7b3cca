"""Invitation endpoints.

``router`` holds the organization-scoped management routes; ``public_router``
holds the token routes an invitee uses before they have an account. The token
itself is the credential there, so those are the only routes outside the
tenant context.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from calltracker.api.deps import Context, Session, TenantContext, require_limit, require_permission
from calltracker.core.permissions import Permission, Role
from calltracker.core.security import create_jwt
from calltracker.models.base import utcnow
from calltracker.models.invitation import (
    Invitation,
    InvitationAccept,
    InvitationCreate,
    InvitationDetails,
    InvitationRead,
    InvitationStatus,
    ReminderRead,
)
from calltracker.models.organization import LimitedResource
from calltracker.models.user import UserRead, to_user_read
from calltracker.services import invitations as invitation_service
from calltracker.services.notifications import invitation_url

router = APIRouter(prefix="/organizations/{organization_id}/invitations", tags=["invitations"])
public_router = APIRouter(prefix="/invitations", tags=["invitations"])


# ── Schemas ──────────────────────────────────────────────────

class InvitationList(BaseModel):
    invitations: list[InvitationRead]
    total: int
    page: int
    pages: int
    stats: dict[str, int]


class BulkInvitationItem(BaseModel):
    email: str | None = None
    role: Role | None = None
    team_id: uuid.UUID | None = None
    permissions: list[Permission] | None = None


class BulkInvitationRequest(BaseModel):
    invitations: list[BulkInvitationItem]
    default_role: Role = Role.AGENT
    team_id: uuid.UUID | None = None


class BulkInvitationResult(BaseModel):
    successful: list[dict]
    failed: list[dict]
    skipped: list[dict]
    summary: dict[str, int]


class AcceptResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class DeclineResponse(BaseModel):
    success: bool = True
    message: str = Field(default="Invitation declined")


def to_invitation_read(invitation: Invitation, now: datetime | None = None) -> InvitationRead:
    return InvitationRead(
        id=invitation.id,
        organization_id=invitation.organization_id,
        email=invitation.email,
        role=invitation.role,
        team_id=invitation.team_id,
        status=invitation.effective_status(now or utcnow()),
        expires_at=invitation.expires_at,
        created_at=invitation.created_at,
        invitation_url=invitation_url(invitation.token),
    )


# ── Organization routes ──────────────────────────────────────

@router.post(
    "",
    response_model=InvitationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(require_permission(Permission.INVITE_USERS)),
        Depends(require_limit(LimitedResource.USERS)),
    ],
)
async def create_invitation(
    organization_id: uuid.UUID,
    body: InvitationCreate,
    ctx: Context,
    session: Session,
) -> InvitationRead:
    invitation = await invitation_service.create_invitation(
        session,
        ctx.principal,
        ctx.require_target(),
        email=body.email,
        role=body.role,
        team_id=body.team_id,
        team_role=body.team_role,
        permissions=body.permissions,
        message=body.message,
    )
    return to_invitation_read(invitation)


@router.get("", response_model=InvitationList)
async def list_invitations(
    organization_id: uuid.UUID,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.INVITE_USERS)),
    status_filter: InvitationStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> InvitationList:
    result = await invitation_service.list_invitations(
        session,
        ctx.require_target().id,
        status=status_filter,
        page=page,
        limit=limit,
    )
    return InvitationList(
        invitations=[to_invitation_read(i, result.now) for i in result.items],
        total=result.total,
        page=page,
        pages=(result.total + limit - 1) // limit,
        stats=result.stats,
    )


@router.post("/bulk", response_model=BulkInvitationResult)
async def bulk_invite(
    organization_id: uuid.UUID,
    body: BulkInvitationRequest,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.INVITE_USERS)),
) -> BulkInvitationResult:
    result = await invitation_service.create_bulk_invitations(
        session,
        ctx.principal,
        ctx.require_target(),
        [item.model_dump() for item in body.invitations],
        default_role=body.default_role,
        default_team_id=body.team_id,
    )
    return BulkInvitationResult(
        successful=result.successful,
        failed=result.failed,
        skipped=result.skipped,
        summary={
            "total": len(body.invitations),
            "successful": len(result.successful),
            "failed": len(result.failed),
            "skipped": len(result.skipped),
        },
    )


@router.delete("/{invitation_id}", response_model=InvitationRead)
async def revoke_invitation(
    organization_id: uuid.UUID,
    invitation_id: uuid.UUID,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.INVITE_USERS)),
) -> InvitationRead:
    invitation = await invitation_service.revoke_invitation(
        session, ctx.principal, ctx.require_target().id, invitation_id
    )
    return to_invitation_read(invitation)


@router.post("/{invitation_id}/resend", response_model=ReminderRead)
async def resend_invitation(
    organization_id: uuid.UUID,
    invitation_id: uuid.UUID,
    session: Session,
    ctx: TenantContext = Depends(require_permission(Permission.INVITE_USERS)),
) -> ReminderRead:
    invitation = await invitation_service.resend_invitation(
        session, ctx.principal, ctx.require_target().id, invitation_id
    )
    return ReminderRead(
        reminders_sent=invitation.reminders_sent,
        next_reminder_at=invitation.next_reminder_at,
    )


# ── Public token routes ──────────────────────────────────────

@public_router.get("/{token}", response_model=InvitationDetails)
async def get_invitation_details(token: str, session: Session) -> InvitationDetails:
    view = await invitation_service.get_invitation_details(session, token)
    invitation = view.invitation
    return InvitationDetails(
        organization_id=invitation.organization_id,
        organization_name=view.organization_name,
        team_name=view.team_name,
        email=invitation.email,
        role=invitation.role,
        message=invitation.message,
        expires_at=invitation.expires_at,
        days_remaining=view.days_remaining,
    )


@public_router.post("/{token}/accept", response_model=AcceptResponse, status_code=status.HTTP_201_CREATED)
async def accept_invitation(token: str, body: InvitationAccept, session: Session) -> AcceptResponse:
    _, user = await invitation_service.accept_invitation(
        session, token, password=body.password, display_name=body.display_name
    )
    access_token = create_jwt(
        subject=str(user.id), organization_id=str(user.organization_id), role=user.role
    )
    return AcceptResponse(access_token=access_token, user=to_user_read(user))


@public_router.post("/{token}/decline", response_model=DeclineResponse)
async def decline_invitation(token: str, session: Session) -> DeclineResponse:
    await invitation_service.decline_invitation(session, token)
    return DeclineResponse()
