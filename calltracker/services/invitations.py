"""Invitation lifecycle.

States: ``pending`` → ``accepted`` | ``declined`` | ``expired`` | ``revoked``.
Terminal states never change. Every transition is a conditional UPDATE that
only matches while the row is still pending and unexpired, so concurrent
callers cannot both win.

Expiry is derived before it is persisted: a pending invitation whose
``expires_at`` has passed is treated as expired by every lookup here, and the
``expire_invitations`` worker job writes that state back later.

Public (token-authenticated) failures all raise the same generic
:class:`InvitationStateError` so callers cannot tell whether a token was
expired, revoked or never existed.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from calltracker.core.config import get_settings
from calltracker.core.errors import (
    AppError,
    AuthorizationError,
    ConflictError,
    InvitationStateError,
    NotFoundError,
    ValidationError,
)
from calltracker.core.permissions import (
    INVITABLE_ROLES,
    Permission,
    Role,
    TeamRole,
    default_permissions,
)
from calltracker.core.security import generate_invitation_token, hash_password
from calltracker.models.base import utcnow
from calltracker.models.invitation import Invitation, InvitationStatus
from calltracker.models.organization import Organization
from calltracker.models.team import Team
from calltracker.models.user import User
from calltracker.services.notifications import send_invitation_email
from calltracker.services.principals import SqlPrincipalStore
from calltracker.services.teams import add_member

logger = logging.getLogger(__name__)

_TOKEN_ATTEMPTS = 5


def normalize_email(email: str | None) -> str:
    if not email or not email.strip():
        raise ValidationError("Email is required", field="email")
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Please enter a valid email address", field="email") from exc
    return email.strip().lower()


def effective_status_expr(now: datetime):
    """SQL form of :meth:`Invitation.effective_status`."""
    return case(
        (
            and_(
                Invitation.status == InvitationStatus.PENDING,
                Invitation.expires_at <= now,
            ),
            InvitationStatus.EXPIRED.value,
        ),
        else_=Invitation.status,
    )


async def _transition(
    session: AsyncSession,
    invitation_id: uuid.UUID,
    new_status: InvitationStatus,
    now: datetime,
    **values,
) -> bool:
    """Atomically move a still-pending, unexpired invitation to ``new_status``."""
    stmt = (
        update(Invitation)
        .where(
            Invitation.id == invitation_id,
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at > now,
        )
        .values(status=new_status, updated_at=now, **values)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def _unique_token(session: AsyncSession) -> str:
    for _ in range(_TOKEN_ATTEMPTS):
        token = generate_invitation_token()
        clash = await session.execute(select(Invitation.id).where(Invitation.token == token))
        if clash.first() is None:
            return token
    raise RuntimeError("Could not generate a unique invitation token")


async def _expire_stale_pending(
    session: AsyncSession, organization_id: uuid.UUID, email: str, now: datetime
) -> None:
    """Persist expiry for a lapsed pending invitation so it stops holding the slot."""
    await session.execute(
        update(Invitation)
        .where(
            Invitation.organization_id == organization_id,
            Invitation.email == email,
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED, updated_at=now)
    )


# ── Create ───────────────────────────────────────────────────

async def create_invitation(
    session: AsyncSession,
    inviter: User,
    organization: Organization,
    *,
    email: str | None,
    role: Role = Role.AGENT,
    team_id: uuid.UUID | None = None,
    team_role: TeamRole = TeamRole.AGENT,
    permissions: list[Permission] | None = None,
    message: str = "",
) -> Invitation:
    email = normalize_email(email)

    if role not in INVITABLE_ROLES:
        raise ValidationError("Invalid role specified", field="role")
    if role == Role.ORG_ADMIN and inviter.role not in (Role.SUPER_ADMIN, Role.ORG_ADMIN):
        raise AuthorizationError("Cannot assign org_admin role", required=str(Role.ORG_ADMIN))

    if team_id is not None:
        team = await session.get(Team, team_id)
        if team is None or team.organization_id != organization.id or not team.is_active:
            raise ValidationError("Invalid team specified", field="team_id")

    store = SqlPrincipalStore(session)
    if await store.find_active_by_email(email) is not None:
        raise ConflictError("User with this email already exists")

    now = utcnow()
    await _expire_stale_pending(session, organization.id, email, now)

    existing = await session.execute(
        select(Invitation.id).where(
            Invitation.organization_id == organization.id,
            Invitation.email == email,
            Invitation.status == InvitationStatus.PENDING,
        )
    )
    if existing.first() is not None:
        raise InvitationStateError(
            "Pending invitation already exists for this email", status_code=409
        )

    settings = get_settings()
    granted = default_permissions(role) if permissions is None else permissions
    invitation = Invitation(
        organization_id=organization.id,
        email=email,
        inviter_id=inviter.id,
        role=role,
        team_id=team_id,
        team_role=team_role,
        token=await _unique_token(session),
        message=message,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(days=settings.invitation_expire_days),
        next_reminder_at=now + timedelta(days=settings.invitation_reminder_days),
    )
    invitation.set_permissions(granted)
    session.add(invitation)
    try:
        await session.commit()
    except IntegrityError as exc:
        # Lost the race against a concurrent create for the same pair.
        await session.rollback()
        await session.refresh(organization)
        await session.refresh(inviter)
        raise InvitationStateError(
            "Pending invitation already exists for this email", status_code=409
        ) from exc
    await session.refresh(invitation)

    logger.info(
        "Invitation %s created for %s in org %s by %s",
        invitation.id, email, organization.id, inviter.id,
    )
    await send_invitation_email(invitation, kind="initial")
    return invitation


@dataclass
class BulkResult:
    successful: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)


async def create_bulk_invitations(
    session: AsyncSession,
    inviter: User,
    organization: Organization,
    items: list[dict],
    *,
    default_role: Role = Role.AGENT,
    default_team_id: uuid.UUID | None = None,
) -> BulkResult:
    """Invite many addresses; each row succeeds, fails or is skipped on its own."""
    max_items = get_settings().invitation_bulk_max
    if not items:
        raise ValidationError("Invitations array is required and cannot be empty", field="invitations")
    if len(items) > max_items:
        raise ValidationError(
            f"Cannot send more than {max_items} invitations at once", field="invitations"
        )

    results = BulkResult()
    for item in items:
        email = item.get("email")
        try:
            invitation = await create_invitation(
                session,
                inviter,
                organization,
                email=email,
                role=item.get("role") or default_role,
                team_id=item.get("team_id") or default_team_id,
                permissions=item.get("permissions"),
            )
        except (ConflictError, InvitationStateError) as exc:
            results.skipped.append({"email": email, "reason": exc.message})
            continue
        except AppError as exc:
            results.failed.append({"email": email, "error": exc.message})
            continue
        results.successful.append(
            {"email": invitation.email, "invitation_id": str(invitation.id), "role": invitation.role}
        )
    return results


# ── Token-authenticated (public) ─────────────────────────────

async def find_usable_by_token(
    session: AsyncSession, token: str, now: datetime | None = None
) -> Invitation | None:
    now = now or utcnow()
    stmt = select(Invitation).where(
        Invitation.token == token,
        Invitation.status == InvitationStatus.PENDING,
        Invitation.expires_at > now,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


@dataclass
class InvitationView:
    invitation: Invitation
    organization_name: str
    team_name: str | None
    days_remaining: int


async def get_invitation_details(session: AsyncSession, token: str) -> InvitationView:
    now = utcnow()
    invitation = await find_usable_by_token(session, token, now)
    if invitation is None:
        raise InvitationStateError()

    organization = await session.get(Organization, invitation.organization_id)
    team = await session.get(Team, invitation.team_id) if invitation.team_id else None
    remaining = (invitation.expires_at - now).total_seconds()
    return InvitationView(
        invitation=invitation,
        organization_name=organization.name if organization else "",
        team_name=team.name if team else None,
        days_remaining=max(0, math.ceil(remaining / 86400)),
    )


async def accept_invitation(
    session: AsyncSession,
    token: str,
    *,
    password: str,
    display_name: str = "",
) -> tuple[Invitation, User]:
    """Turn a pending invitation into a new principal. Exactly one caller wins."""
    now = utcnow()
    invitation = await find_usable_by_token(session, token, now)
    if invitation is None:
        raise InvitationStateError()

    store = SqlPrincipalStore(session)
    if await store.find_active_by_email(invitation.email) is not None:
        raise ConflictError("User with this email already exists")

    user = User(
        organization_id=invitation.organization_id,
        email=invitation.email,
        password_hash=hash_password(password),
        display_name=display_name,
        team_id=invitation.team_id,
    )
    user.assign_role(invitation.role, invitation.permission_list)
    session.add(user)
    await session.flush()

    if invitation.team_id is not None:
        team = await session.get(Team, invitation.team_id)
        if team is not None and team.is_active:
            await add_member(session, team.id, user.id, invitation.team_role)
        else:
            logger.warning(
                "Invitation %s team %s is gone; user %s joins without a team",
                invitation.id, invitation.team_id, user.id,
            )

    won = await _transition(
        session,
        invitation.id,
        InvitationStatus.ACCEPTED,
        now,
        accepted_at=now,
        accepted_user_id=user.id,
    )
    if not won:
        await session.rollback()
        raise InvitationStateError()

    await session.commit()
    await session.refresh(invitation)
    await session.refresh(user)
    logger.info("Invitation %s accepted; created user %s", invitation.id, user.id)
    return invitation, user


async def decline_invitation(session: AsyncSession, token: str) -> Invitation:
    now = utcnow()
    invitation = await find_usable_by_token(session, token, now)
    if invitation is None:
        raise InvitationStateError()
    if not await _transition(
        session, invitation.id, InvitationStatus.DECLINED, now, declined_at=now
    ):
        raise InvitationStateError()
    await session.commit()
    await session.refresh(invitation)
    logger.info("Invitation %s declined", invitation.id)
    return invitation


# ── Organization-authenticated ───────────────────────────────

async def get_org_invitation(
    session: AsyncSession, organization_id: uuid.UUID, invitation_id: uuid.UUID
) -> Invitation:
    """Load an invitation only if it belongs to ``organization_id``."""
    stmt = select(Invitation).where(
        Invitation.id == invitation_id,
        Invitation.organization_id == organization_id,
    )
    result = await session.execute(stmt)
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invitation not found")
    return invitation


def _ensure_can_manage(principal: User, invitation: Invitation, action: str) -> None:
    if principal.role in (Role.SUPER_ADMIN, Role.ORG_ADMIN):
        return
    if invitation.inviter_id != principal.id:
        raise AuthorizationError(
            f"Can only {action} your own invitations", required=str(Role.ORG_ADMIN)
        )


async def revoke_invitation(
    session: AsyncSession,
    principal: User,
    organization_id: uuid.UUID,
    invitation_id: uuid.UUID,
) -> Invitation:
    invitation = await get_org_invitation(session, organization_id, invitation_id)
    _ensure_can_manage(principal, invitation, "revoke")

    now = utcnow()
    if not invitation.is_usable(now) or not await _transition(
        session, invitation.id, InvitationStatus.REVOKED, now, revoked_at=now
    ):
        raise InvitationStateError("Invitation is no longer pending")

    await session.commit()
    await session.refresh(invitation)
    logger.info("Invitation %s revoked by %s", invitation.id, principal.id)
    return invitation


async def record_reminder(session: AsyncSession, invitation: Invitation, now: datetime) -> Invitation:
    """Count one reminder send and schedule the next, or stop at the cap."""
    settings = get_settings()
    max_reminders = settings.invitation_max_reminders
    if not invitation.is_usable(now):
        raise InvitationStateError("Cannot resend expired or inactive invitation")
    if invitation.reminders_sent >= max_reminders:
        raise InvitationStateError("Maximum reminders already sent")

    sent = invitation.reminders_sent + 1
    next_at = now + timedelta(days=settings.invitation_reminder_days) if sent < max_reminders else None
    stmt = (
        update(Invitation)
        .where(
            Invitation.id == invitation.id,
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at > now,
            Invitation.reminders_sent == invitation.reminders_sent,
        )
        .values(reminders_sent=sent, next_reminder_at=next_at, updated_at=now)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        raise InvitationStateError("Invitation changed concurrently; try again")

    await session.commit()
    await session.refresh(invitation)
    await send_invitation_email(invitation, kind="reminder")
    return invitation


async def resend_invitation(
    session: AsyncSession,
    principal: User,
    organization_id: uuid.UUID,
    invitation_id: uuid.UUID,
) -> Invitation:
    invitation = await get_org_invitation(session, organization_id, invitation_id)
    _ensure_can_manage(principal, invitation, "resend")
    return await record_reminder(session, invitation, utcnow())


@dataclass
class InvitationPage:
    items: list[Invitation]
    total: int
    stats: dict[str, int]
    now: datetime


async def list_invitations(
    session: AsyncSession,
    organization_id: uuid.UUID,
    *,
    status: InvitationStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> InvitationPage:
    now = utcnow()
    effective = effective_status_expr(now)

    criteria = [Invitation.organization_id == organization_id]
    if status is not None:
        criteria.append(effective == status.value)

    total = (
        await session.execute(select(func.count()).select_from(Invitation).where(*criteria))
    ).scalar_one()

    stmt = (
        select(Invitation)
        .where(*criteria)
        .order_by(Invitation.created_at.desc())  # type: ignore[attr-defined]
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list((await session.execute(stmt)).scalars().all())

    stats_rows = await session.execute(
        select(effective.label("effective"), func.count())
        .where(Invitation.organization_id == organization_id)
        .group_by("effective")
    )
    stats = {row[0]: row[1] for row in stats_rows.all()}
    return InvitationPage(items=items, total=total, stats=stats, now=now)


# ── Background maintenance ───────────────────────────────────

async def expire_lapsed(session: AsyncSession, now: datetime | None = None) -> int:
    """Persist ``expired`` for every lapsed pending invitation."""
    now = now or utcnow()
    result = await session.execute(
        update(Invitation)
        .where(
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED, updated_at=now)
    )
    await session.commit()
    return result.rowcount


async def find_due_reminders(session: AsyncSession, now: datetime) -> list[Invitation]:
    stmt = select(Invitation).where(
        Invitation.status == InvitationStatus.PENDING,
        Invitation.expires_at > now,
        Invitation.next_reminder_at.is_not(None),  # type: ignore[union-attr]
        Invitation.next_reminder_at < now,  # type: ignore[operator]
        Invitation.reminders_sent < get_settings().invitation_max_reminders,
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
