"""Tests for the invitation lifecycle (service layer)."""

import re
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func
from sqlmodel import select

from calltracker.core.errors import (
    AuthorizationError,
    ConflictError,
    InvitationStateError,
    NotFoundError,
    ValidationError,
)
from calltracker.core.permissions import Permission, Role, TeamRole, default_permissions
from calltracker.models.base import utcnow
from calltracker.models.invitation import Invitation, InvitationStatus
from calltracker.models.organization import Organization
from calltracker.models.team import Team, TeamMember
from calltracker.models.user import User
from calltracker.services import invitations as svc
from calltracker.services.principals import SqlPrincipalStore

from factories import make_organization, make_user, unique

PATCH_CLOCK = "calltracker.services.invitations.utcnow"


async def _setup(session):
    org = await make_organization(session)
    admin = await make_user(session, org, Role.ORG_ADMIN)
    return org, admin


def _email() -> str:
    return f"{unique('invitee')}@calltrack.io"


# ── Create ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_invitation_defaults(session):
    org, admin = await _setup(session)
    before = utcnow()
    inv = await svc.create_invitation(session, admin, org, email=_email(), role=Role.MANAGER)

    assert inv.status == InvitationStatus.PENDING
    assert re.fullmatch(r"[0-9a-f]{64}", inv.token)
    assert timedelta(days=7) - timedelta(minutes=1) < inv.expires_at - before <= timedelta(days=7, minutes=1)
    assert inv.next_reminder_at is not None
    assert set(inv.permission_list) == {str(p) for p in default_permissions(Role.MANAGER)}


@pytest.mark.asyncio
async def test_email_is_normalized(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email="  Mixed.Case@CallTrack.io ")
    assert inv.email == "mixed.case@calltrack.io"


@pytest.mark.asyncio
async def test_invalid_email_rejected(session):
    org, admin = await _setup(session)
    with pytest.raises(ValidationError):
        await svc.create_invitation(session, admin, org, email="not-an-email")
    with pytest.raises(ValidationError):
        await svc.create_invitation(session, admin, org, email="")


@pytest.mark.asyncio
async def test_permission_override_stored_verbatim(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(
        session, admin, org, email=_email(), permissions=[Permission.VIEW_OWN_CONTACTS]
    )
    assert inv.permission_list == ["view_own_contacts"]


@pytest.mark.asyncio
async def test_super_admin_role_not_invitable(session):
    org, admin = await _setup(session)
    with pytest.raises(ValidationError):
        await svc.create_invitation(session, admin, org, email=_email(), role=Role.SUPER_ADMIN)


@pytest.mark.asyncio
async def test_only_admins_can_invite_org_admins(session):
    org, _ = await _setup(session)
    manager = await make_user(session, org, Role.MANAGER)
    with pytest.raises(AuthorizationError):
        await svc.create_invitation(session, manager, org, email=_email(), role=Role.ORG_ADMIN)


@pytest.mark.asyncio
async def test_team_must_belong_to_org(session):
    org, admin = await _setup(session)
    other = await make_organization(session)
    foreign_team = Team(organization_id=other.id, name="Elsewhere")
    session.add(foreign_team)
    await session.commit()

    with pytest.raises(ValidationError):
        await svc.create_invitation(session, admin, org, email=_email(), team_id=foreign_team.id)


@pytest.mark.asyncio
async def test_existing_user_conflicts(session):
    org, admin = await _setup(session)
    existing = await make_user(session, org)
    with pytest.raises(ConflictError):
        await svc.create_invitation(session, admin, org, email=existing.email.upper())


@pytest.mark.asyncio
async def test_one_pending_invitation_per_email(session):
    org, admin = await _setup(session)
    email = _email()
    await svc.create_invitation(session, admin, org, email=email)

    with pytest.raises(InvitationStateError) as excinfo:
        await svc.create_invitation(session, admin, org, email=email)
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_same_email_in_two_orgs_is_allowed(session):
    org, admin = await _setup(session)
    other, other_admin = await _setup(session)
    email = _email()
    first = await svc.create_invitation(session, admin, org, email=email)
    second = await svc.create_invitation(session, other_admin, other, email=email)
    assert first.token != second.token


@pytest.mark.asyncio
async def test_reinvite_after_revoke(session):
    org, admin = await _setup(session)
    email = _email()
    first = await svc.create_invitation(session, admin, org, email=email)
    revoked = await svc.revoke_invitation(session, admin, org.id, first.id)
    assert revoked.status == InvitationStatus.REVOKED
    assert revoked.revoked_at is not None

    second = await svc.create_invitation(session, admin, org, email=email)
    assert second.id != first.id
    assert second.status == InvitationStatus.PENDING


@pytest.mark.asyncio
async def test_reinvite_after_expiry(session):
    org, admin = await _setup(session)
    email = _email()
    first = await svc.create_invitation(session, admin, org, email=email)

    with patch(PATCH_CLOCK, return_value=utcnow() + timedelta(days=8)):
        second = await svc.create_invitation(session, admin, org, email=email)

    await session.refresh(first)
    assert first.status == InvitationStatus.EXPIRED
    assert second.status == InvitationStatus.PENDING


# ── Accept / decline ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_accept_creates_exactly_one_user(session):
    org, admin = await _setup(session)
    team = Team(organization_id=org.id, name="Closers")
    session.add(team)
    await session.commit()
    email = _email()
    inv = await svc.create_invitation(
        session, admin, org, email=email, role=Role.AGENT, team_id=team.id, team_role=TeamRole.VIEWER
    )

    accepted, user = await svc.accept_invitation(session, inv.token, password="s3cretpass", display_name="Ann")
    assert accepted.status == InvitationStatus.ACCEPTED
    assert accepted.accepted_user_id == user.id
    assert user.organization_id == org.id
    assert user.role == Role.AGENT
    assert user.team_id == team.id

    member = (
        await session.execute(select(TeamMember).where(TeamMember.user_id == user.id))
    ).scalar_one()
    assert member.team_id == team.id
    assert member.team_role == TeamRole.VIEWER

    with pytest.raises(InvitationStateError):
        await svc.accept_invitation(session, inv.token, password="s3cretpass")

    count = (
        await session.execute(select(func.count()).select_from(User).where(User.email == email))
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_accept_after_expiry_fails(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email())

    with patch(PATCH_CLOCK, return_value=utcnow() + timedelta(days=8)):
        with pytest.raises(InvitationStateError) as excinfo:
            await svc.accept_invitation(session, inv.token, password="s3cretpass")
    assert excinfo.value.message == "Invalid or expired invitation."


@pytest.mark.asyncio
async def test_unknown_token_fails_generically(session):
    with pytest.raises(InvitationStateError) as excinfo:
        await svc.accept_invitation(session, "0" * 64, password="s3cretpass")
    assert excinfo.value.message == "Invalid or expired invitation."


@pytest.mark.asyncio
async def test_decline_is_terminal(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email())

    declined = await svc.decline_invitation(session, inv.token)
    assert declined.status == InvitationStatus.DECLINED
    assert declined.declined_at is not None

    with pytest.raises(InvitationStateError):
        await svc.accept_invitation(session, inv.token, password="s3cretpass")
    with pytest.raises(InvitationStateError):
        await svc.decline_invitation(session, inv.token)


@pytest.mark.asyncio
async def test_revoked_invitation_cannot_be_accepted(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email())
    await svc.revoke_invitation(session, admin, org.id, inv.id)

    with pytest.raises(InvitationStateError):
        await svc.accept_invitation(session, inv.token, password="s3cretpass")
    with pytest.raises(InvitationStateError):
        await svc.revoke_invitation(session, admin, org.id, inv.id)


# ── Revoke / resend ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_revoke_rules(session):
    org, admin = await _setup(session)
    manager = await make_user(session, org, Role.MANAGER)
    other_manager = await make_user(session, org, Role.MANAGER)
    inv = await svc.create_invitation(session, manager, org, email=_email())

    with pytest.raises(AuthorizationError):
        await svc.revoke_invitation(session, other_manager, org.id, inv.id)

    other = await make_organization(session)
    with pytest.raises(NotFoundError):
        await svc.revoke_invitation(session, admin, other.id, inv.id)

    revoked = await svc.revoke_invitation(session, manager, org.id, inv.id)
    assert revoked.status == InvitationStatus.REVOKED


@pytest.mark.asyncio
async def test_reminders_stop_after_three(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email())

    for expected in (1, 2):
        inv = await svc.resend_invitation(session, admin, org.id, inv.id)
        assert inv.reminders_sent == expected
        assert inv.next_reminder_at is not None

    inv = await svc.resend_invitation(session, admin, org.id, inv.id)
    assert inv.reminders_sent == 3
    assert inv.next_reminder_at is None

    with pytest.raises(InvitationStateError) as excinfo:
        await svc.resend_invitation(session, admin, org.id, inv.id)
    assert excinfo.value.message == "Maximum reminders already sent"
    await session.refresh(inv)
    assert inv.reminders_sent == 3


@pytest.mark.asyncio
async def test_resend_expired_invitation_fails(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email())
    with patch(PATCH_CLOCK, return_value=utcnow() + timedelta(days=8)):
        with pytest.raises(InvitationStateError):
            await svc.resend_invitation(session, admin, org.id, inv.id)


# ── Listing / details / bulk ─────────────────────────────────

@pytest.mark.asyncio
async def test_list_reports_effective_status(session):
    org, admin = await _setup(session)
    keep = await svc.create_invitation(session, admin, org, email=_email())
    gone = await svc.create_invitation(session, admin, org, email=_email())
    await svc.revoke_invitation(session, admin, org.id, gone.id)

    page = await svc.list_invitations(session, org.id)
    assert page.total == 2
    assert page.stats == {"pending": 1, "revoked": 1}

    pending = await svc.list_invitations(session, org.id, status=InvitationStatus.PENDING)
    assert [i.id for i in pending.items] == [keep.id]

    with patch(PATCH_CLOCK, return_value=utcnow() + timedelta(days=8)):
        later = await svc.list_invitations(session, org.id, status=InvitationStatus.EXPIRED)
    assert [i.id for i in later.items] == [keep.id]


@pytest.mark.asyncio
async def test_details_days_remaining(session):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email(), message="Welcome")

    view = await svc.get_invitation_details(session, inv.token)
    assert view.days_remaining == 7
    assert view.organization_name == org.name
    assert view.invitation.message == "Welcome"

    with patch(PATCH_CLOCK, return_value=utcnow() + timedelta(days=5, hours=12)):
        view = await svc.get_invitation_details(session, inv.token)
    assert view.days_remaining == 2


@pytest.mark.asyncio
async def test_bulk_outcomes(session):
    org, admin = await _setup(session)
    existing = await make_user(session, org)
    fresh = _email()

    result = await svc.create_bulk_invitations(
        session,
        admin,
        org,
        [
            {"email": fresh},
            {"email": fresh},
            {"email": existing.email},
            {"email": "broken"},
            {"email": _email(), "role": Role.SUPER_ADMIN},
        ],
    )
    assert [r["email"] for r in result.successful] == [fresh]
    assert len(result.skipped) == 2
    assert len(result.failed) == 2


@pytest.mark.asyncio
async def test_bulk_size_bounds(session):
    org, admin = await _setup(session)
    with pytest.raises(ValidationError):
        await svc.create_bulk_invitations(session, admin, org, [])
    with pytest.raises(ValidationError):
        await svc.create_bulk_invitations(
            session, admin, org, [{"email": _email()} for _ in range(51)]
        )


# ── Concurrency ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_accepts_create_one_user(session, test_session_factory):
    org, admin = await _setup(session)
    email = _email()
    inv = await svc.create_invitation(session, admin, org, email=email)
    token = inv.token

    real_lookup = SqlPrincipalStore.find_active_by_email
    raced = False

    async def lookup_then_race(self, address):
        # Both callers pass the duplicate-user check before either commits.
        nonlocal raced
        found = await real_lookup(self, address)
        if not raced:
            raced = True
            async with test_session_factory() as other:
                await svc.accept_invitation(other, token, password="s3cretpass")
        return found

    with patch.object(SqlPrincipalStore, "find_active_by_email", lookup_then_race):
        with pytest.raises(InvitationStateError):
            await svc.accept_invitation(session, token, password="s3cretpass")

    async with test_session_factory() as fresh:
        count = (
            await fresh.execute(select(func.count()).select_from(User).where(User.email == email))
        ).scalar_one()
        stored = (
            await fresh.execute(select(Invitation).where(Invitation.token == token))
        ).scalar_one()
    assert count == 1
    assert stored.status == InvitationStatus.ACCEPTED


@pytest.mark.asyncio
async def test_concurrent_creates_keep_one_pending_invitation(session, test_session_factory):
    org, admin = await _setup(session)
    email = _email()
    real_token = svc._unique_token
    raced = False

    async def token_after_rival(sess):
        nonlocal raced
        if not raced:
            raced = True
            async with test_session_factory() as other:
                rival_org = await other.get(Organization, org.id)
                rival_admin = await other.get(User, admin.id)
                await svc.create_invitation(other, rival_admin, rival_org, email=email)
        return await real_token(sess)

    with patch("calltracker.services.invitations._unique_token", token_after_rival):
        with pytest.raises(InvitationStateError) as excinfo:
            await svc.create_invitation(session, admin, org, email=email)
    assert excinfo.value.status_code == 409

    pending = (
        await session.execute(
            select(func.count()).select_from(Invitation).where(
                Invitation.organization_id == org.id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING,
            )
        )
    ).scalar_one()
    assert pending == 1
    # The loser can still use the objects it was handed.
    assert admin.organization_id == org.id


@pytest.mark.asyncio
async def test_timestamps_read_back_timezone_aware(session, test_session_factory):
    org, admin = await _setup(session)
    inv = await svc.create_invitation(session, admin, org, email=_email())

    async with test_session_factory() as fresh:
        stored = await fresh.get(Invitation, inv.id)
        assert stored.expires_at.tzinfo is not None
        assert stored.expires_at.utcoffset() == timedelta(0)
        assert stored.created_at.utcoffset() == timedelta(0)
        assert stored.expires_at - utcnow() > timedelta(days=6)
