"""Tests for the periodic invitation jobs."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from calltracker.core.permissions import Role
from calltracker.models.base import utcnow
from calltracker.models.invitation import InvitationStatus
from calltracker.services import invitations as svc
from calltracker.workers.invitations import expire_invitations, send_due_reminders
from calltracker.workers.main import WorkerSettings

from factories import make_organization, make_user, unique


async def _invite(session):
    org = await make_organization(session)
    admin = await make_user(session, org, Role.ORG_ADMIN)
    return await svc.create_invitation(
        session, admin, org, email=f"{unique('job')}@calltrack.io"
    )


@pytest.mark.asyncio
async def test_expire_job_persists_expiry(session, test_session_factory):
    inv = await _invite(session)
    later = utcnow() + timedelta(days=8)

    with (
        patch("calltracker.workers.invitations.async_session_factory", test_session_factory),
        patch("calltracker.workers.invitations.utcnow", return_value=later),
    ):
        result = await expire_invitations({})

    assert result["expired"] >= 1
    await session.refresh(inv)
    assert inv.status == InvitationStatus.EXPIRED


@pytest.mark.asyncio
async def test_expire_job_leaves_live_invitations(session, test_session_factory):
    inv = await _invite(session)
    with patch("calltracker.workers.invitations.async_session_factory", test_session_factory):
        await expire_invitations({})
    await session.refresh(inv)
    assert inv.status == InvitationStatus.PENDING


@pytest.mark.asyncio
async def test_reminder_job_sends_due_reminders(session, test_session_factory):
    inv = await _invite(session)
    later = utcnow() + timedelta(days=2, hours=1)

    with (
        patch("calltracker.workers.invitations.async_session_factory", test_session_factory),
        patch("calltracker.workers.invitations.utcnow", return_value=later),
    ):
        result = await send_due_reminders({})

    assert result["sent"] >= 1
    await session.refresh(inv)
    assert inv.reminders_sent == 1
    assert inv.next_reminder_at > later


@pytest.mark.asyncio
async def test_reminder_job_skips_not_yet_due(session, test_session_factory):
    inv = await _invite(session)
    with patch("calltracker.workers.invitations.async_session_factory", test_session_factory):
        await send_due_reminders({})
    await session.refresh(inv)
    assert inv.reminders_sent == 0


def test_worker_registers_jobs():
    names = {f.__name__ for f in WorkerSettings.functions}
    assert names == {"expire_invitations", "send_due_reminders"}
    assert len(WorkerSettings.cron_jobs) == 2
