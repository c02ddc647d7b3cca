"""Periodic invitation maintenance jobs.

``expire_invitations`` persists the expiry that reads already derive, and
``send_due_reminders`` re-sends invitations whose reminder is due.
"""

import logging

from calltracker.core.database import async_session_factory
from calltracker.core.errors import InvitationStateError
from calltracker.models.base import utcnow
from calltracker.services.invitations import expire_lapsed, find_due_reminders, record_reminder

logger = logging.getLogger(__name__)


async def expire_invitations(ctx: dict) -> dict:
    async with async_session_factory() as session:
        expired = await expire_lapsed(session, utcnow())
    logger.info("Invitation sweep: marked %d invitations expired", expired)
    return {"expired": expired}


async def send_due_reminders(ctx: dict) -> dict:
    """Send one reminder for every pending invitation whose reminder is due."""
    now = utcnow()
    sent = 0
    skipped = 0

    async with async_session_factory() as session:
        due = await find_due_reminders(session, now)
        for invitation in due:
            try:
                await record_reminder(session, invitation, now)
            except InvitationStateError as exc:
                # Accepted, revoked or reminded concurrently since selection.
                logger.info("Skipping reminder for invitation %s: %s", invitation.id, exc.message)
                skipped += 1
                continue
            sent += 1

    logger.info("Reminder job: sent %d, skipped %d", sent, skipped)
    return {"sent": sent, "skipped": skipped}
