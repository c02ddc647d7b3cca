"""Subscription limit guard.

Counts current usage of a resource inside an organization and compares it to
the plan limit. Checks are best-effort: count-then-compare races with
concurrent creations near the boundary.

If the count itself cannot be measured the operation is allowed (fail-open).
That is the only place an authorization-style check defaults to "allow", so
it is logged at ERROR and counted under ``result="fail_open"``.
"""

import logging
import uuid
from datetime import datetime

from prometheus_client import Counter
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from calltracker.core.errors import LimitExceededError
from calltracker.core.permissions import is_super_admin
from calltracker.models.base import utcnow
from calltracker.models.call_log import CallLog
from calltracker.models.contact import Contact
from calltracker.models.organization import UNLIMITED, LimitedResource, Organization
from calltracker.models.team import Team
from calltracker.models.user import User

logger = logging.getLogger(__name__)

LIMIT_CHECKS_TOTAL = Counter(
    "subscription_limit_checks_total",
    "Subscription limit guard outcomes",
    ["resource", "result"],  # allowed | denied | bypassed | unlimited | fail_open
)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def count_usage(
    session: AsyncSession, organization_id: uuid.UUID, resource: LimitedResource
) -> int:
    """Current usage of ``resource`` inside one organization."""
    match resource:
        case LimitedResource.USERS:
            stmt = select(func.count()).select_from(User).where(
                User.organization_id == organization_id,
                User.is_active.is_(True),  # type: ignore[union-attr]
            )
        case LimitedResource.CALLS:
            stmt = select(func.count()).select_from(CallLog).where(
                CallLog.organization_id == organization_id,
                CallLog.created_at >= _month_start(utcnow()),
            )
        case LimitedResource.CONTACTS:
            stmt = select(func.count()).select_from(Contact).where(
                Contact.organization_id == organization_id,
                Contact.is_active.is_(True),  # type: ignore[union-attr]
            )
        case LimitedResource.TEAMS:
            stmt = select(func.count()).select_from(Team).where(
                Team.organization_id == organization_id,
                Team.is_active.is_(True),  # type: ignore[union-attr]
            )
    return (await session.execute(stmt)).scalar_one()


async def _restore_session(session: AsyncSession, *instances) -> None:
    """Roll back the failed count and reload the objects the caller still holds.

    Rollback expires every loaded instance. If the store is still unreachable
    the next statement of the request reports it; this only logs.
    """
    try:
        await session.rollback()
        for instance in instances:
            await session.refresh(instance)
    except SQLAlchemyError:
        logger.exception("Could not restore session after failed limit count")


async def check_limit(
    session: AsyncSession,
    organization: Organization,
    resource: LimitedResource,
    principal: User,
) -> int | None:
    """Raise LimitExceededError when usage has reached the plan limit.

    Returns the measured usage, or ``None`` when no count was taken.
    """
    if is_super_admin(principal):
        LIMIT_CHECKS_TOTAL.labels(resource=resource, result="bypassed").inc()
        return None

    limit = organization.limit_for(resource)
    if limit == UNLIMITED:
        LIMIT_CHECKS_TOTAL.labels(resource=resource, result="unlimited").inc()
        return None

    try:
        current = await count_usage(session, organization.id, resource)
    except SQLAlchemyError:
        LIMIT_CHECKS_TOTAL.labels(resource=resource, result="fail_open").inc()
        logger.exception(
            "Limit check FAILED OPEN for organization %s resource %s; allowing operation",
            organization.id,
            resource,
        )
        await _restore_session(session, organization, principal)
        return None

    if current >= limit:
        LIMIT_CHECKS_TOTAL.labels(resource=resource, result="denied").inc()
        logger.info(
            "Limit reached for organization %s: %s %d/%d",
            organization.id, resource, current, limit,
        )
        raise LimitExceededError(
            resource=str(resource),
            current=current,
            limit=limit,
            subscription_plan=str(organization.subscription_plan),
        )

    LIMIT_CHECKS_TOTAL.labels(resource=resource, result="allowed").inc()
    return current
