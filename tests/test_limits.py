"""Tests for the subscription limit guard."""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from calltracker.core.errors import LimitExceededError
from calltracker.core.permissions import Role
from calltracker.models.organization import UNLIMITED, LimitedResource
from calltracker.services.limits import check_limit, count_usage

from factories import auth_headers, make_organization, make_user, unique


def _fail_open_count(resource: str) -> float:
    value = REGISTRY.get_sample_value(
        "subscription_limit_checks_total",
        {"resource": resource, "result": "fail_open"},
    )
    return value or 0.0


@pytest.mark.asyncio
async def test_user_limit_reached_blocks_invite(client: AsyncClient, session):
    org = await make_organization(session, user_limit=5)
    admin = await make_user(session, org, Role.ORG_ADMIN)
    for _ in range(4):
        await make_user(session, org)

    resp = await client.post(
        f"/v1/organizations/{org.id}/invitations",
        json={"email": f"{unique('new')}@calltrack.io", "role": "agent"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 403
    body = resp.json()
    assert body["success"] is False
    assert body["limit_info"]["resource"] == "users"
    assert body["limit_info"]["current"] == 5
    assert body["limit_info"]["limit"] == 5


@pytest.mark.asyncio
async def test_inactive_users_do_not_count(session):
    org = await make_organization(session, user_limit=2)
    admin = await make_user(session, org, Role.ORG_ADMIN)
    await make_user(session, org, is_active=False)
    assert await check_limit(session, org, LimitedResource.USERS, admin) == 1


@pytest.mark.asyncio
async def test_unlimited_always_passes(session):
    org = await make_organization(session, contact_limit=UNLIMITED)
    agent = await make_user(session, org)
    assert await check_limit(session, org, LimitedResource.CONTACTS, agent) is None


@pytest.mark.asyncio
async def test_super_admin_bypasses_limits(session):
    org = await make_organization(session, team_limit=0)
    root = await make_user(session, None, Role.SUPER_ADMIN)
    assert await check_limit(session, org, LimitedResource.TEAMS, root) is None


@pytest.mark.asyncio
async def test_limit_exceeded_carries_plan(session):
    org = await make_organization(session, team_limit=0)
    admin = await make_user(session, org, Role.ORG_ADMIN)
    with pytest.raises(LimitExceededError) as excinfo:
        await check_limit(session, org, LimitedResource.TEAMS, admin)
    assert excinfo.value.extra()["limit_info"] == {
        "resource": "teams",
        "current": 0,
        "limit": 0,
        "subscription_plan": "free",
    }


@pytest.mark.asyncio
async def test_measurement_failure_fails_open(session):
    org = await make_organization(session, contact_limit=1)
    agent = await make_user(session, org)
    before = _fail_open_count("contacts")

    failing = AsyncMock(side_effect=OperationalError("SELECT count", {}, Exception("db down")))
    with patch("calltracker.services.limits.count_usage", failing):
        assert await check_limit(session, org, LimitedResource.CONTACTS, agent) is None

    assert _fail_open_count("contacts") == before + 1
    # Objects stay usable after the rollback.
    assert agent.organization_id == org.id


@pytest.mark.asyncio
async def test_fail_open_is_recorded_when_store_stays_down(session, caplog):
    org = await make_organization(session, team_limit=1)
    admin = await make_user(session, org, Role.ORG_ADMIN)
    org_id = org.id
    before = _fail_open_count("teams")

    down = OperationalError("SELECT", {}, Exception("db down"))
    with (
        patch("calltracker.services.limits.count_usage", AsyncMock(side_effect=down)),
        patch.object(session, "refresh", AsyncMock(side_effect=down)),
        caplog.at_level(logging.ERROR, logger="calltracker.services.limits"),
    ):
        assert await check_limit(session, org, LimitedResource.TEAMS, admin) is None

    assert _fail_open_count("teams") == before + 1
    assert any(
        "FAILED OPEN" in r.getMessage() and str(org_id) in r.getMessage()
        for r in caplog.records
    )


@pytest.mark.asyncio
async def test_contact_limit_enforced_on_create(client: AsyncClient, session):
    org = await make_organization(session, contact_limit=1)
    agent = await make_user(session, org)
    headers = auth_headers(agent)

    resp = await client.post("/v1/contacts", json={"name": "A", "phone": "+1555"}, headers=headers)
    assert resp.status_code == 201
    assert await count_usage(session, org.id, LimitedResource.CONTACTS) == 1

    resp = await client.post("/v1/contacts", json={"name": "B", "phone": "+1556"}, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["limit_info"]["resource"] == "contacts"


@pytest.mark.asyncio
async def test_call_limit_counts_this_month(client: AsyncClient, session):
    org = await make_organization(session, call_limit=1)
    agent = await make_user(session, org)
    headers = auth_headers(agent)

    resp = await client.post("/v1/call-logs", json={"phone_number": "+1555"}, headers=headers)
    assert resp.status_code == 201
    resp = await client.post("/v1/call-logs", json={"phone_number": "+1555"}, headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_health_and_metrics_are_public(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert "subscription_limit_checks_total" in resp.text
