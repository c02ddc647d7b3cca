"""Tests for organization signup and subscription management."""

import pytest
from httpx import AsyncClient

from calltracker.core.permissions import Role
from calltracker.models.organization import (
    PLAN_LIMITS,
    UNLIMITED,
    LimitedResource,
    Organization,
    SubscriptionPlan,
    SubscriptionStatus,
)

from factories import PASSWORD, auth_headers, make_organization, make_user, signup, unique


@pytest.mark.asyncio
async def test_signup_creates_trial_org_and_admin(client: AsyncClient):
    headers, data = await signup(client)
    org = data["organization"]
    assert org["subscription_plan"] == "free"
    assert org["subscription_status"] == "trial"
    assert org["user_limit"] == PLAN_LIMITS[SubscriptionPlan.FREE][LimitedResource.USERS]
    assert data["user"]["role"] == "org_admin"
    assert "manage_organization" in data["user"]["permissions"]

    resp = await client.get("/v1/organizations/me", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == org["id"]


@pytest.mark.asyncio
async def test_signup_duplicate_slug_is_409(client: AsyncClient):
    slug = unique("dup")
    await signup(client, slug)
    resp = await client.post("/v1/organizations", json={
        "organization_name": "Again",
        "organization_slug": slug,
        "admin_email": f"other@{slug}.calltrack.io",
        "admin_password": PASSWORD,
    })
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_login_wrong_password_is_401(client: AsyncClient):
    _, data = await signup(client)
    resp = await client.post(
        "/v1/auth/login", json={"email": data["user"]["email"], "password": "wrong-password"}
    )
    assert resp.status_code == 401


def test_apply_plan_rewrites_limits():
    org = Organization(name="x", slug="x")
    org.apply_plan(SubscriptionPlan.ENTERPRISE)
    for resource in LimitedResource:
        assert org.limit_for(resource) == UNLIMITED
    org.apply_plan(SubscriptionPlan.PRO)
    assert org.limit_for(LimitedResource.USERS) == 10
    assert org.limit_for(LimitedResource.TEAMS) == 5


def test_status_transitions():
    org = Organization(name="x", slug="x", subscription_status=SubscriptionStatus.TRIAL)
    assert org.can_transition_to(SubscriptionStatus.ACTIVE)
    assert org.can_transition_to(SubscriptionStatus.EXPIRED)
    assert not org.can_transition_to(SubscriptionStatus.SUSPENDED)

    org.subscription_status = SubscriptionStatus.ACTIVE
    assert org.can_transition_to(SubscriptionStatus.SUSPENDED)
    assert not org.can_transition_to(SubscriptionStatus.TRIAL)

    org.subscription_status = SubscriptionStatus.SUSPENDED
    assert org.can_transition_to(SubscriptionStatus.ACTIVE)

    org.subscription_status = SubscriptionStatus.EXPIRED
    assert not any(org.can_transition_to(s) for s in SubscriptionStatus)


@pytest.mark.asyncio
async def test_super_admin_changes_subscription(client: AsyncClient, session):
    org = await make_organization(session, status=SubscriptionStatus.TRIAL)
    root = await make_user(session, None, Role.SUPER_ADMIN)
    url = f"/v1/organizations/{org.id}/subscription"

    resp = await client.patch(
        url,
        json={"subscription_plan": "business", "subscription_status": "active"},
        headers=auth_headers(root),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["subscription_plan"] == "business"
    assert body["subscription_status"] == "active"
    assert body["user_limit"] == 50

    resp = await client.patch(url, json={"subscription_status": "trial"}, headers=auth_headers(root))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_org_admin_cannot_change_subscription(client: AsyncClient):
    headers, data = await signup(client)
    resp = await client.patch(
        f"/v1/organizations/{data['organization']['id']}/subscription",
        json={"subscription_plan": "enterprise"},
        headers=headers,
    )
    assert resp.status_code == 403
    assert resp.json()["required"] == "super_admin"


@pytest.mark.asyncio
async def test_suspension_locks_out_members(client: AsyncClient, session):
    org = await make_organization(session)
    member = await make_user(session, org)
    root = await make_user(session, None, Role.SUPER_ADMIN)

    assert (await client.get("/v1/auth/me", headers=auth_headers(member))).status_code == 200
    resp = await client.patch(
        f"/v1/organizations/{org.id}/subscription",
        json={"subscription_status": "suspended"},
        headers=auth_headers(root),
    )
    assert resp.status_code == 200
    assert (await client.get("/v1/auth/me", headers=auth_headers(member))).status_code == 403


@pytest.mark.asyncio
async def test_subscription_usage_reports_each_limit(client: AsyncClient):
    headers, data = await signup(client)
    org_id = data["organization"]["id"]
    resp = await client.post("/v1/contacts", json={"name": "Lead", "phone": "+1"}, headers=headers)
    assert resp.status_code == 201
    resp = await client.post("/v1/call-logs", json={"phone_number": "+1"}, headers=headers)
    assert resp.status_code == 201

    resp = await client.get(f"/v1/organizations/{org_id}/subscription", headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["subscription_plan"] == "free"
    assert body["subscription_status"] == "trial"
    free = PLAN_LIMITS[SubscriptionPlan.FREE]
    assert body["limits"] == {
        "users": {"current": 1, "limit": free[LimitedResource.USERS]},
        "calls": {"current": 1, "limit": free[LimitedResource.CALLS]},
        "contacts": {"current": 1, "limit": free[LimitedResource.CONTACTS]},
        "teams": {"current": 0, "limit": free[LimitedResource.TEAMS]},
    }


@pytest.mark.asyncio
async def test_subscription_usage_requires_billing_permission(client: AsyncClient, session):
    org = await make_organization(session)
    manager = await make_user(session, org, Role.MANAGER)
    resp = await client.get(
        f"/v1/organizations/{org.id}/subscription", headers=auth_headers(manager)
    )
    assert resp.status_code == 403
    assert resp.json()["required"] == "manage_billing"
