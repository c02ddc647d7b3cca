"""FastAPI dependencies: authentication, tenant context and authorization gates.

``get_tenant_context`` is the single choke point every authenticated route
depends on. It authenticates the bearer token, loads the principal and its
organization through a :class:`PrincipalStore`, and binds the organization the
request targets. Permission, role, scope and limit gates all build on it.
"""

import json
import logging
import uuid
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from calltracker.core.database import get_session
from calltracker.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from calltracker.core.permissions import (
    Permission,
    Role,
    has_all_permissions,
    has_any_permission,
    has_permission,
    is_super_admin,
)
from calltracker.core.scope import AccessScope, resolve_access_scope
from calltracker.core.security import decode_jwt
from calltracker.models.organization import LimitedResource, Organization, SubscriptionStatus
from calltracker.models.user import User
from calltracker.services.limits import check_limit
from calltracker.services.principals import PrincipalStore, SqlPrincipalStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_ORG_PARAM_NAMES = ("organizationId", "organization_id")


class TenantContext:
    """Resolved principal and organization context carried through a request."""

    __slots__ = ("principal", "organization", "target_organization_id", "target_organization")

    def __init__(
        self,
        principal: User,
        organization: Organization | None,
        target_organization_id: uuid.UUID | None,
        target_organization: Organization | None,
    ) -> None:
        self.principal = principal
        self.organization = organization
        self.target_organization_id = target_organization_id
        self.target_organization = target_organization

    @property
    def is_cross_tenant(self) -> bool:
        return self.target_organization_id != self.principal.organization_id

    def require_target(self) -> Organization:
        """The targeted organization; unscoped super-admins must name one."""
        if self.target_organization is None:
            raise ValidationError("organizationId is required", field="organizationId")
        return self.target_organization


Session = Annotated[AsyncSession, Depends(get_session)]


def get_principal_store(session: Session) -> PrincipalStore:
    return SqlPrincipalStore(session)


Store = Annotated[PrincipalStore, Depends(get_principal_store)]


async def _body_organization_id(request: Request) -> str | None:
    if request.method not in ("POST", "PUT", "PATCH"):
        return None
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        body = json.loads(raw)
    except ValueError:
        # Malformed bodies are reported by request validation.
        return None
    if not isinstance(body, dict):
        return None
    for name in _ORG_PARAM_NAMES:
        value = body.get(name)
        if value:
            return str(value)
    return None


async def requested_organization_id(request: Request) -> uuid.UUID | None:
    """Resolve the one canonical target organization from path, body or query."""
    raw_values = [request.path_params.get("organization_id"), await _body_organization_id(request)]
    raw_values.extend(request.query_params.get(name) for name in _ORG_PARAM_NAMES)

    parsed: set[uuid.UUID] = set()
    for raw in raw_values:
        if not raw:
            continue
        try:
            parsed.add(uuid.UUID(str(raw)))
        except ValueError as exc:
            raise ValidationError("Invalid organizationId", field="organizationId") from exc

    if len(parsed) > 1:
        raise ValidationError("Conflicting organizationId values", field="organizationId")
    return parsed.pop() if parsed else None


async def get_tenant_context(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    store: Store,
) -> TenantContext:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access denied. No token provided.")

    try:
        payload = decode_jwt(credentials.credentials)
        principal_id = uuid.UUID(payload["sub"])
    except (JWTError, KeyError, ValueError, TypeError) as exc:
        raise AuthenticationError("Invalid or expired token.") from exc

    principal = await store.get_principal(principal_id)
    if principal is None or not principal.is_active:
        raise AuthenticationError("Invalid or expired token.")

    # The organization claim must match the stored (immutable) membership.
    token_org = payload.get("org")
    stored_org = str(principal.organization_id) if principal.organization_id else None
    if token_org != stored_org:
        raise AuthenticationError("Invalid or expired token.")

    organization = None
    if principal.organization_id is not None:
        organization = await store.get_organization(principal.organization_id)
        if organization is None or not organization.is_active:
            raise AuthorizationError("Organization is not active.")
        if organization.subscription_status == SubscriptionStatus.SUSPENDED:
            raise AuthorizationError("Organization subscription is suspended.")

    requested = await requested_organization_id(request)
    target_id = requested or principal.organization_id
    target_org = organization

    if target_id != principal.organization_id:
        if not is_super_admin(principal):
            logger.warning(
                "Cross-tenant access denied: user %s (org %s) requested org %s",
                principal.id, principal.organization_id, target_id,
            )
            raise AuthorizationError(
                "Access denied. Cannot access a different organization.",
                required=str(Role.SUPER_ADMIN),
            )
        target_org = await store.get_organization(target_id)  # type: ignore[arg-type]
        if target_org is None:
            raise NotFoundError("Organization not found")

    return TenantContext(
        principal=principal,
        organization=organization,
        target_organization_id=target_id,
        target_organization=target_org,
    )


Context = Annotated[TenantContext, Depends(get_tenant_context)]


# ── Authorization gates ──────────────────────────────────────

def require_permission(permission: Permission):
    async def _gate(ctx: Context) -> TenantContext:
        if not has_permission(ctx.principal, permission):
            raise AuthorizationError(
                f"Access denied. Required permission: {permission}",
                required=str(permission),
            )
        return ctx

    return _gate


def require_any_permission(*permissions: Permission):
    required = " OR ".join(permissions)

    async def _gate(ctx: Context) -> TenantContext:
        if not has_any_permission(ctx.principal, permissions):
            raise AuthorizationError(
                f"Access denied. Required permissions: {required}", required=required
            )
        return ctx

    return _gate


def require_all_permissions(*permissions: Permission):
    required = " AND ".join(permissions)

    async def _gate(ctx: Context) -> TenantContext:
        if not has_all_permissions(ctx.principal, permissions):
            raise AuthorizationError(
                f"Access denied. Required permissions: {required}", required=required
            )
        return ctx

    return _gate


def require_role(*roles: Role):
    required = " OR ".join(roles)

    async def _gate(ctx: Context) -> TenantContext:
        if ctx.principal.role not in roles:
            raise AuthorizationError(f"Access denied. Required role: {required}", required=required)
        return ctx

    return _gate


def require_limit(resource: LimitedResource):
    """Gate a creation route on the target organization's plan limit."""

    async def _gate(ctx: Context, session: Session) -> int | None:
        return await check_limit(session, ctx.require_target(), resource, ctx.principal)

    return _gate


async def get_access_scope(ctx: Context, store: Store) -> AccessScope:
    organization = ctx.require_target()
    team_ids = await store.managed_team_ids(ctx.principal)
    return resolve_access_scope(ctx.principal.role, ctx.principal.id, organization.id, team_ids)


Scope = Annotated[AccessScope, Depends(get_access_scope)]
