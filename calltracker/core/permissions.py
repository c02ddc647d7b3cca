"""Role & permission model plus the permission evaluator.

Roles and permissions are closed enumerations. ``default_permissions`` is a
pure mapping from role to its canonical permission set; it is called
explicitly whenever a principal is created or changes role without an
override, never inferred from object state.

Decisions are permission-based. The only role that short-circuits is
``super_admin``, which holds every permission unconditionally, including
permission strings outside :class:`Permission`.
"""

from collections.abc import Iterable
from enum import StrEnum
from typing import Any, Protocol, assert_never


class Role(StrEnum):
    SUPER_ADMIN = "super_admin"
    ORG_ADMIN = "org_admin"
    MANAGER = "manager"
    AGENT = "agent"
    VIEWER = "viewer"


class TeamRole(StrEnum):
    MANAGER = "manager"
    AGENT = "agent"
    VIEWER = "viewer"


class Permission(StrEnum):
    # Organization management
    MANAGE_ORGANIZATION = "manage_organization"
    MANAGE_BILLING = "manage_billing"
    MANAGE_SUBSCRIPTION = "manage_subscription"

    # Team management
    MANAGE_TEAMS = "manage_teams"
    MANAGE_TEAM_MEMBERS = "manage_team_members"
    VIEW_TEAM_ANALYTICS = "view_team_analytics"

    # User management
    INVITE_USERS = "invite_users"
    MANAGE_USER_ROLES = "manage_user_roles"
    VIEW_ALL_USERS = "view_all_users"

    # Contacts
    VIEW_ALL_CONTACTS = "view_all_contacts"
    MANAGE_ALL_CONTACTS = "manage_all_contacts"
    VIEW_TEAM_CONTACTS = "view_team_contacts"
    MANAGE_TEAM_CONTACTS = "manage_team_contacts"
    VIEW_OWN_CONTACTS = "view_own_contacts"
    MANAGE_OWN_CONTACTS = "manage_own_contacts"

    # Call logs
    VIEW_ALL_CALL_LOGS = "view_all_call_logs"
    MANAGE_ALL_CALL_LOGS = "manage_all_call_logs"
    VIEW_TEAM_CALL_LOGS = "view_team_call_logs"
    MANAGE_TEAM_CALL_LOGS = "manage_team_call_logs"
    VIEW_OWN_CALL_LOGS = "view_own_call_logs"
    MANAGE_OWN_CALL_LOGS = "manage_own_call_logs"

    # Analytics & export
    VIEW_ORGANIZATION_ANALYTICS = "view_organization_analytics"
    VIEW_OWN_ANALYTICS = "view_own_analytics"
    EXPORT_ORGANIZATION_DATA = "export_organization_data"
    EXPORT_TEAM_DATA = "export_team_data"
    EXPORT_OWN_DATA = "export_own_data"

    # System administration
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"
    VIEW_SYSTEM_LOGS = "view_system_logs"
    MANAGE_INTEGRATIONS = "manage_integrations"


# Convenience ordering only; authorization never compares ranks.
ROLE_RANK: dict[Role, int] = {
    Role.SUPER_ADMIN: 5,
    Role.ORG_ADMIN: 4,
    Role.MANAGER: 3,
    Role.AGENT: 2,
    Role.VIEWER: 1,
}

# Roles an invitation may assign.
INVITABLE_ROLES: frozenset[Role] = frozenset(
    {Role.ORG_ADMIN, Role.MANAGER, Role.AGENT, Role.VIEWER}
)

_VIEWER = frozenset({
    Permission.VIEW_OWN_CONTACTS,
    Permission.VIEW_OWN_CALL_LOGS,
    Permission.VIEW_OWN_ANALYTICS,
})

_AGENT = _VIEWER | {
    Permission.MANAGE_OWN_CONTACTS,
    Permission.MANAGE_OWN_CALL_LOGS,
    Permission.EXPORT_OWN_DATA,
}

_MANAGER = _AGENT | {
    Permission.MANAGE_TEAMS,
    Permission.MANAGE_TEAM_MEMBERS,
    Permission.VIEW_TEAM_ANALYTICS,
    Permission.INVITE_USERS,
    Permission.VIEW_ALL_USERS,
    Permission.VIEW_TEAM_CONTACTS,
    Permission.MANAGE_TEAM_CONTACTS,
    Permission.VIEW_TEAM_CALL_LOGS,
    Permission.MANAGE_TEAM_CALL_LOGS,
    Permission.EXPORT_TEAM_DATA,
}

_ORG_ADMIN = _MANAGER | {
    Permission.MANAGE_ORGANIZATION,
    Permission.MANAGE_BILLING,
    Permission.MANAGE_SUBSCRIPTION,
    Permission.MANAGE_USER_ROLES,
    Permission.VIEW_ALL_CONTACTS,
    Permission.MANAGE_ALL_CONTACTS,
    Permission.VIEW_ALL_CALL_LOGS,
    Permission.MANAGE_ALL_CALL_LOGS,
    Permission.VIEW_ORGANIZATION_ANALYTICS,
    Permission.EXPORT_ORGANIZATION_DATA,
}

_SUPER_ADMIN = frozenset(Permission)


def default_permissions(role: Role) -> frozenset[Permission]:
    """Canonical permission set for ``role``. Pure and total."""
    match role:
        case Role.SUPER_ADMIN:
            return _SUPER_ADMIN
        case Role.ORG_ADMIN:
            return _ORG_ADMIN
        case Role.MANAGER:
            return _MANAGER
        case Role.AGENT:
            return _AGENT
        case Role.VIEWER:
            return _VIEWER
        case _:
            assert_never(role)


# ── Evaluator ────────────────────────────────────────────────


class HasPermissions(Protocol):
    role: Role

    @property
    def permission_set(self) -> frozenset[str]: ...


def is_super_admin(principal: HasPermissions) -> bool:
    return principal.role == Role.SUPER_ADMIN


def has_permission(principal: HasPermissions, permission: str) -> bool:
    if is_super_admin(principal):
        return True
    return str(permission) in principal.permission_set


def has_any_permission(principal: HasPermissions, permissions: Iterable[str]) -> bool:
    """True if any permission is held. An empty list is vacuously satisfied."""
    if is_super_admin(principal):
        return True
    wanted = [str(p) for p in permissions]
    if not wanted:
        return True
    held = principal.permission_set
    return any(p in held for p in wanted)


def has_all_permissions(principal: HasPermissions, permissions: Iterable[str]) -> bool:
    if is_super_admin(principal):
        return True
    held = principal.permission_set
    return all(str(p) in held for p in permissions)


# ── Management hierarchy ─────────────────────────────────────


class HasMembership(HasPermissions, Protocol):
    organization_id: Any
    team_id: Any


# Roles a manager may act on, inside their own primary team only.
MANAGER_SUBORDINATE_ROLES: frozenset[Role] = frozenset(
    role for role, rank in ROLE_RANK.items() if rank < ROLE_RANK[Role.MANAGER]
)


def can_manage_user(actor: HasMembership, target: HasMembership) -> bool:
    """Whether ``actor`` may change the role of, or deactivate, ``target``.

    Checked on top of ``manage_user_roles``: holding the permission through an
    override does not lift an agent over an org admin.
    """
    if is_super_admin(actor):
        return True
    if actor.organization_id is None or actor.organization_id != target.organization_id:
        return False
    match actor.role:
        case Role.ORG_ADMIN:
            return target.role != Role.SUPER_ADMIN
        case Role.MANAGER:
            return (
                target.role in MANAGER_SUBORDINATE_ROLES
                and actor.team_id is not None
                and actor.team_id == target.team_id
            )
        case _:
            return False
