"""
Capabilities: resources, actions, and what each organization role may do.

This defines WHAT principals can do, not HOW we check it.
The composed decision happens in facade.py; the pure checks in rules.py.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Mapping, NamedTuple

from orgguard.core.models import OrgRole

if TYPE_CHECKING:
    from orgguard.auth.principal import Principal

logger = logging.getLogger(__name__)


class Resource(str, Enum):
    """Things a permission can be about."""

    USERS = "users"
    ORGANIZATION = "organization"
    PROJECTS = "projects"
    CLIENTS = "clients"
    DOCUMENTS = "documents"
    ANALYTICS = "analytics"
    SUPPORT = "support"
    BILLING = "billing"


class Action(str, Enum):
    """Things a principal can do to a resource."""

    VIEW = "view"
    VIEW_ALL = "view_all"
    VIEW_ASSIGNED = "view_assigned"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    INVITE = "invite"
    UPLOAD = "upload"
    EXPORT = "export"
    MANAGE = "manage"

    # Users / organization
    MANAGE_ROLES = "manage_roles"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_BILLING = "manage_billing"

    # Projects
    MANAGE_TASKS = "manage_tasks"
    MANAGE_MILESTONES = "manage_milestones"
    MANAGE_TEAM = "manage_team"
    ASSIGN_MEMBERS = "assign_members"
    REMOVE_MEMBERS = "remove_members"

    # Clients
    MANAGE_ACCESS = "manage_access"

    # Analytics
    VIEW_BASIC = "view_basic"
    VIEW_ADVANCED = "view_advanced"

    # Support
    VIEW_TICKETS = "view_tickets"
    CREATE_TICKETS = "create_tickets"
    MANAGE_TICKETS = "manage_tickets"


class Permission(NamedTuple):
    """A (resource, action) pair, written "resource:action"."""

    resource: Resource
    action: Action

    @classmethod
    def parse(cls, value: str) -> Permission:
        """
        Parse "resource:action".

        Raises ValueError for malformed strings or unknown names.
        """
        resource, sep, action = value.partition(":")
        if not sep:
            raise ValueError(f"Permission must look like 'resource:action': {value!r}")
        return cls(Resource(resource.strip()), Action(action.strip()))

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"


def _perms(*values: str) -> frozenset[Permission]:
    return frozenset(Permission.parse(v) for v in values)


# =============================================================================
# Role Mappings
# =============================================================================


ROLE_PERMISSIONS: Mapping[OrgRole, frozenset[Permission]] = MappingProxyType({
    OrgRole.ADMIN: _perms(
        "users:view", "users:create", "users:update", "users:delete",
        "users:invite", "users:manage_roles",
        "organization:view", "organization:update", "organization:delete",
        "organization:manage_settings", "organization:manage_billing",
        "projects:view_all", "projects:create", "projects:update", "projects:delete",
        "projects:manage_tasks", "projects:manage_milestones", "projects:manage_team",
        "projects:assign_members", "projects:remove_members",
        "clients:view_all", "clients:create", "clients:update", "clients:delete",
        "clients:manage_access",
        "documents:view", "documents:upload", "documents:delete", "documents:manage",
        "analytics:view_basic", "analytics:view_advanced", "analytics:export",
        "support:view_tickets", "support:create_tickets", "support:manage_tickets",
        "billing:view", "billing:manage",
    ),
    # Assigned projects only, plus documents, billing view and support
    OrgRole.TEAM_MEMBER: _perms(
        "projects:view_assigned", "projects:update",
        "projects:manage_tasks", "projects:manage_milestones",
        "documents:view", "documents:upload",
        "billing:view",
        "support:create_tickets", "support:view_tickets",
    ),
    # Their own projects and client record
    OrgRole.CLIENT: _perms(
        "projects:view_assigned",
        "clients:view_assigned",
        "documents:view", "documents:upload",
        "support:create_tickets", "support:view_tickets",
        "billing:view",
    ),
})


# Navigation access: a route is reachable with ANY of its listed permissions.
# Routes without an entry are unrestricted.
ROUTE_PERMISSIONS: Mapping[str, frozenset[Permission]] = MappingProxyType({
    "/dashboard": _perms("projects:view_all", "projects:view_assigned"),
    "/projects": _perms("projects:view_all", "projects:view_assigned"),
    "/clients": _perms("clients:view_all"),
    "/team": _perms("users:view"),
    "/onboarding": _perms("organization:manage_settings"),
    "/assets": _perms("documents:view"),
    "/brand-kit": _perms("documents:view"),
    "/billing": _perms("billing:view"),
    "/analytics": _perms("analytics:view_basic", "analytics:view_advanced"),
    "/support": _perms("support:view_tickets", "support:create_tickets"),
    "/messages": _perms("projects:view_all", "projects:view_assigned"),
    "/settings": _perms("organization:view"),
    "/admin": _perms("users:manage_roles", "organization:manage_settings"),
})


# =============================================================================
# Project-level grants
# =============================================================================

# Everything that can be granted on a single project
PROJECT_PERMISSIONS: frozenset[Permission] = _perms(
    "projects:view", "projects:view_assigned", "projects:update", "projects:delete",
    "projects:manage_tasks", "projects:manage_milestones", "projects:manage_team",
    "projects:assign_members", "projects:remove_members",
    "documents:view", "documents:upload", "documents:delete",
)

# Any active assignment
PROJECT_BASE_PERMISSIONS: frozenset[Permission] = _perms(
    "projects:view", "projects:view_assigned", "documents:view",
)

# Keyed by ProjectTeamMember.role; unknown roles get the base set only
PROJECT_ROLE_PERMISSIONS: Mapping[str, frozenset[Permission]] = MappingProxyType({
    "project_manager": _perms(
        "projects:update", "projects:manage_tasks", "projects:manage_milestones",
        "projects:assign_members", "documents:upload",
    ),
    "team_member": _perms("projects:manage_tasks", "documents:upload"),
    "developer": _perms("projects:manage_tasks", "documents:upload"),
    "designer": _perms("projects:manage_tasks", "documents:upload"),
    "reviewer": frozenset(),
    "client": frozenset(),
})

# The most an assignment can grant a given organization role
PROJECT_ROLE_CEILING: Mapping[OrgRole, frozenset[Permission]] = MappingProxyType({
    OrgRole.ADMIN: PROJECT_PERMISSIONS,
    OrgRole.TEAM_MEMBER: PROJECT_PERMISSIONS,
    OrgRole.CLIENT: PROJECT_BASE_PERMISSIONS | _perms("documents:upload"),
})


def parse_project_grants(raw: Iterable[str]) -> frozenset[Permission]:
    """
    Parse per-assignment grants.

    Anything that is not a project-level permission is dropped with a
    warning.
    """
    grants = PermissionIndex.expand_raw(raw)
    outside = grants - PROJECT_PERMISSIONS
    for permission in outside:
        logger.warning("Ignoring non-project grant on assignment", extra={"permission": str(permission)})
    return grants & PROJECT_PERMISSIONS


# =============================================================================
# PermissionIndex
# =============================================================================


class PermissionIndex:
    """
    Queryable capability sets.

    Read-only after construction, so one instance is shared by every
    request without locking.
    """

    def __init__(self, table: Mapping[OrgRole, Iterable[Permission]] = ROLE_PERMISSIONS):
        missing = [role.value for role in OrgRole if role not in table]
        if missing:
            raise ValueError(f"Role permission table is missing roles: {missing}")
        self._table = MappingProxyType({role: frozenset(perms) for role, perms in table.items()})

    def expand_role(self, role: OrgRole) -> frozenset[Permission]:
        """All permissions granted by an organization role."""
        return self._table[OrgRole(role)]

    @staticmethod
    def expand_raw(raw: Iterable[str]) -> frozenset[Permission]:
        """
        Parse explicit "resource:action" grants.

        Unknown or malformed strings are dropped with a warning so a typo
        in stored data can never grant anything.
        """
        parsed: set[Permission] = set()
        for value in raw:
            try:
                parsed.add(Permission.parse(value))
            except ValueError:
                logger.warning("Ignoring unknown permission grant", extra={"permission": value})
        return frozenset(parsed)

    def permissions_for(self, principal: Principal) -> frozenset[Permission]:
        """Role-derived permissions united with the principal's raw grants."""
        return self.expand_role(principal.org_role) | principal.raw_permissions

    def has_permission(
        self,
        principal: Principal,
        resource: Resource | str,
        action: Action | str,
    ) -> bool:
        """A match in either the role set or the raw grants is sufficient."""
        wanted = Permission(Resource(resource), Action(action))
        return wanted in self.expand_role(principal.org_role) or wanted in principal.raw_permissions


def can_access_route(route: str, permissions: Iterable[Permission]) -> bool:
    """Check if a set of permissions reaches a navigation route."""
    required = ROUTE_PERMISSIONS.get(route)
    if not required:
        return True
    return not required.isdisjoint(permissions)
