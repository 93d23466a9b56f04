"""
Pure decision rules shared by the server facade and the client guard.

No I/O here: every function takes already-resolved inputs and returns a
denial `Decision`, or None to continue to the next step. Keeping both
sides on these functions means they cannot disagree about steps 1-3.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from orgguard.auth.capabilities import (
    ROUTE_PERMISSIONS,
    Action,
    Permission,
    PermissionIndex,
    Resource,
    can_access_route,
)
from orgguard.auth.decisions import Decision, DenyReason
from orgguard.auth.principal import Principal
from orgguard.auth.project_access import ProjectAccess, check_task_access
from orgguard.auth.trial import EXPIRED_TRIAL_REDIRECT, TrialStatus, is_route_allowed_during_expiry
from orgguard.core.models import OrgRole

# Capability flag named in the denial when a grant comes from a flag
PROJECT_FLAG_REQUIREMENTS: Mapping[tuple[Resource, Action], str] = MappingProxyType({
    (Resource.PROJECTS, Action.UPDATE): "can_edit_project",
    (Resource.PROJECTS, Action.ASSIGN_MEMBERS): "can_invite_members",
})


def check_trial(trial: TrialStatus, route: str | None) -> Decision | None:
    """Expired trials reach only the allow-listed routes."""
    if not trial.is_expired:
        return None
    if is_route_allowed_during_expiry(route, trial.allowed_routes_during_expiry):
        return None
    return Decision.deny(
        DenyReason.TRIAL_EXPIRED,
        "Your trial has expired. Please upgrade to continue.",
        redirect=EXPIRED_TRIAL_REDIRECT,
    )


def check_role(principal: Principal, required_role: OrgRole | None) -> Decision | None:
    """Exact role match; admin satisfies any role."""
    if required_role is None:
        return None
    required_role = OrgRole(required_role)
    if principal.is_admin or principal.org_role is required_role:
        return None
    return Decision.deny(
        DenyReason.INSUFFICIENT_ROLE,
        "Insufficient role",
        required=(required_role.value,),
        current=principal.org_role.value,
    )


def check_permission(
    index: PermissionIndex,
    principal: Principal,
    resource: Resource | None,
    action: Action | None,
    route: str | None = None,
) -> Decision | None:
    """
    Org-scoped permission check.

    With no resource, a route is checked against the navigation table
    instead.
    """
    if resource is None or action is None:
        if route is None or can_access_route(route, index.permissions_for(principal)):
            return None
        return Decision.deny(
            DenyReason.MISSING_PERMISSION,
            "Insufficient permissions",
            required=tuple(sorted(str(p) for p in ROUTE_PERMISSIONS[route])),
            current=principal.org_role.value,
        )

    if index.has_permission(principal, resource, action):
        return None
    return Decision.deny(
        DenyReason.MISSING_PERMISSION,
        "Insufficient permissions",
        required=(f"{Resource(resource).value}:{Action(action).value}",),
        current=principal.org_role.value,
    )


def check_project_access(
    access: ProjectAccess | None,
    project_id: int,
    resource: Resource | None = None,
    action: Action | None = None,
) -> Decision | None:
    """
    Needs an active assignment, and that assignment must grant the
    project-scoped action when one is named.
    """
    if access is None:
        return Decision.deny(
            DenyReason.NOT_ASSIGNED,
            "Not assigned to this project",
            required=(f"project:{project_id}",),
        )

    if resource is None or action is None:
        return None
    wanted = Permission(Resource(resource), Action(action))
    if access.grants(wanted):
        return None
    flag = PROJECT_FLAG_REQUIREMENTS.get((wanted.resource, wanted.action))
    return Decision.deny(
        DenyReason.NO_PROJECT_ACCESS,
        "Insufficient project permissions",
        required=(flag or str(wanted),),
        current=access.access_level.value,
    )


def check_task(
    access: ProjectAccess,
    task_id: int,
    requester_is_assignee: bool = False,
) -> Decision | None:
    if check_task_access(access, task_id, requester_is_assignee):
        return None
    return Decision.deny(
        DenyReason.TASK_ACCESS_DENIED,
        "Access to this task is restricted",
        required=(f"task:{task_id}",),
        current=access.access_level.value,
    )
