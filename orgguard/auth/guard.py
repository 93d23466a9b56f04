"""
Client guard - what a UI should render before the server answers.

Runs the same pure rules as the facade against a cached snapshot. The
answer is only ever a guess:
    - no snapshot, or a stale one    -> loading
    - a local denial                 -> denied, with a role-based redirect
    - a local allow                  -> render, marked provisional
The server's decision always wins when the two are reconciled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from orgguard.auth import rules
from orgguard.auth.capabilities import Action, PermissionIndex, Resource
from orgguard.auth.decisions import Decision, DenyReason, ResourceRef
from orgguard.auth.principal import Principal
from orgguard.auth.project_access import ProjectAccess
from orgguard.auth.trial import EXPIRED_TRIAL_REDIRECT, TrialStatus
from orgguard.core.models import OrgRole
from orgguard.core.utils import ensure_utc

ROLE_HOME_ROUTES = {
    OrgRole.CLIENT: "/client-dashboard",
    OrgRole.TEAM_MEMBER: "/projects",
}
DEFAULT_HOME_ROUTE = "/"


def redirect_for_role(role: OrgRole | str | None) -> str:
    """Where to send a user after a denial."""
    if role is None:
        return DEFAULT_HOME_ROUTE
    try:
        role = OrgRole(role)
    except ValueError:
        return DEFAULT_HOME_ROUTE
    return ROLE_HOME_ROUTES.get(role, DEFAULT_HOME_ROUTE)


class RenderState(str, Enum):
    LOADING = "loading"  # snapshot missing or stale
    DENIED = "denied"    # render the access-denied view / redirect
    RENDER = "render"    # render children


@dataclass(frozen=True)
class GuardSnapshot:
    """Locally cached principal and trial status."""

    principal: Principal
    trial: TrialStatus
    loaded_at: datetime
    project_access: ProjectAccess | None = None


@dataclass(frozen=True)
class GuardResult:
    state: RenderState
    redirect: str | None = None
    provisional: bool = False
    decision: Decision | None = None
    role: OrgRole | None = None


class ClientGuard:
    """
    Mirror of the facade's steps 1-3.

    Usage:
        guard = ClientGuard(PermissionIndex(), max_age=timedelta(minutes=5))
        result = guard.evaluate(snapshot, ResourceRef(route="/projects"), None, now)
        ...
        final = guard.reconcile(result, server_decision)
    """

    def __init__(self, index: PermissionIndex, max_age: timedelta = timedelta(minutes=5)):
        self.index = index
        self.max_age = max_age

    def is_stale(self, snapshot: GuardSnapshot | None, now: datetime) -> bool:
        if snapshot is None:
            return True
        return ensure_utc(now) - ensure_utc(snapshot.loaded_at) > self.max_age

    def evaluate(
        self,
        snapshot: GuardSnapshot | None,
        ref: ResourceRef,
        action: Action | None,
        now: datetime,
    ) -> GuardResult:
        if self.is_stale(snapshot, now):
            return GuardResult(state=RenderState.LOADING)

        principal = snapshot.principal
        resource = Resource(ref.resource) if ref.resource is not None else None
        action = Action(action) if action is not None else None

        denial = rules.check_trial(snapshot.trial, ref.route)
        if denial:
            return GuardResult(
                state=RenderState.DENIED,
                redirect=EXPIRED_TRIAL_REDIRECT,
                decision=denial,
                role=principal.org_role,
            )

        denial = rules.check_role(principal, ref.required_role)
        if denial is None and not ref.is_project_scoped:
            denial = rules.check_permission(self.index, principal, resource, action, ref.route)

        if denial is None and ref.is_project_scoped:
            access = snapshot.project_access
            if principal.is_admin:
                access = ProjectAccess.full(ref.project_id)
            elif access is None or access.project_id != ref.project_id:
                return GuardResult(state=RenderState.LOADING)
            denial = rules.check_project_access(access, ref.project_id, resource, action)
            if denial is None and ref.is_task_scoped:
                denial = rules.check_task(access, ref.task_id, ref.requester_is_assignee)

        if denial:
            return GuardResult(
                state=RenderState.DENIED,
                redirect=redirect_for_role(principal.org_role),
                decision=denial,
                role=principal.org_role,
            )

        return GuardResult(
            state=RenderState.RENDER,
            provisional=True,
            decision=Decision.allow(),
            role=principal.org_role,
        )

    def reconcile(self, local: GuardResult, server: Decision) -> GuardResult:
        """The server decision replaces whatever was rendered locally."""
        if server.allowed:
            return GuardResult(state=RenderState.RENDER, decision=server, role=local.role)

        if server.reason is DenyReason.TRIAL_EXPIRED:
            redirect = server.redirect or EXPIRED_TRIAL_REDIRECT
        else:
            redirect = redirect_for_role(local.role)
        return GuardResult(state=RenderState.DENIED, redirect=redirect, decision=server, role=local.role)
