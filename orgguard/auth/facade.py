"""
Authorization facade - one entry point composing every check.

Order (short-circuiting, most restrictive first):
    1. Trial expiry              -> DENY trial_expired (wins over everything)
    2. Role, then permission     -> DENY insufficient_role / missing_permission
    3. Project, then task access -> DENY not_assigned / no_project_access / task_access_denied
    4. Quota on creation         -> REQUIRES_UPGRADE
    5. ALLOW

Steps 1-3 are the pure rules from rules.py; only the lookups feeding them
happen here.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Callable, Mapping

from orgguard.auth import rules
from orgguard.auth.capabilities import Action, PermissionIndex, Resource
from orgguard.auth.decisions import Decision, ResourceRef
from orgguard.auth.entitlements import PlanEntitlementGate
from orgguard.auth.principal import Principal
from orgguard.auth.project_access import ProjectAccessResolver
from orgguard.auth.trial import TrialStatus, evaluate
from orgguard.config import Settings, get_settings
from orgguard.core.errors import InfraFailure, StoreError
from orgguard.core.models import Organization, ResourceType
from orgguard.core.utils import utc_now
from orgguard.storage.repository import AuthRepository

logger = logging.getLogger(__name__)

# Creations that consume plan quota
QUOTA_ACTIONS: Mapping[tuple[Resource, Action], ResourceType] = MappingProxyType({
    (Resource.PROJECTS, Action.CREATE): ResourceType.PROJECTS,
    (Resource.USERS, Action.CREATE): ResourceType.TEAM_MEMBERS,
    (Resource.USERS, Action.INVITE): ResourceType.TEAM_MEMBERS,
    (Resource.DOCUMENTS, Action.UPLOAD): ResourceType.STORAGE,
})


class AuthorizationFacade:
    """
    Principal + resource + action -> Decision.

    Usage:
        decision = await facade.decide(
            principal,
            ResourceRef(resource=Resource.PROJECTS, project_id=42),
            Action.UPDATE,
        )
        if not decision.allowed:
            raise HTTPException(decision.status_code, decision.to_response())
    """

    def __init__(
        self,
        repository: AuthRepository,
        index: PermissionIndex,
        project_access: ProjectAccessResolver,
        entitlements: PlanEntitlementGate,
        settings: Settings | None = None,
        clock: Callable[[], Any] = utc_now,
    ):
        self.repository = repository
        self.index = index
        self.project_access = project_access
        self.entitlements = entitlements
        self.settings = settings or get_settings()
        self.clock = clock

    async def decide(
        self,
        principal: Principal,
        ref: ResourceRef,
        action: Action | None = None,
    ) -> Decision:
        action = Action(action) if action is not None else None
        resource = Resource(ref.resource) if ref.resource is not None else None

        # 1. Trial
        trial = await self.trial_status(principal.org_id)
        denial = rules.check_trial(trial, ref.route)
        if denial:
            return self._denied(principal, ref, action, denial)

        # 2. Role and org-scoped permission
        denial = rules.check_role(principal, ref.required_role)
        if denial:
            return self._denied(principal, ref, action, denial)

        if not ref.is_project_scoped:
            denial = rules.check_permission(self.index, principal, resource, action, ref.route)
            if denial:
                return self._denied(principal, ref, action, denial)

        # 3. Project and task access
        if ref.is_project_scoped:
            access = await self.project_access.resolve(principal, ref.project_id)
            denial = rules.check_project_access(access, ref.project_id, resource, action)
            if denial is None and ref.is_task_scoped:
                denial = rules.check_task(access, ref.task_id, ref.requester_is_assignee)
            if denial:
                return self._denied(principal, ref, action, denial)

        # 4. Quota on creation
        resource_type = QUOTA_ACTIONS.get((resource, action)) if resource and action else None
        if resource_type is not None:
            result = await self.entitlements.check(principal.org_id, resource_type, ref.quota_delta)
            decision = result.to_decision()
            if not decision.allowed:
                return self._denied(principal, ref, action, decision)
            return decision

        # 5.
        return Decision.allow()

    async def trial_status(self, org_id: str) -> TrialStatus:
        org = await self._load_organization(org_id)
        return evaluate(
            org.plan,
            org.trial_started_at,
            org.has_active_subscription,
            self.clock(),
            duration_days=self.settings.trial_duration_days,
            ending_soon_days=self.settings.trial_ending_soon_days,
        )

    async def _load_organization(self, org_id: str) -> Organization:
        try:
            org = await self.repository.get_organization(org_id)
        except StoreError as e:
            logger.error("Organization lookup failed", extra={"org_id": org_id, "error": str(e)})
            raise InfraFailure("Failed to load organization") from e
        if org is None:
            logger.error("Organization not found", extra={"org_id": org_id})
            raise InfraFailure("Organization not found", org_id=org_id)
        return org

    def _denied(
        self,
        principal: Principal,
        ref: ResourceRef,
        action: Action | None,
        decision: Decision,
    ) -> Decision:
        logger.info(
            "Access denied",
            extra={
                "user_id": principal.user_id,
                "org_id": principal.org_id,
                "role": principal.org_role.value,
                "resource": Resource(ref.resource).value if ref.resource else None,
                "action": action.value if action else None,
                "project_id": ref.project_id,
                "task_id": ref.task_id,
                "outcome": decision.outcome.value,
                "reason": decision.reason.value if decision.reason else None,
            },
        )
        return decision
