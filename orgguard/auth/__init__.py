"""
Authorization and entitlement engine.

Three axes composed into one decision:
1. Organization role (admin / team_member / client) and explicit grants
2. Per-project assignment with capability flags and a task allow-list
3. Plan entitlements: quotas and trial expiry
"""

from orgguard.auth.capabilities import (
    Action,
    Permission,
    PermissionIndex,
    Resource,
    ROLE_PERMISSIONS,
    ROUTE_PERMISSIONS,
    can_access_route,
)
from orgguard.auth.identity import (
    IdentityVerifier,
    JWTIdentityVerifier,
    RemoteIdentityVerifier,
    create_identity_verifier,
    parse_bearer,
)
from orgguard.auth.principal import Principal, PrincipalResolver
from orgguard.auth.decisions import Decision, DenyReason, Outcome, ResourceRef
from orgguard.auth.trial import (
    EXPIRED_TRIAL_ALLOWED_ROUTES,
    TrialStatus,
    effective_plan,
    evaluate as evaluate_trial,
    format_time_remaining,
    is_route_allowed_during_expiry,
)
from orgguard.auth.project_access import ProjectAccess, ProjectAccessResolver, check_task_access
from orgguard.auth.entitlements import (
    DEFAULT_PLAN_LIMITS,
    ComplianceReport,
    EntitlementResult,
    PlanEntitlementGate,
    PlanLimits,
    load_plan_limits,
)
from orgguard.auth.facade import QUOTA_ACTIONS, AuthorizationFacade
from orgguard.auth.guard import ClientGuard, GuardResult, GuardSnapshot, RenderState, redirect_for_role
from orgguard.auth.engine import Engine, build_engine
from orgguard.auth.policies import (
    AuthContext,
    get_principal,
    require,
    require_admin,
    require_role,
    require_team_access,
)

__all__ = [
    # Main interface
    "require",
    "require_role",
    "require_admin",
    "require_team_access",
    "get_principal",
    "AuthContext",
    "AuthorizationFacade",
    "Engine",
    "build_engine",
    # Capabilities
    "Action",
    "Permission",
    "PermissionIndex",
    "Resource",
    "ROLE_PERMISSIONS",
    "ROUTE_PERMISSIONS",
    "can_access_route",
    # Identity
    "IdentityVerifier",
    "JWTIdentityVerifier",
    "RemoteIdentityVerifier",
    "create_identity_verifier",
    "parse_bearer",
    "Principal",
    "PrincipalResolver",
    # Decisions
    "Decision",
    "DenyReason",
    "Outcome",
    "ResourceRef",
    "QUOTA_ACTIONS",
    # Trial
    "EXPIRED_TRIAL_ALLOWED_ROUTES",
    "TrialStatus",
    "effective_plan",
    "evaluate_trial",
    "format_time_remaining",
    "is_route_allowed_during_expiry",
    # Projects
    "ProjectAccess",
    "ProjectAccessResolver",
    "check_task_access",
    # Plans
    "DEFAULT_PLAN_LIMITS",
    "ComplianceReport",
    "EntitlementResult",
    "PlanEntitlementGate",
    "PlanLimits",
    "load_plan_limits",
    # Client mirror
    "ClientGuard",
    "GuardResult",
    "GuardSnapshot",
    "RenderState",
    "redirect_for_role",
]
