"""
Policies - route authorization as FastAPI dependencies.

Usage:
    @app.post("/projects/{project_id}/members")
    async def add_member(
        project_id: int,
        ctx: AuthContext = Depends(require(Resource.PROJECTS, Action.ASSIGN_MEMBERS)),
    ):
        ...

- `get_principal` resolves the bearer token (401 / 403 / 500 as AuthError)
- `require()` builds a ResourceRef from the path and asks the facade
- A denial raises HTTPException carrying the decision body
- An allow returns AuthContext for the route to use
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orgguard.auth.capabilities import Action, Resource
from orgguard.auth.decisions import Decision, ResourceRef
from orgguard.auth.engine import Engine
from orgguard.auth.identity import parse_bearer
from orgguard.auth.principal import Principal
from orgguard.core.models import OrgRole


# =============================================================================
# Principal
# =============================================================================


# Doesn't fail on its own; a missing token becomes Unauthenticated below
optional_bearer = HTTPBearer(auto_error=False)


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


async def get_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> Principal:
    """Resolve the request's bearer token to a Principal."""
    if credentials and credentials.credentials:
        token = credentials.credentials
    else:
        token = parse_bearer(request.headers.get("Authorization"))
    return await get_engine(request).principals.resolve(token)


# =============================================================================
# AuthContext
# =============================================================================


@dataclass(frozen=True)
class AuthContext:
    """What a guarded route receives."""

    principal: Principal
    decision: Decision

    @property
    def user_id(self) -> str:
        return self.principal.user_id

    @property
    def org_id(self) -> str:
        return self.principal.org_id


# =============================================================================
# Main Interface - the require() function
# =============================================================================


def require(
    resource: Resource | None = None,
    action: Action | None = None,
    *,
    project_param: str | None = "project_id",
    task_param: str | None = "task_id",
    required_role: OrgRole | None = None,
    quota_delta: int = 1,
) -> Callable:
    """
    Authorize a route.

    The action is project-scoped when `project_param` is in the path, and
    task-scoped when `task_param` is too. `?assignee=true` marks the
    requester as the task's assignee.

    Returns:
        FastAPI dependency resolving to AuthContext
    """

    async def dependency(
        request: Request,
        principal: Principal = Depends(get_principal),
    ) -> AuthContext:
        params = request.path_params
        ref = ResourceRef(
            resource=resource,
            route=request.url.path,
            project_id=_int_param(params, project_param),
            task_id=_int_param(params, task_param),
            requester_is_assignee=request.query_params.get("assignee", "").lower() == "true",
            required_role=required_role,
            quota_delta=quota_delta,
        )

        decision = await get_engine(request).facade.decide(principal, ref, action)
        if not decision.allowed:
            raise HTTPException(status_code=decision.status_code, detail=decision.to_response())
        return AuthContext(principal=principal, decision=decision)

    return dependency


def require_role(role: OrgRole) -> Callable:
    """Exact organization role; admin satisfies any role."""
    return require(required_role=role, project_param=None, task_param=None)


def require_admin() -> Callable:
    return require_role(OrgRole.ADMIN)


def require_team_access() -> Callable:
    """An active assignment on the path's project (admins always pass)."""
    return require(task_param=None)


def _int_param(params: dict, name: str | None) -> int | None:
    if not name or name not in params:
        return None
    try:
        return int(params[name])
    except (TypeError, ValueError):
        raise HTTPException(status_code=422, detail={"error": f"Invalid {name}"})
