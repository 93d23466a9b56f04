# =============================================================================
# Authorization API Routes
# =============================================================================
#
# Endpoints:
#   GET    /auth/me                                   - Current principal
#   POST   /authorize                                 - Decide an arbitrary check
#   GET    /trial/status                              - Caller's trial status
#   GET    /plan/check-compliance                     - Usage vs plan limits
#   GET    /plan/upgrade-recommendations              - Suggested upgrade
#   GET    /plan/violations                           - Violation log (admin)
#   GET    /projects/{project_id}/access              - Caller's project access
#   GET    /projects/{project_id}/tasks/{task_id}/access
#   GET    /projects/{project_id}/members             - Assignments
#   POST   /projects/{project_id}/members             - Assign a user
#   PATCH  /projects/{project_id}/members/{member_id} - Change access
#   DELETE /projects/{project_id}/members/{member_id} - Soft remove
#
# =============================================================================

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator

from orgguard.auth.capabilities import PROJECT_PERMISSIONS, Action, Permission, Resource
from orgguard.auth.decisions import ResourceRef
from orgguard.auth.engine import Engine
from orgguard.auth.guard import redirect_for_role
from orgguard.auth.policies import (
    AuthContext,
    get_engine,
    get_principal,
    require,
    require_admin,
    require_team_access,
)
from orgguard.auth.principal import Principal
from orgguard.auth.trial import format_time_remaining
from orgguard.core.models import AccessLevel, OrgRole, ProjectTeamMember

router = APIRouter(tags=["authorization"])


# =============================================================================
# Request/Response Models
# =============================================================================


class AuthorizeRequest(BaseModel):
    resource: Resource | None = None
    action: Action | None = None
    route: str | None = None
    project_id: int | None = None
    task_id: int | None = None
    requester_is_assignee: bool = False
    required_role: OrgRole | None = None
    quota_delta: int = Field(default=1, ge=0)


class AssignMemberRequest(BaseModel):
    user_id: str
    role: str = "team_member"
    access_level: AccessLevel = AccessLevel.STANDARD
    allowed_task_ids: list[int] = []
    can_edit_project: bool = False
    can_invite_members: bool = False
    can_view_all_tasks: bool | None = None
    permissions: list[str] = []

    @field_validator("permissions")
    @classmethod
    def _project_grants(cls, value: list[str]) -> list[str]:
        return _validate_project_grants(value)


class UpdateMemberRequest(BaseModel):
    role: str | None = None
    access_level: AccessLevel | None = None
    allowed_task_ids: list[int] | None = None
    can_edit_project: bool | None = None
    can_invite_members: bool | None = None
    can_view_all_tasks: bool | None = None
    permissions: list[str] | None = None

    @field_validator("permissions")
    @classmethod
    def _project_grants(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _validate_project_grants(value)


def _validate_project_grants(values: list[str]) -> list[str]:
    for value in values:
        if Permission.parse(value) not in PROJECT_PERMISSIONS:
            raise ValueError(f"{value!r} cannot be granted on a project")
    return values


def _member_response(member: ProjectTeamMember) -> dict[str, Any]:
    data = member.model_dump(mode="json")
    data["allowed_task_ids"] = sorted(member.allowed_task_ids)
    data["permissions"] = sorted(member.permissions)
    return data


# =============================================================================
# Principal and decisions
# =============================================================================


@router.get("/auth/me")
async def me(
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    """The resolved principal and everything it may do."""
    return {
        "user_id": principal.user_id,
        "org_id": principal.org_id,
        "role": principal.org_role.value,
        "permissions": sorted(str(p) for p in engine.index.permissions_for(principal)),
        "home": redirect_for_role(principal.org_role),
    }


@router.post("/authorize")
async def authorize(
    body: AuthorizeRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    ref = ResourceRef(
        resource=body.resource,
        route=body.route,
        project_id=body.project_id,
        task_id=body.task_id,
        requester_is_assignee=body.requester_is_assignee,
        required_role=body.required_role,
        quota_delta=body.quota_delta,
    )
    decision = await engine.facade.decide(principal, ref, body.action)
    return JSONResponse(status_code=decision.status_code, content=decision.to_response())


# =============================================================================
# Trial and plan
# =============================================================================


@router.get("/trial/status")
async def trial_status(
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    status = await engine.facade.trial_status(principal.org_id)
    return {**status.to_dict(), "message": format_time_remaining(status)}


@router.get("/plan/check-compliance")
async def check_compliance(
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    report = await engine.entitlements.compliance(principal.org_id)
    return report.to_dict()


@router.get("/plan/upgrade-recommendations")
async def upgrade_recommendations(
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return await engine.entitlements.upgrade_recommendations(principal.org_id)


@router.get("/plan/violations")
async def list_violations(
    ctx: AuthContext = Depends(require_admin()),
    engine: Engine = Depends(get_engine),
):
    violations = await engine.entitlements.list_violations(ctx.org_id)
    return {"violations": [v.model_dump(mode="json") for v in violations]}


# =============================================================================
# Project access
# =============================================================================


@router.get("/projects/{project_id}/access")
async def project_access(
    project_id: int,
    ctx: AuthContext = Depends(require_team_access()),
    engine: Engine = Depends(get_engine),
):
    access = await engine.project_access.resolve(ctx.principal, project_id)
    if access is None:
        # Removed between the check and this read
        raise HTTPException(status_code=403, detail={"error": "Not assigned to this project"})
    return access.to_dict()


@router.get("/projects/{project_id}/tasks/{task_id}/access")
async def task_access(
    project_id: int,
    task_id: int,
    ctx: AuthContext = Depends(require()),
):
    return {"allowed": True, "project_id": project_id, "task_id": task_id}


# =============================================================================
# Project team administration
# =============================================================================


@router.get("/projects/{project_id}/members")
async def list_members(
    project_id: int,
    include_inactive: bool = False,
    ctx: AuthContext = Depends(require_team_access()),
    engine: Engine = Depends(get_engine),
):
    members = await engine.project_access.list_members(project_id, include_inactive)
    return {"members": [_member_response(m) for m in members]}


@router.post("/projects/{project_id}/members", status_code=201)
async def assign_member(
    project_id: int,
    body: AssignMemberRequest,
    ctx: AuthContext = Depends(require(Resource.PROJECTS, Action.ASSIGN_MEMBERS)),
    engine: Engine = Depends(get_engine),
):
    try:
        member = await engine.project_access.assign_member(
            project_id=project_id,
            user_id=body.user_id,
            assigned_by=ctx.user_id,
            role=body.role,
            access_level=body.access_level,
            allowed_task_ids=set(body.allowed_task_ids),
            can_edit_project=body.can_edit_project,
            can_invite_members=body.can_invite_members,
            can_view_all_tasks=body.can_view_all_tasks,
            permissions=body.permissions,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"error": str(e)})
    except ValueError as e:
        raise HTTPException(status_code=409, detail={"error": str(e)})
    return _member_response(member)


@router.patch("/projects/{project_id}/members/{member_id}")
async def update_member(
    project_id: int,
    member_id: str,
    body: UpdateMemberRequest,
    ctx: AuthContext = Depends(require(Resource.PROJECTS, Action.MANAGE_TEAM)),
    engine: Engine = Depends(get_engine),
):
    await _managed_member(engine, ctx, project_id, member_id)
    changes = body.model_dump(exclude_none=True)
    for name in ("allowed_task_ids", "permissions"):
        if name in changes:
            changes[name] = set(changes[name])
    try:
        member = await engine.project_access.update_member(member_id, **changes)
    except LookupError:
        raise HTTPException(status_code=404, detail={"error": "Team member not found"})
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"error": str(e)})
    return _member_response(member)


@router.delete("/projects/{project_id}/members/{member_id}")
async def remove_member(
    project_id: int,
    member_id: str,
    ctx: AuthContext = Depends(require(Resource.PROJECTS, Action.MANAGE_TEAM)),
    engine: Engine = Depends(get_engine),
):
    await _managed_member(engine, ctx, project_id, member_id)
    member = await engine.project_access.remove_member(member_id, removed_by=ctx.user_id)
    return _member_response(member)


async def _managed_member(
    engine: Engine,
    ctx: AuthContext,
    project_id: int,
    member_id: str,
) -> ProjectTeamMember:
    """The row must belong to this project, and only admins may change their own."""
    member = await engine.repository.get_project_member(member_id)
    if member is None or member.project_id != project_id:
        raise HTTPException(status_code=404, detail={"error": "Team member not found"})
    if member.user_id == ctx.user_id and not ctx.principal.is_admin:
        raise HTTPException(
            status_code=403,
            detail={
                "error": "Cannot change your own project access",
                "reason": "no_project_access",
                "required": [f"{Resource.PROJECTS.value}:{Action.MANAGE_TEAM.value}"],
                "current": member.access_level.value,
            },
        )
    return member
