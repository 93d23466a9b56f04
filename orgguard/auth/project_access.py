"""
Project access - per-project team assignment and task visibility.

Admins are never project-scoped and get a synthetic full-access record
without any lookup. Everyone else needs an active `ProjectTeamMember`
row; without one the answer is "not assigned", never an error.

What an assignment may do on its project is the union of:
    - the base grants every assignment has
    - the grants of its project role
    - the capability flags (edit -> projects:update, invite -> projects:assign_members)
    - its explicit `permissions`
    - everything, when the access level is `full`
capped by the holder's organization role (clients never mutate projects).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from orgguard.auth.capabilities import (
    PROJECT_BASE_PERMISSIONS,
    PROJECT_PERMISSIONS,
    PROJECT_ROLE_CEILING,
    PROJECT_ROLE_PERMISSIONS,
    Permission,
    parse_project_grants,
)
from orgguard.auth.principal import Principal
from orgguard.core.errors import InfraFailure, StoreError
from orgguard.core.models import AccessLevel, OrgRole, ProjectTeamMember
from orgguard.core.utils import utc_now
from orgguard.storage.repository import AuthRepository

logger = logging.getLogger(__name__)

EDIT_PROJECT = Permission.parse("projects:update")
INVITE_MEMBERS = Permission.parse("projects:assign_members")


@dataclass(frozen=True)
class ProjectAccess:
    """Resolved capability view of one principal on one project. Never partial."""

    project_id: int
    access_level: AccessLevel
    can_edit_project: bool
    can_invite_members: bool
    can_view_all_tasks: bool
    allowed_task_ids: frozenset[int] = field(default_factory=frozenset)
    permissions: frozenset[Permission] = PROJECT_BASE_PERMISSIONS
    member_id: str | None = None
    synthetic: bool = False

    @classmethod
    def full(cls, project_id: int) -> ProjectAccess:
        """Synthetic record for admins."""
        return cls(
            project_id=project_id,
            access_level=AccessLevel.FULL,
            can_edit_project=True,
            can_invite_members=True,
            can_view_all_tasks=True,
            permissions=PROJECT_PERMISSIONS,
            synthetic=True,
        )

    @classmethod
    def from_member(cls, member: ProjectTeamMember, org_role: OrgRole | None = None) -> ProjectAccess:
        """Map stored flags and grants, applying the access-level overrides."""
        level = AccessLevel(member.access_level)
        if level is AccessLevel.FULL:
            can_edit = can_invite = can_view_all = True
            granted = PROJECT_PERMISSIONS
        elif level in (AccessLevel.STANDARD, AccessLevel.RESTRICTED):
            can_edit = member.can_edit_project
            can_invite = member.can_invite_members
            can_view_all = level is AccessLevel.STANDARD and member.can_view_all_tasks
            granted = project_grants(member.role, can_edit, can_invite, member.permissions)
        else:
            raise ValueError(f"Unknown access level: {level!r}")

        if org_role is not None:
            ceiling = PROJECT_ROLE_CEILING[OrgRole(org_role)]
            granted = granted & ceiling
            can_edit = can_edit and EDIT_PROJECT in ceiling
            can_invite = can_invite and INVITE_MEMBERS in ceiling

        return cls(
            project_id=member.project_id,
            access_level=level,
            can_edit_project=can_edit,
            can_invite_members=can_invite,
            can_view_all_tasks=can_view_all,
            allowed_task_ids=frozenset(member.allowed_task_ids),
            permissions=frozenset(granted),
            member_id=member.id,
        )

    def grants(self, permission: Permission) -> bool:
        return self.synthetic or permission in self.permissions

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "access_level": self.access_level.value,
            "can_edit_project": self.can_edit_project,
            "can_invite_members": self.can_invite_members,
            "can_view_all_tasks": self.can_view_all_tasks,
            "allowed_task_ids": sorted(self.allowed_task_ids),
            "permissions": sorted(str(p) for p in self.permissions),
            "synthetic": self.synthetic,
        }


def project_grants(
    role: str,
    can_edit_project: bool,
    can_invite_members: bool,
    extra: Iterable[str] = (),
) -> frozenset[Permission]:
    granted = set(PROJECT_BASE_PERMISSIONS)
    granted |= PROJECT_ROLE_PERMISSIONS.get(role, frozenset())
    if can_edit_project:
        granted.add(EDIT_PROJECT)
    if can_invite_members:
        granted.add(INVITE_MEMBERS)
    granted |= parse_project_grants(extra)
    return frozenset(granted)


def check_task_access(
    access: ProjectAccess,
    task_id: int,
    requester_is_assignee: bool = False,
) -> bool:
    """
    Can this access record see/update a task?

    True if all tasks are visible, the task is on the allow-list, or the
    requester is the task's assignee (even under restricted access).
    """
    return access.can_view_all_tasks or task_id in access.allowed_task_ids or requester_is_assignee


class ProjectAccessResolver:
    """
    Principal + project -> ProjectAccess.

    Also owns assignment administration (assign, update, soft remove),
    since it is the only writer of project team rows.
    """

    def __init__(
        self,
        repository: AuthRepository,
        clock: Callable[[], Any] = utc_now,
    ):
        self.repository = repository
        self.clock = clock
        self._background: set[asyncio.Task] = set()

    async def resolve(self, principal: Principal, project_id: int) -> ProjectAccess | None:
        """
        Resolve access, or None when the principal is not assigned.

        On success for a real assignment, `last_project_access` is stamped
        in the background; that write never blocks or fails the decision.
        """
        if principal.is_admin:
            return ProjectAccess.full(project_id)

        try:
            member = await self.repository.find_project_member(project_id, principal.user_id)
        except StoreError as e:
            logger.error(
                "Project membership lookup failed",
                extra={"project_id": project_id, "user_id": principal.user_id, "error": str(e)},
            )
            raise InfraFailure("Failed to verify project access") from e
        if member is None:
            return None

        self._stamp_access(member.id)
        return ProjectAccess.from_member(member, principal.org_role)

    # =========================================================================
    # Best-effort telemetry
    # =========================================================================

    def _stamp_access(self, member_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._stamp(member_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _stamp(self, member_id: str) -> None:
        try:
            await self.repository.stamp_last_project_access(member_id, self.clock())
        except Exception as e:
            logger.warning(
                "Failed to stamp last project access",
                extra={"member_id": member_id, "error": str(e)},
            )

    async def drain(self) -> None:
        """Wait for pending background stamps (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Assignment administration
    # =========================================================================

    async def assign_member(
        self,
        project_id: int,
        user_id: str,
        assigned_by: str,
        role: str = "team_member",
        access_level: AccessLevel = AccessLevel.STANDARD,
        allowed_task_ids: set[int] | None = None,
        can_edit_project: bool = False,
        can_invite_members: bool = False,
        can_view_all_tasks: bool | None = None,
        permissions: Iterable[str] = (),
    ) -> ProjectTeamMember:
        """
        Assign a user to a project.

        `can_view_all_tasks` defaults to True except for restricted access.
        Raises ValueError if the user already has an active assignment.
        """
        existing = await self.repository.find_project_member(project_id, user_id)
        if existing is not None:
            raise ValueError(f"User {user_id} is already assigned to project {project_id}")

        access_level = AccessLevel(access_level)
        if can_view_all_tasks is None:
            can_view_all_tasks = access_level is not AccessLevel.RESTRICTED

        member = ProjectTeamMember(
            project_id=project_id,
            user_id=user_id,
            role=role,
            access_level=access_level,
            allowed_task_ids=set(allowed_task_ids or ()),
            can_edit_project=can_edit_project,
            can_invite_members=can_invite_members,
            can_view_all_tasks=can_view_all_tasks,
            permissions=set(permissions),
            assigned_by=assigned_by,
            assigned_at=self.clock(),
        )
        await self.repository.save_project_member(member)

        logger.info(
            "Team member assigned to project",
            extra={"project_id": project_id, "user_id": user_id, "access_level": access_level.value},
        )
        return member

    async def update_member(self, member_id: str, **changes: Any) -> ProjectTeamMember:
        """
        Change an active assignment's access level, task list or flags.

        Raises LookupError if there is no active assignment with that id.
        """
        allowed = {
            "role",
            "access_level",
            "allowed_task_ids",
            "can_edit_project",
            "can_invite_members",
            "can_view_all_tasks",
            "permissions",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        member = await self.repository.get_project_member(member_id)
        if member is None or not member.is_active:
            raise LookupError(f"No active project assignment {member_id}")

        data = member.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        if data["access_level"] == AccessLevel.RESTRICTED and "can_view_all_tasks" not in changes:
            data["can_view_all_tasks"] = False
        updated = ProjectTeamMember.model_validate(data)

        await self.repository.save_project_member(updated)
        logger.info("Team member permissions updated", extra={"member_id": member_id})
        return updated

    async def remove_member(self, member_id: str, removed_by: str) -> ProjectTeamMember:
        """
        Soft-delete an assignment.

        The row stays queryable for audit; subsequent resolves for that
        user answer "not assigned".
        """
        member = await self.repository.get_project_member(member_id)
        if member is None:
            raise LookupError(f"No project assignment {member_id}")
        if not member.is_active:
            return member

        removed = member.model_copy(
            update={"is_active": False, "removed_by": removed_by, "removed_at": self.clock()}
        )
        await self.repository.save_project_member(removed)

        logger.info(
            "Team member removed from project",
            extra={"member_id": member_id, "project_id": member.project_id, "removed_by": removed_by},
        )
        return removed

    async def list_members(
        self,
        project_id: int,
        include_inactive: bool = False,
    ) -> list[ProjectTeamMember]:
        return await self.repository.list_project_members(project_id, include_inactive)
