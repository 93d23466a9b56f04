"""
AuthRepository - the narrow query interface the engine depends on.

Every read the authorization engine performs is one of the methods here.
Records cross this boundary as pydantic models; the underlying
`MetadataStorage` only ever sees plain dicts.
"""

from __future__ import annotations

from datetime import datetime

from orgguard.core.models import (
    Membership,
    Organization,
    PlanViolation,
    ProjectTeamMember,
    ResourceType,
)
from orgguard.storage.base import Collections, MetadataStorage


class AuthRepository:
    """Typed access to organizations, memberships, assignments and violations."""

    def __init__(self, metadata: MetadataStorage):
        self.metadata = metadata

    # =========================================================================
    # Organizations
    # =========================================================================

    async def get_organization(self, org_id: str) -> Organization | None:
        data = await self.metadata.get(Collections.ORGANIZATIONS, org_id)
        return Organization.model_validate(data) if data else None

    async def save_organization(self, org: Organization) -> None:
        await self.metadata.save(Collections.ORGANIZATIONS, org.id, org.model_dump())

    async def count_usage(self, org_id: str, resource_type: ResourceType) -> int:
        """Current usage of a quota-bound resource, 0 for an unknown org."""
        org = await self.get_organization(org_id)
        if org is None:
            return 0
        return org.usage.for_resource(resource_type)

    # =========================================================================
    # Organization memberships
    # =========================================================================

    async def find_active_membership(self, user_id: str) -> Membership | None:
        rows = await self.metadata.query(
            Collections.MEMBERSHIPS,
            {"user_id": user_id, "is_active": True},
            limit=1,
        )
        return Membership.model_validate(rows[0]) if rows else None

    async def save_membership(self, membership: Membership) -> None:
        await self.metadata.save(
            Collections.MEMBERSHIPS,
            f"{membership.org_id}:{membership.user_id}",
            membership.model_dump(),
        )

    # =========================================================================
    # Project team members
    # =========================================================================

    async def find_project_member(self, project_id: int, user_id: str) -> ProjectTeamMember | None:
        """The active assignment of a user to a project, if any."""
        rows = await self.metadata.query(
            Collections.PROJECT_TEAM_MEMBERS,
            {"project_id": project_id, "user_id": user_id, "is_active": True},
            limit=1,
        )
        return ProjectTeamMember.model_validate(rows[0]) if rows else None

    async def get_project_member(self, member_id: str) -> ProjectTeamMember | None:
        """Fetch an assignment by id, active or not."""
        data = await self.metadata.get(Collections.PROJECT_TEAM_MEMBERS, member_id)
        return ProjectTeamMember.model_validate(data) if data else None

    async def list_project_members(
        self,
        project_id: int,
        include_inactive: bool = False,
    ) -> list[ProjectTeamMember]:
        filters: dict = {"project_id": project_id}
        if not include_inactive:
            filters["is_active"] = True
        rows = await self.metadata.query(Collections.PROJECT_TEAM_MEMBERS, filters, limit=1000)
        return [ProjectTeamMember.model_validate(row) for row in rows]

    async def save_project_member(self, member: ProjectTeamMember) -> None:
        await self.metadata.save(Collections.PROJECT_TEAM_MEMBERS, member.id, member.model_dump())

    async def stamp_last_project_access(self, member_id: str, at: datetime) -> bool:
        return await self.metadata.update(
            Collections.PROJECT_TEAM_MEMBERS,
            member_id,
            {"last_project_access": at},
        )

    # =========================================================================
    # Plan violations (append-only)
    # =========================================================================

    async def append_violation(self, violation: PlanViolation) -> None:
        await self.metadata.save(Collections.PLAN_VIOLATIONS, violation.id, violation.model_dump())

    async def list_violations(self, org_id: str, limit: int = 100) -> list[PlanViolation]:
        rows = await self.metadata.query(Collections.PLAN_VIOLATIONS, {"org_id": org_id}, limit=limit)
        violations = [PlanViolation.model_validate(row) for row in rows]
        return sorted(violations, key=lambda v: v.occurred_at, reverse=True)
