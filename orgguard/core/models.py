"""
Core data models for orgguard.

These are the records the authorization engine reads: organizations with
their plan and usage, organization memberships, project team assignments,
and the append-only plan violation log. The engine never mutates
organizations or memberships; they are owned by provisioning and billing
flows elsewhere.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from orgguard.core.utils import generate_id, utc_now


# =============================================================================
# Enums
# =============================================================================


class OrgRole(str, Enum):
    """Organization-wide role of a member."""

    ADMIN = "admin"              # Full control over the organization
    TEAM_MEMBER = "team_member"  # Works on assigned projects
    CLIENT = "client"            # Sees only their own projects


class AccessLevel(str, Enum):
    """Per-project granularity of a team assignment."""

    STANDARD = "standard"      # Stored capability flags apply as-is
    RESTRICTED = "restricted"  # Task visibility limited to an allow-list
    FULL = "full"              # Every capability flag implicitly true


class Plan(str, Enum):
    """Subscription plan of an organization."""

    SOLO = "solo"
    PRO = "pro"
    PRO_TRIAL = "pro_trial"


class ResourceType(str, Enum):
    """Quota-bound resource categories."""

    PROJECTS = "projects"
    TEAM_MEMBERS = "team_members"
    STORAGE = "storage"


class TrialPhase(str, Enum):
    """Derived lifecycle stage of a trial subscription."""

    ACTIVE = "active"
    ENDING_SOON = "ending_soon"
    EXPIRED = "expired"


class ViolationLevel(str, Enum):
    """Severity of a plan limit violation."""

    SOFT = "soft"
    HARD = "hard"


# =============================================================================
# Organization
# =============================================================================


class Usage(BaseModel):
    """Current resource usage of an organization."""

    projects: int = 0
    team_members: int = 0
    storage_bytes: int = 0

    def for_resource(self, resource_type: ResourceType) -> int:
        if resource_type is ResourceType.PROJECTS:
            return self.projects
        if resource_type is ResourceType.TEAM_MEMBERS:
            return self.team_members
        if resource_type is ResourceType.STORAGE:
            return self.storage_bytes
        raise ValueError(f"Unknown resource type: {resource_type!r}")


class Organization(BaseModel):
    """
    A tenant organization.

    Mutated by billing/provisioning flows; read-only to the engine.
    """

    id: str
    name: str = ""
    plan: Plan = Plan.PRO_TRIAL
    trial_started_at: datetime | None = None
    has_active_subscription: bool = False
    usage: Usage = Field(default_factory=Usage)


class Membership(BaseModel):
    """A user's membership in an organization."""

    user_id: str
    org_id: str
    role: OrgRole
    permissions: list[str] = Field(default_factory=list)  # raw "resource:action" grants
    is_active: bool = True


# =============================================================================
# Project team assignment
# =============================================================================


class ProjectTeamMember(BaseModel):
    """
    Assignment of a user to a project.

    Never hard-deleted: removal flips `is_active` to False so the row
    stays queryable for audit.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: generate_id("ptm"))
    project_id: int
    user_id: str
    role: str = "team_member"
    access_level: AccessLevel = AccessLevel.STANDARD
    allowed_task_ids: set[int] = Field(default_factory=set)
    can_edit_project: bool = False
    can_invite_members: bool = False
    can_view_all_tasks: bool = True
    permissions: set[str] = Field(default_factory=set)  # extra "resource:action" project grants
    is_active: bool = True

    # Audit
    assigned_by: str | None = None
    assigned_at: datetime = Field(default_factory=utc_now)
    removed_by: str | None = None
    removed_at: datetime | None = None
    last_project_access: datetime | None = None

    @model_validator(mode="after")
    def _restricted_hides_tasks(self) -> ProjectTeamMember:
        if self.access_level is AccessLevel.RESTRICTED and self.can_view_all_tasks:
            raise ValueError("restricted access cannot view all tasks")
        return self


# =============================================================================
# Audit
# =============================================================================


class PlanViolation(BaseModel):
    """Append-only record of a denied quota-bound creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_id("viol"))
    org_id: str
    plan: Plan
    resource_type: ResourceType
    current_usage: int
    limit: int
    attempted_delta: int = 1
    level: ViolationLevel
    occurred_at: datetime = Field(default_factory=utc_now)
