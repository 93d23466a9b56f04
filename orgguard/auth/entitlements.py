"""
Plan entitlements - resource quotas per subscription plan.

The gate compares current usage against the organization's plan limits.
It reads usage, the caller then creates: this is check-then-act, so a
burst of concurrent creates can overshoot a limit slightly. Deployments
needing strict enforcement must wrap check-and-create in one transaction
holding a lock on the usage counter.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from orgguard.auth.decisions import Decision
from orgguard.auth.trial import effective_plan, evaluate
from orgguard.config import Settings, get_settings
from orgguard.core.errors import InfraFailure, PlanConfigurationError, StoreError
from orgguard.core.models import (
    Organization,
    Plan,
    PlanViolation,
    ResourceType,
    ViolationLevel,
)
from orgguard.core.utils import utc_now
from orgguard.storage.repository import AuthRepository

logger = logging.getLogger(__name__)

UNLIMITED = -1
GIB = 1024 * 1024 * 1024


# =============================================================================
# Plan limits table
# =============================================================================


class PlanLimits(BaseModel):
    """Quota per resource; -1 means unlimited."""

    max_projects: int
    max_team_members: int
    max_storage_bytes: int

    @field_validator("max_projects", "max_team_members", "max_storage_bytes")
    @classmethod
    def _not_negative(cls, value: int) -> int:
        if value < UNLIMITED:
            raise ValueError("limits must be >= 0, or -1 for unlimited")
        return value

    def limit_for(self, resource_type: ResourceType) -> int:
        if resource_type is ResourceType.PROJECTS:
            return self.max_projects
        if resource_type is ResourceType.TEAM_MEMBERS:
            return self.max_team_members
        if resource_type is ResourceType.STORAGE:
            return self.max_storage_bytes
        raise ValueError(f"Unknown resource type: {resource_type!r}")


DEFAULT_PLAN_LIMITS: Mapping[Plan, PlanLimits] = MappingProxyType({
    Plan.SOLO: PlanLimits(max_projects=3, max_team_members=0, max_storage_bytes=5 * GIB),
    Plan.PRO: PlanLimits(max_projects=UNLIMITED, max_team_members=UNLIMITED, max_storage_bytes=100 * GIB),
    Plan.PRO_TRIAL: PlanLimits(max_projects=UNLIMITED, max_team_members=UNLIMITED, max_storage_bytes=100 * GIB),
})

PLAN_BENEFITS: Mapping[Plan, tuple[str, ...]] = MappingProxyType({
    Plan.PRO: (
        "Unlimited projects",
        "Unlimited team members",
        "Advanced collaboration features",
        "100GB storage",
    ),
})

# YAML keys accepted for each limit
_YAML_KEYS = {
    "max_projects": ("projects", "maxProjects", "max_projects"),
    "max_team_members": ("teamMembers", "collaborators", "team_members", "maxTeamMembers", "max_team_members"),
    "max_storage_bytes": ("storage", "maxStorage", "max_storage_bytes"),
}


def load_plan_limits(path: Path | str) -> dict[Plan, PlanLimits]:
    """
    Load plan limits from YAML, merged over the built-in table.

    Example:
        solo:
          projects: 5
          collaborators: 1
          storage: 10737418240
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise PlanConfigurationError(f"Cannot read plan limits from {path}") from e

    if not isinstance(data, dict):
        raise PlanConfigurationError(f"Plan limits file {path} must be a mapping")

    limits = dict(DEFAULT_PLAN_LIMITS)
    for plan_name, values in data.items():
        try:
            plan = Plan(plan_name)
        except ValueError as e:
            raise PlanConfigurationError(f"Unknown plan in limits file: {plan_name!r}") from e
        if not isinstance(values, dict):
            raise PlanConfigurationError(f"Limits for {plan_name!r} must be a mapping")

        merged = limits[plan].model_dump()
        for field_name, keys in _YAML_KEYS.items():
            for key in keys:
                if key in values:
                    merged[field_name] = values[key]
                    break
        try:
            limits[plan] = PlanLimits.model_validate(merged)
        except ValidationError as e:
            raise PlanConfigurationError(f"Invalid limits for {plan_name!r}: {e}") from e

    return limits


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class EntitlementResult:
    """Outcome of one quota check."""

    allowed: bool
    plan: Plan
    resource_type: ResourceType
    current_usage: int
    limit: int
    proposed_delta: int = 1
    percentage_used: int = 0
    warning: bool = False
    violation: PlanViolation | None = None

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def to_decision(self) -> Decision:
        if self.allowed:
            return Decision.allow(
                plan=self.plan,
                resource_type=self.resource_type,
                current_usage=self.current_usage,
                limit=self.limit,
                percentage_used=self.percentage_used,
                warning=self.warning,
            )
        return Decision.requires_upgrade(
            plan=self.plan,
            resource_type=self.resource_type,
            current_usage=self.current_usage,
            limit=self.limit,
            level=self.violation.level if self.violation else ViolationLevel.SOFT,
        )


@dataclass
class ComplianceReport:
    """Usage vs limits across every resource type."""

    org_id: str
    plan: Plan
    usage: dict[ResourceType, tuple[int, int]] = field(default_factory=dict)  # current, limit
    violations: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "plan": self.plan.value,
            "compliant": self.compliant,
            "usage": {
                rt.value: {"current": current, "limit": limit}
                for rt, (current, limit) in self.usage.items()
            },
            "violations": self.violations,
            "warnings": self.warnings,
        }


def percentage_of(current: int, limit: int) -> int:
    """Rounded half-up; unlimited is 0%, a zero limit is full."""
    if limit == UNLIMITED:
        return 0
    if limit == 0:
        return 100
    return math.floor(current * 100 / limit + 0.5)


# =============================================================================
# Gate
# =============================================================================


class PlanEntitlementGate:
    """
    Org + resource type + delta -> allowed, or a recorded violation.

    Every denial appends a `PlanViolation`; the append is best-effort and
    never blocks or fails the check.
    """

    def __init__(
        self,
        repository: AuthRepository,
        limits: Mapping[Plan, PlanLimits] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], Any] = utc_now,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        if limits is None:
            limits = (
                load_plan_limits(self.settings.plan_limits_file)
                if self.settings.plan_limits_file
                else DEFAULT_PLAN_LIMITS
            )
        self.limits = MappingProxyType(dict(limits))
        self.clock = clock
        self._background: set[asyncio.Task] = set()

    def limits_for(self, plan: Plan) -> PlanLimits:
        try:
            return self.limits[Plan(plan)]
        except KeyError:
            raise PlanConfigurationError(f"No limits configured for plan {plan!r}")

    async def check(
        self,
        org_id: str,
        resource_type: ResourceType,
        proposed_delta: int = 1,
    ) -> EntitlementResult:
        """
        Would creating `proposed_delta` more of a resource stay within the plan?

        Over the limit is `hard` when usage already exceeds the limit by
        more than the hard-limit ratio, otherwise `soft`. Both deny.
        """
        resource_type = ResourceType(resource_type)
        if proposed_delta < 0:
            raise ValueError("proposed_delta must not be negative")

        org = await self._load_organization(org_id)
        plan = self._effective_plan(org)
        limit = self.limits_for(plan).limit_for(resource_type)
        current = await self._usage(org_id, resource_type)

        if limit == UNLIMITED:
            return EntitlementResult(
                allowed=True,
                plan=plan,
                resource_type=resource_type,
                current_usage=current,
                limit=limit,
                proposed_delta=proposed_delta,
            )

        if current + proposed_delta > limit:
            level = (
                ViolationLevel.HARD
                if current > limit * self.settings.hard_limit_ratio
                else ViolationLevel.SOFT
            )
            violation = PlanViolation(
                org_id=org_id,
                plan=plan,
                resource_type=resource_type,
                current_usage=current,
                limit=limit,
                attempted_delta=proposed_delta,
                level=level,
                occurred_at=self.clock(),
            )
            self._record(violation)
            logger.info(
                "Plan limit exceeded",
                extra={
                    "org_id": org_id,
                    "plan": plan.value,
                    "resource_type": resource_type.value,
                    "current_usage": current,
                    "limit": limit,
                    "level": level.value,
                },
            )
            return EntitlementResult(
                allowed=False,
                plan=plan,
                resource_type=resource_type,
                current_usage=current,
                limit=limit,
                proposed_delta=proposed_delta,
                percentage_used=percentage_of(current, limit),
                warning=True,
                violation=violation,
            )

        percentage = percentage_of(current, limit)
        return EntitlementResult(
            allowed=True,
            plan=plan,
            resource_type=resource_type,
            current_usage=current,
            limit=limit,
            proposed_delta=proposed_delta,
            percentage_used=percentage,
            warning=percentage >= self.settings.usage_warning_percentage,
        )

    # =========================================================================
    # Compliance and recommendations
    # =========================================================================

    async def compliance(self, org_id: str) -> ComplianceReport:
        """Usage vs limits for every resource, with violations and warnings."""
        org = await self._load_organization(org_id)
        plan = self._effective_plan(org)
        limits = self.limits_for(plan)
        report = ComplianceReport(org_id=org_id, plan=plan)

        for resource_type in ResourceType:
            current = await self._usage(org_id, resource_type)
            limit = limits.limit_for(resource_type)
            report.usage[resource_type] = (current, limit)

            if limit == UNLIMITED:
                continue
            if current > limit:
                report.violations.append({
                    "type": resource_type.value,
                    "current": current,
                    "limit": limit,
                    "excess": current - limit,
                })
            elif limit > 0:
                percentage = current * 100 / limit
                if self.settings.usage_warning_percentage < percentage <= 100:
                    report.warnings.append({
                        "type": resource_type.value,
                        "percentage": percentage_of(current, limit),
                        "message": f"Approaching {resource_type.value.replace('_', ' ')} limit",
                    })

        return report

    async def upgrade_recommendations(self, org_id: str) -> dict[str, Any]:
        """Suggest a plan when the organization is over or near its limits."""
        report = await self.compliance(org_id)

        if report.compliant and not report.warnings:
            return {
                "recommended": False,
                "reason": "Current plan meets all requirements",
                "current_plan": report.plan.value,
                "suggested_plans": [],
                "benefits": [],
            }

        suggested: list[dict[str, Any]] = []
        benefits: list[str] = []
        if report.plan is Plan.SOLO:
            pro = self.limits_for(Plan.PRO)
            suggested.append({
                "id": Plan.PRO.value,
                "limits": pro.model_dump(),
                "reason": "Unlimited projects and team members",
            })
            benefits = list(PLAN_BENEFITS[Plan.PRO])

        return {
            "recommended": True,
            "reason": "Plan limits exceeded" if report.violations else "Approaching plan limits",
            "current_plan": report.plan.value,
            "suggested_plans": suggested,
            "benefits": benefits,
        }

    async def list_violations(self, org_id: str) -> list[PlanViolation]:
        try:
            return await self.repository.list_violations(org_id)
        except StoreError as e:
            raise InfraFailure("Failed to load plan violations") from e

    # =========================================================================
    # Internal
    # =========================================================================

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

    def _effective_plan(self, org: Organization) -> Plan:
        status = evaluate(
            org.plan,
            org.trial_started_at,
            org.has_active_subscription,
            self.clock(),
            duration_days=self.settings.trial_duration_days,
            ending_soon_days=self.settings.trial_ending_soon_days,
        )
        return effective_plan(org.plan, status)

    async def _usage(self, org_id: str, resource_type: ResourceType) -> int:
        try:
            return await self.repository.count_usage(org_id, resource_type)
        except StoreError as e:
            logger.error("Usage lookup failed", extra={"org_id": org_id, "error": str(e)})
            raise InfraFailure("Failed to load usage") from e

    def _record(self, violation: PlanViolation) -> None:
        task = asyncio.get_running_loop().create_task(self._append(violation))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _append(self, violation: PlanViolation) -> None:
        try:
            await self.repository.append_violation(violation)
        except Exception as e:
            logger.warning(
                "Failed to record plan violation",
                extra={"org_id": violation.org_id, "error": str(e)},
            )

    async def drain(self) -> None:
        """Wait for pending violation appends (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
