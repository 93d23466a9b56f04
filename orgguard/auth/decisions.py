"""
Decisions - the tri-state output of the engine.

ALLOW, DENY(reason) or REQUIRES_UPGRADE(reason). Denials are values, not
exceptions: they are expected control flow and carry everything the
caller needs to render an explanation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from orgguard.auth.capabilities import Resource
from orgguard.core.models import OrgRole, Plan, ResourceType, ViolationLevel


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    REQUIRES_UPGRADE = "requires_upgrade"


class DenyReason(str, Enum):
    MISSING_PERMISSION = "missing_permission"
    INSUFFICIENT_ROLE = "insufficient_role"
    NO_PROJECT_ACCESS = "no_project_access"
    NOT_ASSIGNED = "not_assigned"
    TASK_ACCESS_DENIED = "task_access_denied"
    TRIAL_EXPIRED = "trial_expired"
    PLAN_LIMIT_EXCEEDED = "plan_limit_exceeded"


@dataclass(frozen=True)
class ResourceRef:
    """
    What is being accessed.

    `project_id` set makes the action project-scoped; `task_id` set
    additionally makes it task-scoped. `route` is the navigation path
    checked against the expired-trial allow-list.
    """

    resource: Resource | None = None
    route: str | None = None
    project_id: int | None = None
    task_id: int | None = None
    requester_is_assignee: bool = False
    required_role: OrgRole | None = None
    quota_delta: int = 1

    @property
    def is_project_scoped(self) -> bool:
        return self.project_id is not None

    @property
    def is_task_scoped(self) -> bool:
        return self.task_id is not None


@dataclass(frozen=True)
class Decision:
    """The result of one authorization check."""

    outcome: Outcome
    reason: DenyReason | None = None
    message: str = ""
    required: tuple[str, ...] = ()
    current: Any = None
    redirect: str | None = None

    # Plan entitlement details (REQUIRES_UPGRADE, or ALLOW with a usage hint)
    plan: Plan | None = None
    resource_type: ResourceType | None = None
    current_usage: int | None = None
    limit: int | None = None
    level: ViolationLevel | None = None
    percentage_used: int | None = None
    warning: bool = False

    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def allow(cls, **kwargs: Any) -> Decision:
        return cls(outcome=Outcome.ALLOW, **kwargs)

    @classmethod
    def deny(cls, reason: DenyReason, message: str, **kwargs: Any) -> Decision:
        return cls(outcome=Outcome.DENY, reason=reason, message=message, **kwargs)

    @classmethod
    def requires_upgrade(
        cls,
        plan: Plan,
        resource_type: ResourceType,
        current_usage: int,
        limit: int,
        level: ViolationLevel,
    ) -> Decision:
        label = resource_type.value.replace("_", " ")
        return cls(
            outcome=Outcome.REQUIRES_UPGRADE,
            reason=DenyReason.PLAN_LIMIT_EXCEEDED,
            message=(
                f"Your {plan.value} plan allows {limit} {label}. "
                f"You currently have {current_usage}."
            ),
            plan=plan,
            resource_type=resource_type,
            current_usage=current_usage,
            limit=limit,
            level=level,
        )

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def status_code(self) -> int:
        return 200 if self.allowed else 403

    def to_response(self) -> dict[str, Any]:
        """The JSON body for this decision."""
        if self.outcome is Outcome.ALLOW:
            body: dict[str, Any] = {"allowed": True}
            if self.percentage_used is not None:
                body["percentageUsed"] = self.percentage_used
                body["warning"] = self.warning
            return body

        if self.outcome is Outcome.REQUIRES_UPGRADE:
            label = self.resource_type.value.replace("_", " ") if self.resource_type else "resource"
            return {
                "error": f"{label} limit exceeded",
                "message": self.message,
                "reason": DenyReason.PLAN_LIMIT_EXCEEDED.value,
                "currentUsage": self.current_usage,
                "limit": self.limit,
                "plan": self.plan.value if self.plan else None,
                "level": self.level.value if self.level else None,
                "upgradeRequired": True,
            }

        if self.outcome is Outcome.DENY:
            body = {"error": self.message, "reason": self.reason.value if self.reason else None}
            if self.reason is DenyReason.TRIAL_EXPIRED:
                body["redirect"] = self.redirect
                return body
            body["required"] = list(self.required)
            body["current"] = self.current
            return body

        raise ValueError(f"Unknown outcome: {self.outcome!r}")
