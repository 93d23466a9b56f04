"""
Core module - data models, errors, and shared utilities.

This module contains:
- models: Organizations, memberships, project assignments, violations
- errors: Exception taxonomy for context-establishing failures
- utils: Shared utility functions
"""

from orgguard.core.models import (
    AccessLevel,
    Membership,
    OrgRole,
    Organization,
    Plan,
    PlanViolation,
    ProjectTeamMember,
    ResourceType,
    TrialPhase,
    Usage,
    ViolationLevel,
)
from orgguard.core.errors import (
    AuthError,
    InfraFailure,
    NoMembership,
    PlanConfigurationError,
    StoreError,
    Unauthenticated,
)
from orgguard.core.utils import ensure_utc, generate_id, utc_now

__all__ = [
    # Models
    "AccessLevel",
    "Membership",
    "OrgRole",
    "Organization",
    "Plan",
    "PlanViolation",
    "ProjectTeamMember",
    "ResourceType",
    "TrialPhase",
    "Usage",
    "ViolationLevel",
    # Errors
    "AuthError",
    "InfraFailure",
    "NoMembership",
    "PlanConfigurationError",
    "StoreError",
    "Unauthenticated",
    # Utils
    "ensure_utc",
    "generate_id",
    "utc_now",
]
