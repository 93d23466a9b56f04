"""
Error taxonomy.

Only conditions that stop a request from being evaluated at all are
exceptions. Authorization denials are ordinary `Decision` values and are
never raised from the engine.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for errors raised while establishing request context."""

    status_code: int = 500
    code: str = "auth_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


class Unauthenticated(AuthError):
    """Credential missing, malformed, invalid or expired. Terminal."""

    status_code = 401
    code = "unauthenticated"


class NoMembership(AuthError):
    """Credential is valid but the subject belongs to no organization."""

    status_code = 403
    code = "no_membership"

    def __init__(self, subject_id: str):
        super().__init__(
            "No active organization membership",
            hint="User needs to be added to an organization",
        )
        self.subject_id = subject_id


class InfraFailure(AuthError):
    """Identity provider or store unreachable."""

    status_code = 500
    code = "infra_failure"


class PlanConfigurationError(InfraFailure):
    """Plan limits table is missing or malformed."""

    code = "plan_configuration"


class StoreError(Exception):
    """Raised by storage backends on transient or permanent failures."""
