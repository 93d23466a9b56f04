"""
Principal - the resolved identity and organizational context of a request.

Built once per request from the bearer credential and passed explicitly to
every check. It is frozen: "switching role" means resolving a new
principal from a new credential, never mutating this one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from orgguard.auth.capabilities import Permission, PermissionIndex
from orgguard.auth.identity import IdentityVerifier
from orgguard.config import Settings, get_settings
from orgguard.core.errors import InfraFailure, NoMembership, StoreError
from orgguard.core.models import Membership, OrgRole
from orgguard.storage.repository import AuthRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    Who is asking, and in which organization.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(require(Resource.PROJECTS, Action.CREATE))):
            print(f"User {ctx.principal.user_id} in org {ctx.principal.org_id}")
    """

    user_id: str
    org_id: str
    org_role: OrgRole
    raw_permissions: frozenset[Permission] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.org_role is OrgRole.ADMIN

    @classmethod
    def from_membership(cls, membership: Membership) -> Principal:
        return cls(
            user_id=membership.user_id,
            org_id=membership.org_id,
            org_role=membership.role,
            raw_permissions=PermissionIndex.expand_raw(membership.permissions),
        )


class PrincipalResolver:
    """
    Credential -> Principal.

    1. Verify the token with the identity provider (no retry)
    2. Look up the subject's active organization membership
       (one retry with backoff on store errors, then InfraFailure)
    """

    def __init__(
        self,
        verifier: IdentityVerifier,
        repository: AuthRepository,
        settings: Settings | None = None,
    ):
        self.verifier = verifier
        self.repository = repository
        self.settings = settings or get_settings()

    async def resolve(self, token: str) -> Principal:
        """
        Resolve a bearer token to a Principal.

        Raises:
            Unauthenticated: token missing, invalid, or expired
            NoMembership: token valid but no active organization membership
            InfraFailure: identity provider or store unreachable
        """
        subject_id = await self.verifier.verify(token)

        membership = await self._find_membership(subject_id)
        if membership is None:
            logger.info("Authenticated subject has no organization", extra={"user_id": subject_id})
            raise NoMembership(subject_id)

        principal = Principal.from_membership(membership)
        logger.debug(
            "Principal resolved",
            extra={"user_id": principal.user_id, "org_id": principal.org_id, "role": principal.org_role.value},
        )
        return principal

    async def _find_membership(self, subject_id: str) -> Membership | None:
        backoff = self.settings.membership_retry_backoff_seconds
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.membership_retry_attempts)),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 4),
            retry=retry_if_exception_type(StoreError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self.repository.find_active_membership(subject_id)
        except StoreError as e:
            logger.error(
                "Membership lookup failed after retry",
                extra={"user_id": subject_id, "error": str(e)},
            )
            raise InfraFailure("Failed to verify organization membership") from e
        return None
