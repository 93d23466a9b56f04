"""
Engine - every long-lived component, wired once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from orgguard.auth.capabilities import PermissionIndex
from orgguard.auth.entitlements import PlanEntitlementGate
from orgguard.auth.facade import AuthorizationFacade
from orgguard.auth.identity import IdentityVerifier, create_identity_verifier
from orgguard.auth.principal import PrincipalResolver
from orgguard.auth.project_access import ProjectAccessResolver
from orgguard.config import Settings, get_settings
from orgguard.core.utils import utc_now
from orgguard.storage import create_local_repository
from orgguard.storage.repository import AuthRepository


@dataclass
class Engine:
    settings: Settings
    repository: AuthRepository
    index: PermissionIndex
    principals: PrincipalResolver
    project_access: ProjectAccessResolver
    entitlements: PlanEntitlementGate
    facade: AuthorizationFacade

    async def drain(self) -> None:
        """Flush best-effort background writes."""
        await self.project_access.drain()
        await self.entitlements.drain()


def build_engine(
    settings: Settings | None = None,
    repository: AuthRepository | None = None,
    verifier: IdentityVerifier | None = None,
    clock: Callable[[], Any] = utc_now,
) -> Engine:
    settings = settings or get_settings()
    repository = repository or create_local_repository()
    verifier = verifier or create_identity_verifier(settings)

    index = PermissionIndex()
    project_access = ProjectAccessResolver(repository, clock=clock)
    entitlements = PlanEntitlementGate(repository, settings=settings, clock=clock)

    return Engine(
        settings=settings,
        repository=repository,
        index=index,
        principals=PrincipalResolver(verifier, repository, settings),
        project_access=project_access,
        entitlements=entitlements,
        facade=AuthorizationFacade(
            repository,
            index,
            project_access,
            entitlements,
            settings=settings,
            clock=clock,
        ),
    )
