"""
Storage abstraction layer.

All persistence goes through these interfaces. The engine itself never
talks to a database directly; it depends on `AuthRepository`, which is a
narrow query interface built on top of `MetadataStorage`. Swapping the
in-memory store for PostgreSQL means implementing `MetadataStorage` only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


# =============================================================================
# Storage Interface
# =============================================================================


class MetadataStorage(ABC):
    """
    Storage for structured records (organizations, memberships, assignments).

    Implementations raise `orgguard.core.errors.StoreError` on failure.
    There is deliberately no delete: assignments are soft-deleted and
    violations are append-only.
    """

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Save a document to a collection."""
        pass

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        """Get a document by ID."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query documents with optional equality filters."""
        pass

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """Partial update of a document."""
        pass


# =============================================================================
# Collection Names (for MetadataStorage)
# =============================================================================


class Collections:
    """Standard collection/table names."""

    ORGANIZATIONS = "organizations"
    MEMBERSHIPS = "organization_memberships"
    PROJECT_TEAM_MEMBERS = "project_team_members"
    PLAN_VIOLATIONS = "plan_limit_violations"
