"""
Storage abstractions.

- MetadataStorage → PostgreSQL in production, in-memory for development
- AuthRepository → the narrow, typed query interface used by the engine
"""

from orgguard.storage.base import MetadataStorage, Collections
from orgguard.storage.local import InMemoryMetadataStorage
from orgguard.storage.repository import AuthRepository


def create_local_repository() -> AuthRepository:
    """Create an AuthRepository backed by in-memory storage."""
    return AuthRepository(InMemoryMetadataStorage())


__all__ = [
    "MetadataStorage",
    "Collections",
    "InMemoryMetadataStorage",
    "AuthRepository",
    "create_local_repository",
]
