"""
Local storage implementation for development and tests.

In-memory, works without any external services. Documents are deep-copied
on the way in and out, so nested values (usage counters, task id sets)
are never shared with callers.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any

from orgguard.storage.base import MetadataStorage


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(doc: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in filters.items())


class InMemoryMetadataStorage(MetadataStorage):
    """In-memory document storage, one dict per collection."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        docs = self._collections.setdefault(collection, {})
        docs[id] = {**copy.deepcopy(data), "_id": id, "_updated_at": _stamp()}

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(id)
        return None if doc is None else copy.deepcopy(doc)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        docs = self._collections.get(collection, {}).values()
        if filters:
            docs = [doc for doc in docs if _matches(doc, filters)]
        # Insertion order, then pagination
        return [copy.deepcopy(doc) for doc in list(docs)[offset:offset + limit]]

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        doc = self._collections.get(collection, {}).get(id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(updates))
        doc["_updated_at"] = _stamp()
        return True
