"""
In-memory document store.

Manifesto:
    Tests and single-process tools need a store that behaves like the real
    one (copies in, copies out, same predicate semantics) without any
    infrastructure.

Collections are plain dicts keyed by ``_id``. The lock protects the dicts
themselves; it does not make a count followed by an insert atomic.

Tags:
    entityspine, storage, in-memory, asyncio, testing
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from entityspine.core.records import ID
from entityspine.core.timestamps import generate_id
from entityspine.sets.matcher import matches
from entityspine.store.query import StoreQuery, extract_ids, run_query

__all__ = ["InMemoryDocumentStore"]


class InMemoryDocumentStore:
    """Dict-backed :class:`~entityspine.store.protocols.DocumentStore`.

    Example::

        store = InMemoryDocumentStore()
        saved = await store.insert("entities", {"_kind": "book"})
        await store.get("entities", saved["_id"])
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(document)
        stored.setdefault(ID, generate_id())
        async with self._lock:
            self._collection(collection)[stored[ID]] = stored
        return copy.deepcopy(stored)

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        async with self._lock:
            document = self._collection(collection).get(record_id)
        return copy.deepcopy(document) if document is not None else None

    async def find(self, collection: str, query: StoreQuery) -> list[dict[str, Any]]:
        async with self._lock:
            documents = self._candidates(collection, query.where)
        return run_query(documents, query)

    async def count(self, collection: str, where: dict[str, Any] | None = None) -> int:
        async with self._lock:
            documents = self._candidates(collection, where)
        return sum(1 for document in documents if matches(document, where))

    async def replace(self, collection: str, record_id: str, document: dict[str, Any]) -> bool:
        async with self._lock:
            documents = self._collection(collection)
            if record_id not in documents:
                return False
            stored = copy.deepcopy(document)
            stored[ID] = record_id
            documents[record_id] = stored
        return True

    async def delete(self, collection: str, record_id: str) -> bool:
        async with self._lock:
            return self._collection(collection).pop(record_id, None) is not None

    def _candidates(self, collection: str, where: dict[str, Any] | None) -> list[dict[str, Any]]:
        documents = self._collection(collection)
        ids = extract_ids(where)
        if ids is not None:
            wanted = set(ids)
            return [doc for key, doc in documents.items() if key in wanted]
        return list(documents.values())

    @property
    def collection_sizes(self) -> dict[str, int]:
        """Number of documents per collection."""
        return {name: len(documents) for name, documents in self._collections.items()}
