"""
Document store protocol.

The record core never talks to a database driver directly. Everything it
needs from storage is this small async surface over named collections of
JSON documents keyed by ``_id``.

Architecture:
    ::

        repositories / admission / lookup
                     │ StoreQuery (where, order, skip, limit, projection)
                     ▼
        DocumentStore (this protocol)
        ├── InMemoryDocumentStore   dicts + asyncio.Lock
        └── SqlDocumentStore        SQLAlchemy 2.0, one JSON table

Guardrails:
    ❌ DON'T: Expect atomicity across calls (count, then insert)
    ✅ DO: Treat every method as one independent round trip

    ❌ DON'T: Mutate documents returned by a store
    ✅ DO: Rely on stores returning copies

Tags:
    protocol, storage, documents, async, entityspine
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from entityspine.store.query import StoreQuery


@runtime_checkable
class DocumentStore(Protocol):
    """Async document store over named collections."""

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        """Persist ``document``; assigns ``_id`` when absent and returns the stored copy."""
        ...

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        ...

    async def find(self, collection: str, query: StoreQuery) -> list[dict[str, Any]]:
        ...

    async def count(self, collection: str, where: dict[str, Any] | None = None) -> int:
        ...

    async def replace(self, collection: str, record_id: str, document: dict[str, Any]) -> bool:
        """Overwrite a document; False when ``record_id`` does not exist."""
        ...

    async def delete(self, collection: str, record_id: str) -> bool:
        """Remove a document; False when ``record_id`` does not exist."""
        ...


__all__ = ["DocumentStore"]
