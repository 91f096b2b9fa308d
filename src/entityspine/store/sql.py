"""
SQLAlchemy-backed document store.

Records are JSON bodies in one ``documents`` table. Collection and id
conditions are pushed down to SQL; every other predicate is evaluated in
process with the same matcher the in-memory store uses, so both stores
answer identical queries identically.

Sessions are synchronous and run in worker threads via
``asyncio.to_thread``, keeping the async surface of
:class:`~entityspine.store.protocols.DocumentStore`.

Tags:
    entityspine, storage, sqlalchemy, json, documents
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from entityspine.core.errors import StorageError
from entityspine.core.logging import get_logger
from entityspine.core.records import ID, KIND
from entityspine.core.timestamps import generate_id
from entityspine.sets.matcher import matches
from entityspine.store.orm import DocumentBase, DocumentRow, create_document_engine, document_session_factory
from entityspine.store.query import StoreQuery, extract_ids, run_query

logger = get_logger(__name__)

__all__ = ["SqlDocumentStore"]


class SqlDocumentStore:
    """:class:`~entityspine.store.protocols.DocumentStore` over a SQL database.

    Example::

        store = SqlDocumentStore("sqlite:///:memory:")
        saved = await store.insert("entities", {"_kind": "book"})
    """

    def __init__(self, engine: Engine | str, *, create_tables: bool = True) -> None:
        self._engine = create_document_engine(engine) if isinstance(engine, str) else engine
        self._sessions = document_session_factory(self._engine)
        if create_tables:
            DocumentBase.metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    async def _run(self, operation: str, fn, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            logger.error("store_operation_failed", operation=operation, error=str(exc))
            raise StorageError(f"Document store {operation} failed: {exc}", cause=exc) from exc

    # -- Writes -------------------------------------------------------------

    async def insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(document)
        stored.setdefault(ID, generate_id())
        await self._run("insert", self._insert, collection, stored)
        return copy.deepcopy(stored)

    def _insert(self, collection: str, document: dict[str, Any]) -> None:
        with self._sessions.begin() as session:
            last = session.scalar(
                select(func.max(DocumentRow.seq)).where(DocumentRow.collection == collection)
            )
            session.add(
                DocumentRow(
                    collection=collection,
                    id=document[ID],
                    kind=document.get(KIND),
                    seq=(last or 0) + 1,
                    body=document,
                )
            )

    async def replace(self, collection: str, record_id: str, document: dict[str, Any]) -> bool:
        stored = copy.deepcopy(document)
        stored[ID] = record_id
        return await self._run("replace", self._replace, collection, record_id, stored)

    def _replace(self, collection: str, record_id: str, document: dict[str, Any]) -> bool:
        with self._sessions.begin() as session:
            row = session.get(DocumentRow, (collection, record_id))
            if row is None:
                return False
            row.body = document
            row.kind = document.get(KIND)
            return True

    async def delete(self, collection: str, record_id: str) -> bool:
        return await self._run("delete", self._delete, collection, record_id)

    def _delete(self, collection: str, record_id: str) -> bool:
        with self._sessions.begin() as session:
            row = session.get(DocumentRow, (collection, record_id))
            if row is None:
                return False
            session.delete(row)
            return True

    # -- Reads --------------------------------------------------------------

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        return await self._run("get", self._get, collection, record_id)

    def _get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        with self._sessions() as session:
            row = session.get(DocumentRow, (collection, record_id))
            return copy.deepcopy(row.body) if row is not None else None

    async def find(self, collection: str, query: StoreQuery) -> list[dict[str, Any]]:
        documents = await self._run("find", self._load, collection, query.where)
        return run_query(documents, query)

    async def count(self, collection: str, where: dict[str, Any] | None = None) -> int:
        if not where:
            return await self._run("count", self._count_all, collection)
        documents = await self._run("count", self._load, collection, where)
        return sum(1 for document in documents if matches(document, where))

    def _count_all(self, collection: str) -> int:
        with self._sessions() as session:
            return session.scalar(
                select(func.count()).select_from(DocumentRow).where(DocumentRow.collection == collection)
            ) or 0

    def _load(self, collection: str, where: dict[str, Any] | None) -> list[dict[str, Any]]:
        statement = select(DocumentRow.body).where(DocumentRow.collection == collection)
        ids = extract_ids(where)
        if ids is not None:
            statement = statement.where(DocumentRow.id.in_(ids))
        with self._sessions() as session:
            return list(session.scalars(statement.order_by(DocumentRow.seq)))

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self._engine.dispose()
