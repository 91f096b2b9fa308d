"""Declarative base, document table and engine factory for the SQL store.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map`` so
``Mapped`` columns can use plain Python types:

* ``str``  → ``Text``
* ``int``  → ``Integer``
* ``dict`` → ``JSON`` (TEXT in SQLite, native JSON elsewhere)

Every record family shares one ``documents`` table keyed by
``(collection, id)``; the record body lives in the JSON ``body`` column
and ``kind`` is copied out for indexing.

Tags:
    entityspine, orm, sqlalchemy, engine, documents
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Index, Integer, Text, event
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker


class DocumentBase(DeclarativeBase):
    type_annotation_map = {
        str: Text,
        int: Integer,
        dict: JSON,
    }


class DocumentRow(DocumentBase):
    """One stored record."""

    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_collection_kind", "collection", "kind"),)

    collection: Mapped[str] = mapped_column(primary_key=True)
    id: Mapped[str] = mapped_column(primary_key=True)
    kind: Mapped[str | None] = mapped_column(nullable=True)
    # insertion sequence; gives every backend the same natural order
    seq: Mapped[int] = mapped_column(nullable=False, default=0)
    body: Mapped[dict] = mapped_column(nullable=False)


def create_document_engine(url: str = "sqlite:///entityspine.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    SQLite connections get ``check_same_thread=False`` (sessions run in
    worker threads) and WAL journaling for file databases.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            from sqlalchemy.pool import StaticPool

            # one shared connection, otherwise each thread sees its own empty database
            kwargs.setdefault("poolclass", StaticPool)
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    return _sa_create_engine(url, echo=echo, **kwargs)


def document_session_factory(engine: Engine) -> sessionmaker[Session]:
    """``sessionmaker`` bound to *engine* with ``expire_on_commit=False``."""
    return sessionmaker(bind=engine, expire_on_commit=False)


__all__ = [
    "DocumentBase",
    "DocumentRow",
    "create_document_engine",
    "document_session_factory",
]
