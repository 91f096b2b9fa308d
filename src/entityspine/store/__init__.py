"""
entityspine.store - document storage behind the record core.

The core only sees :class:`DocumentStore`. Two implementations ship:
:class:`InMemoryDocumentStore` for tests and single-process tools, and
:class:`SqlDocumentStore` (SQLAlchemy 2.0) for persistence.
"""

from entityspine.store.memory import InMemoryDocumentStore
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import OrderKey, Projection, StoreQuery, parse_order
from entityspine.store.sql import SqlDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "OrderKey",
    "Projection",
    "StoreQuery",
    "parse_order",
]
