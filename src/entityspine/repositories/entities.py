"""Entity and list repositories.

Tags:
    entityspine, repository, entities, lists
"""

from __future__ import annotations

from entityspine.core.enums import RecordFamily
from entityspine.repositories.base import RecordRepository


class EntityRepository(RecordRepository):
    """Standalone records (``entities`` collection)."""

    family = RecordFamily.ENTITY


class ListRepository(RecordRepository):
    """Named collections of entities (``lists`` collection).

    Membership lives in relation records, see
    :class:`~entityspine.repositories.relations.RelationRepository`.
    """

    family = RecordFamily.LIST


__all__ = [
    "EntityRepository",
    "ListRepository",
]
