"""
Relation repository: list membership of entities.

A relation record links one list (``_listId``) to one entity
(``_entityId``). Both ids are required at creation, must point at existing
records, and never change afterwards. Traversal helpers answer "which
entities are in this list" and "which lists contain this entity" by
reading relations first and then the other side through its own
repository, so the other side's response cap and lookups apply.

Tags:
    entityspine, repository, relations, lists, traversal
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from entityspine.config.rules import GovernanceConfig
from entityspine.core import records as rf
from entityspine.core.enums import RecordFamily
from entityspine.core.timestamps import utc_now
from entityspine.repositories.base import Filter, RecordRepository, Scope
from entityspine.repositories.entities import EntityRepository, ListRepository
from entityspine.repositories.filters import RecordFilter
from entityspine.sets.compiler import compile_scope
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import StoreQuery


class RelationRepository(RecordRepository):
    family = RecordFamily.RELATION

    def __init__(
        self,
        store: DocumentStore,
        config: GovernanceConfig,
        *,
        entities: EntityRepository | None = None,
        lists: ListRepository | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(store, config, **kwargs)
        self.entities = entities or EntityRepository(store, config, resolver=self.resolver, gate=self.gate)
        self.lists = lists or ListRepository(store, config, resolver=self.resolver, gate=self.gate)

    async def find_entities_of_list(
        self,
        list_id: str,
        filter: Filter = None,
        scope: Scope = None,
        *,
        relation_scope: Scope = None,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Entities related to ``list_id``, filtered by ``filter`` and ``scope``."""
        await self.lists.find_by_id(list_id)
        ids = await self._linked_ids({rf.LIST_ID: list_id}, rf.ENTITY_ID, relation_scope, now)
        if not ids:
            return []
        pinned = RecordFilter.parse(filter).narrowed({rf.ID: {"inq": ids}})
        return await self.entities.find(pinned, scope, now=now)

    async def find_lists_of_entity(
        self,
        entity_id: str,
        filter: Filter = None,
        scope: Scope = None,
        *,
        relation_scope: Scope = None,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Lists ``entity_id`` belongs to, filtered by ``filter`` and ``scope``."""
        await self.entities.find_by_id(entity_id)
        ids = await self._linked_ids({rf.ENTITY_ID: entity_id}, rf.LIST_ID, relation_scope, now)
        if not ids:
            return []
        pinned = RecordFilter.parse(filter).narrowed({rf.ID: {"inq": ids}})
        return await self.lists.find(pinned, scope, now=now)

    async def _linked_ids(
        self, where: dict[str, Any], field: str, relation_scope: Scope, now: datetime | None
    ) -> list[str]:
        compiled = compile_scope(relation_scope, now=now or utc_now(), base_where=where)
        relations = await self.store.find(self.collection, StoreQuery(where=compiled))
        # first occurrence wins; a pair may be related more than once
        return list(dict.fromkeys(str(rel[field]) for rel in relations if rel.get(field)))


__all__ = ["RelationRepository"]
