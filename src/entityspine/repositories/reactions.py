"""Reaction repositories: records that react to one entity or one list.

A reaction carries the id of its target in a linkage field
(``_entityId`` or ``_listId``) that is required at creation and fixed
afterwards. Reactions may nest through ``_parents``, but only under a
parent that reacts to the same target.

Tags:
    entityspine, repository, reactions
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from entityspine.core import records as rf
from entityspine.core.enums import RecordFamily
from entityspine.repositories.base import Filter, RecordRepository, Scope
from entityspine.repositories.filters import RecordFilter


class ReactionRepository(RecordRepository):
    """Shared behaviour of the two reaction families."""

    target_field: ClassVar[str]

    async def find_for_target(
        self, target_id: str, filter: Filter = None, scope: Scope = None, *, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Reactions attached to ``target_id``."""
        pinned = RecordFilter.parse(filter).narrowed({self.target_field: target_id})
        return await self.find(pinned, scope, now=now)


class EntityReactionRepository(ReactionRepository):
    family = RecordFamily.ENTITY_REACTION
    target_field = rf.ENTITY_ID


class ListReactionRepository(ReactionRepository):
    family = RecordFamily.LIST_REACTION
    target_field = rf.LIST_ID


__all__ = [
    "ReactionRepository",
    "EntityReactionRepository",
    "ListReactionRepository",
]
