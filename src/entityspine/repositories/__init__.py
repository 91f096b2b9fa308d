"""Record lifecycle repositories, one per family.

Architecture::

    RecordRepository (base.py)          create / update / replace / delete,
    │                                   find / find_by_id / count, lookups,
    │                                   parents and children
    ├── EntityRepository     (entities.py)
    ├── ListRepository       (entities.py)
    ├── RelationRepository   (relations.py)   list ⇄ entity traversal
    ├── EntityReactionRepository (reactions.py)
    └── ListReactionRepository   (reactions.py)

    RecordFilter (filters.py)           where / order / skip / limit / fields / lookup

Tags:
    repository, lifecycle, entityspine
"""

from entityspine.repositories.base import RecordRepository
from entityspine.repositories.entities import EntityRepository, ListRepository
from entityspine.repositories.filters import RecordFilter
from entityspine.repositories.reactions import (
    EntityReactionRepository,
    ListReactionRepository,
    ReactionRepository,
)
from entityspine.repositories.relations import RelationRepository

__all__ = [
    "RecordFilter",
    "RecordRepository",
    "EntityRepository",
    "ListRepository",
    "RelationRepository",
    "ReactionRepository",
    "EntityReactionRepository",
    "ListReactionRepository",
]
