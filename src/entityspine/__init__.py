"""
entityspine - governed persistence of loosely-typed records.

Records live in five families (entities, lists, relations, entity
reactions, list reactions). Every family is governed by one frozen rule
table: allowed kinds, visibility, validity windows, quotas, uniqueness,
idempotent creates and reference constraints. Reads, admission control
and lookup resolution all share one scope language ("sets").

Packages:
    - entityspine.core:         errors, logging, timestamps, managed fields
    - entityspine.sets:         scope parsing, compilation and evaluation
    - entityspine.store:        DocumentStore protocol, memory and SQL stores
    - entityspine.config:       rule table and environment settings
    - entityspine.admission:    idempotency, uniqueness, limits, constraints
    - entityspine.lookup:       reference codec and recursive resolver
    - entityspine.repositories: record lifecycle per family
"""

__version__ = "0.1.0"

from entityspine.config.rules import GovernanceConfig
from entityspine.container import EntitySpineContainer
from entityspine.core.enums import RecordFamily, Visibility
from entityspine.core.errors import EntitySpineError
from entityspine.repositories import (
    EntityReactionRepository,
    EntityRepository,
    ListReactionRepository,
    ListRepository,
    RecordRepository,
    RelationRepository,
)
from entityspine.store import InMemoryDocumentStore, SqlDocumentStore

__all__ = [
    "__version__",
    "GovernanceConfig",
    "EntitySpineContainer",
    "RecordFamily",
    "Visibility",
    "EntitySpineError",
    "RecordRepository",
    "EntityRepository",
    "ListRepository",
    "RelationRepository",
    "EntityReactionRepository",
    "ListReactionRepository",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
