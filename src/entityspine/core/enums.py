"""
Shared enums for entityspine.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class RecordFamily(str, Enum):
    """
    Families of persisted records.

    Each family lives in its own document collection and has its own rule
    table, error-code prefix and reference URI segment.
    """

    ENTITY = "entity"
    LIST = "list"
    RELATION = "relation"
    ENTITY_REACTION = "entity-reaction"
    LIST_REACTION = "list-reaction"

    @property
    def prefix(self) -> str:
        """Error-code prefix (``ENTITY``, ``LIST-REACTION`` ...)."""
        return self.value.upper()

    @property
    def collection(self) -> str:
        """Default collection name."""
        return _COLLECTIONS[self]

    @property
    def segment(self) -> str:
        """Path segment used in reference URIs."""
        return _SEGMENTS[self]

    @property
    def label(self) -> str:
        """Human label for messages (``Entity``, ``List reaction`` ...)."""
        return self.value.replace("-", " ").capitalize()


_COLLECTIONS = {
    RecordFamily.ENTITY: "entities",
    RecordFamily.LIST: "lists",
    RecordFamily.RELATION: "relations",
    RecordFamily.ENTITY_REACTION: "entity_reactions",
    RecordFamily.LIST_REACTION: "list_reactions",
}

_SEGMENTS = {
    RecordFamily.ENTITY: "entities",
    RecordFamily.LIST: "lists",
    RecordFamily.RELATION: "relations",
    RecordFamily.ENTITY_REACTION: "entity-reactions",
    RecordFamily.LIST_REACTION: "list-reactions",
}


class Visibility(str, Enum):
    """Record visibility. No implicit widening between values."""

    PUBLIC = "public"
    PROTECTED = "protected"
    PRIVATE = "private"


__all__ = [
    "RecordFamily",
    "Visibility",
]
