"""
Managed record fields and the helpers that maintain them.

A record is a plain ``dict``. Fields the core owns start with an
underscore; everything else is caller-defined and passed through
untouched.

Tags:
    records, managed-fields, slug, entityspine
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from slugify import slugify

from entityspine.core.enums import RecordFamily, Visibility
from entityspine.core.errors import ValidationError
from entityspine.core.timestamps import as_instant, to_iso8601

ID = "_id"
KIND = "_kind"
NAME = "_name"
SLUG = "_slug"
VISIBILITY = "_visibility"
VALID_FROM = "_validFromDateTime"
VALID_UNTIL = "_validUntilDateTime"
OWNER_USERS = "_ownerUsers"
OWNER_GROUPS = "_ownerGroups"
VIEWER_USERS = "_viewerUsers"
VIEWER_GROUPS = "_viewerGroups"
CREATED = "_createdDateTime"
LAST_UPDATED = "_lastUpdatedDateTime"
CREATED_BY = "_createdBy"
LAST_UPDATED_BY = "_lastUpdatedBy"
VERSION = "_version"
IDEMPOTENCY_KEY = "_idempotencyKey"
PARENTS = "_parents"
LIST_ID = "_listId"
ENTITY_ID = "_entityId"

# Array field -> derived count field
COUNTED_FIELDS = {
    OWNER_USERS: "_ownerUsersCount",
    OWNER_GROUPS: "_ownerGroupsCount",
    VIEWER_USERS: "_viewerUsersCount",
    VIEWER_GROUPS: "_viewerGroupsCount",
    PARENTS: "_parentsCount",
}

WINDOW_FIELDS = (VALID_FROM, VALID_UNTIL)

# Never accepted from callers; the lifecycle manager owns them.
DERIVED_FIELDS = frozenset(
    {ID, VERSION, IDEMPOTENCY_KEY, CREATED, LAST_UPDATED, *COUNTED_FIELDS.values()}
)


@dataclass(frozen=True, slots=True)
class Linkage:
    """A foreign-key-like field fixed at creation time."""

    field: str
    target: RecordFamily

    @property
    def immutable_code(self) -> str:
        # _entityId -> IMMUTABLE-ENTITY-ID
        return f"IMMUTABLE-{self.target.prefix}-ID"


LINKAGES: dict[RecordFamily, tuple[Linkage, ...]] = {
    RecordFamily.ENTITY: (),
    RecordFamily.LIST: (),
    RecordFamily.RELATION: (
        Linkage(LIST_ID, RecordFamily.LIST),
        Linkage(ENTITY_ID, RecordFamily.ENTITY),
    ),
    RecordFamily.ENTITY_REACTION: (Linkage(ENTITY_ID, RecordFamily.ENTITY),),
    RecordFamily.LIST_REACTION: (Linkage(LIST_ID, RecordFamily.LIST),),
}


def make_slug(text: str | None) -> str:
    """Lower-case ASCII slug, ``-`` separated."""
    return slugify(text or "")


def strip_derived(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` without fields callers may not set."""
    return {key: value for key, value in data.items() if key not in DERIVED_FIELDS}


def set_count_fields(record: dict[str, Any]) -> None:
    """Default audience/parent arrays to ``[]`` and keep their counts in step."""
    for array_field, count_field in COUNTED_FIELDS.items():
        value = record.get(array_field)
        if value is None:
            value = []
        elif not isinstance(value, list):
            raise ValidationError(
                f"Field '{array_field}' must be an array.",
                code="INVALID-FIELD-TYPE",
                field=array_field,
                value=value,
            )
        record[array_field] = value
        record[count_field] = len(value)


def normalize_window(record: dict[str, Any]) -> None:
    """Normalize validity-window timestamps to ISO-8601 UTC strings in place."""
    for name in WINDOW_FIELDS:
        if name not in record or record[name] is None:
            continue
        instant = as_instant(record[name])
        if instant is None:
            raise ValidationError(
                f"Field '{name}' must be an ISO-8601 date-time, got {record[name]!r}.",
                code="INVALID-DATETIME",
                field=name,
                value=record[name],
            )
        record[name] = to_iso8601(instant)


def validate_visibility(value: Any) -> str:
    try:
        return Visibility(value).value
    except ValueError:
        allowed = ", ".join(v.value for v in Visibility)
        raise ValidationError(
            f"Visibility must be one of: {allowed}. Got {value!r}.",
            code="INVALID-VISIBILITY",
            field=VISIBILITY,
            value=value,
        ) from None


def stamp(record: dict[str, Any], now: datetime, *, created: bool) -> None:
    """Set managed timestamps from the request's ``now``."""
    iso = to_iso8601(now)
    if created:
        record[CREATED] = iso
    record[LAST_UPDATED] = iso


__all__ = [
    "ID",
    "KIND",
    "NAME",
    "SLUG",
    "VISIBILITY",
    "VALID_FROM",
    "VALID_UNTIL",
    "OWNER_USERS",
    "OWNER_GROUPS",
    "VIEWER_USERS",
    "VIEWER_GROUPS",
    "CREATED",
    "LAST_UPDATED",
    "CREATED_BY",
    "LAST_UPDATED_BY",
    "VERSION",
    "IDEMPOTENCY_KEY",
    "PARENTS",
    "LIST_ID",
    "ENTITY_ID",
    "COUNTED_FIELDS",
    "DERIVED_FIELDS",
    "Linkage",
    "LINKAGES",
    "make_slug",
    "strip_derived",
    "set_count_fields",
    "normalize_window",
    "validate_visibility",
    "stamp",
]
