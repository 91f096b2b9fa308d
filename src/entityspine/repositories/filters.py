"""Read filters: the ``filter`` argument of ``find`` and ``find_by_id``.

Accepts the mapping form::

    {"where": {"_kind": "book"}, "order": "_name ASC",
     "skip": 0, "limit": 10, "fields": {"_name": True},
     "lookup": [{"prop": "refs"}]}

or the bracket query-string form
(``filter[where][_kind]=book&filter[limit]=10``). Values from query
strings arrive as text; ``skip`` and ``limit`` accept digit strings.

Tags:
    filters, query, paging, entityspine
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from entityspine.core.errors import InvalidFilterError
from entityspine.lookup.directives import LookupDirective, parse_directives
from entityspine.sets.query import parse_query
from entityspine.store.query import OrderKey, Projection, parse_order

_KEYS = frozenset({"where", "order", "skip", "offset", "limit", "fields", "lookup"})


@dataclass(frozen=True, slots=True)
class RecordFilter:
    where: dict[str, Any] | None = None
    order: tuple[OrderKey, ...] = ()
    skip: int = 0
    limit: int | None = None
    projection: Projection | None = None
    lookup: tuple[LookupDirective, ...] = ()

    @classmethod
    def parse(cls, value: RecordFilter | Mapping[str, Any] | str | None) -> RecordFilter:
        if value is None:
            return cls()
        if isinstance(value, RecordFilter):
            return value
        if isinstance(value, str):
            parsed = parse_query(value) if value.strip() else {}
            value = parsed.get("filter", parsed) if set(parsed) <= {"filter"} else parsed
        if not isinstance(value, Mapping):
            raise InvalidFilterError(f"Filter must be an object, got {value!r}.")

        unknown = set(value) - _KEYS
        if unknown:
            raise InvalidFilterError(f"Unknown filter keys {sorted(unknown)}.")
        if "skip" in value and "offset" in value:
            raise InvalidFilterError("Filter gives both 'skip' and 'offset'.")
        where = value.get("where")
        if where is not None and not isinstance(where, Mapping):
            raise InvalidFilterError(f"Filter where must be an object, got {where!r}.", field="where")

        return cls(
            where=dict(where) if where else None,
            order=parse_order(value.get("order")),
            skip=_count(value.get("skip", value.get("offset")), "skip") or 0,
            limit=_count(value.get("limit"), "limit"),
            projection=Projection.parse(value.get("fields")),
            lookup=parse_directives(value.get("lookup")),
        )

    def narrowed(self, where: dict[str, Any]) -> RecordFilter:
        """Copy of this filter whose ``where`` is also constrained by ``where``."""
        combined = {"and": [where, self.where]} if self.where else where
        return dataclasses.replace(self, where=combined)


def _count(value: Any, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidFilterError(
            f"Filter {name} must be a non-negative integer, got {value!r}.",
            field=name,
            value=value,
        )
    return value


__all__ = ["RecordFilter"]
