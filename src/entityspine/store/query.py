"""Store query model: where, ordering, paging and projection.

``StoreQuery`` is what repositories and the lookup resolver hand to a
:class:`~entityspine.store.protocols.DocumentStore`. The helpers here are
shared by both reference stores, which execute predicates in process
with :func:`~entityspine.sets.matcher.matches`.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from entityspine.core.errors import InvalidFilterError
from entityspine.core.records import ID
from entityspine.core.timestamps import as_instant
from entityspine.sets.matcher import as_flag, get_path, matches


@dataclass(frozen=True, slots=True)
class OrderKey:
    field: str
    descending: bool = False

    def __str__(self) -> str:
        return f"{self.field} {'DESC' if self.descending else 'ASC'}"


def parse_order(value: Any) -> tuple[OrderKey, ...]:
    """Parse ``"a DESC"``, ``"a DESC, b"`` or ``["a DESC", "b ASC"]``."""
    if value is None or value == "" or value == []:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise InvalidFilterError(f"Order must be a string or list of strings, got {value!r}.")

    keys = []
    for item in items:
        if not isinstance(item, str) or not item.strip():
            raise InvalidFilterError(f"Invalid order clause {item!r}.", value=item)
        parts = item.split()
        if len(parts) > 2:
            raise InvalidFilterError(f"Invalid order clause {item!r}.", value=item)
        direction = parts[1].upper() if len(parts) == 2 else "ASC"
        if direction not in ("ASC", "DESC"):
            raise InvalidFilterError(f"Order direction must be ASC or DESC in {item!r}.", value=item)
        keys.append(OrderKey(parts[0], direction == "DESC"))
    return tuple(keys)


@dataclass(frozen=True, slots=True)
class Projection:
    """Field projection. Inclusion keeps only ``fields``; exclusion drops them.

    ``_id`` always survives an inclusion projection.
    """

    fields: frozenset[str]
    include: bool

    @classmethod
    def parse(cls, value: Any) -> Projection | None:
        if value is None or value == {} or value == []:
            return None
        if isinstance(value, (list, tuple)):
            if not all(isinstance(name, str) for name in value):
                raise InvalidFilterError(f"Fields list must contain names, got {value!r}.")
            return cls(frozenset(value), True)
        if not isinstance(value, Mapping):
            raise InvalidFilterError(f"Fields must be a mapping or list, got {value!r}.")
        flags = {name: as_flag(flag) for name, flag in value.items()}
        included = {name for name, flag in flags.items() if flag}
        excluded = {name for name, flag in flags.items() if not flag}
        if included and excluded - {ID}:
            raise InvalidFilterError("Fields projection cannot mix inclusion and exclusion.")
        if included:
            return cls(frozenset(included), True)
        return cls(frozenset(excluded), False)

    def with_fields(self, *names: str) -> Projection:
        """Make sure ``names`` survive this projection."""
        if self.include:
            return Projection(self.fields | set(names), True)
        return Projection(self.fields - set(names), False)

    def apply(self, document: Mapping[str, Any]) -> dict[str, Any]:
        if self.include:
            keep = self.fields | {ID}
            return {key: value for key, value in document.items() if key in keep}
        return {key: value for key, value in document.items() if key not in self.fields}


@dataclass(frozen=True, slots=True)
class StoreQuery:
    where: dict[str, Any] | None = None
    order: tuple[OrderKey, ...] = ()
    skip: int = 0
    limit: int | None = None
    projection: Projection | None = None


def _sort_value(value: Any) -> tuple:
    if value is None or isinstance(value, list) and not value:
        return (0,)
    if isinstance(value, list):
        value = value[0]
    instant = as_instant(value)
    if instant is not None:
        return (1, instant)
    if isinstance(value, bool):
        return (2, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, repr(value))


def sort_documents(documents: Iterable[dict[str, Any]], order: tuple[OrderKey, ...]) -> list[dict[str, Any]]:
    """Stable multi-key sort; null and missing values sort first."""
    result = list(documents)
    for key in reversed(order):
        result.sort(key=lambda doc: _sort_value(_field(doc, key.field)), reverse=key.descending)
    return result


def _field(document: dict[str, Any], path: str) -> Any:
    value = get_path(document, path)
    return value if isinstance(value, (list, str, int, float, bool)) or value is None else None


def run_query(documents: Iterable[dict[str, Any]], query: StoreQuery) -> list[dict[str, Any]]:
    """Filter, order, page and project ``documents`` (returned as deep copies)."""
    selected = [doc for doc in documents if matches(doc, query.where)]
    if query.order:
        selected = sort_documents(selected, query.order)
    end = None if query.limit is None else query.skip + query.limit
    selected = selected[query.skip:end]
    if query.projection is not None:
        return [copy.deepcopy(query.projection.apply(doc)) for doc in selected]
    return [copy.deepcopy(doc) for doc in selected]


def extract_ids(where: Mapping[str, Any] | None) -> list[str] | None:
    """Ids pinned by a top-level ``_id`` condition, for store push-down."""
    if not where:
        return None
    clauses = [where]
    if set(where) == {"and"} and isinstance(where["and"], list):
        clauses = [clause for clause in where["and"] if isinstance(clause, Mapping)]
    for clause in clauses:
        condition = clause.get(ID)
        if isinstance(condition, str):
            return [condition]
        if isinstance(condition, Mapping) and set(condition) == {"inq"}:
            return [str(item) for item in condition["inq"]]
        if isinstance(condition, Mapping) and set(condition) == {"eq"}:
            return [str(condition["eq"])]
    return None


__all__ = [
    "OrderKey",
    "Projection",
    "StoreQuery",
    "parse_order",
    "sort_documents",
    "run_query",
    "extract_ids",
]
