"""Lookup directives: which reference fields to inline, and how.

A directive names a dotted property path and an optional scope::

    {"prop": "refs",
     "scope": {"where": {"_kind": "author"},
               "set": {"actives": True},
               "order": ["_name ASC"],
               "skip": 0, "limit": 10,
               "fields": {"_name": True},
               "lookup": [{"prop": "_parents"}]}}

``set`` is also accepted next to ``prop``. Parsing validates everything
up front; a malformed directive is an :class:`InvalidLookupError` before
any store read happens.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from entityspine.core.errors import InvalidLookupError, ValidationError
from entityspine.sets.compiler import compile_scope
from entityspine.sets.spec import ScopeSpec
from entityspine.store.query import OrderKey, Projection, parse_order

_PATH = re.compile(r"^[\w$@-]+(\.[\w$@-]+)*$")
_SCOPE_KEYS = frozenset({"where", "set", "order", "skip", "limit", "fields", "lookup"})


@dataclass(frozen=True, slots=True)
class LookupScope:
    where: dict[str, Any] | None = None
    set_spec: ScopeSpec = field(default_factory=ScopeSpec)
    order: tuple[OrderKey, ...] = ()
    skip: int = 0
    limit: int | None = None
    projection: Projection | None = None
    lookup: tuple[LookupDirective, ...] = ()


@dataclass(frozen=True, slots=True)
class LookupDirective:
    prop: str
    scope: LookupScope = field(default_factory=LookupScope)

    @property
    def depth(self) -> int:
        """Levels of resolution this directive triggers, itself included."""
        return 1 + max((child.depth for child in self.scope.lookup), default=0)


def parse_directives(value: Any, *, max_depth: int | None = None) -> tuple[LookupDirective, ...]:
    """Parse a list of directive mappings (already-parsed directives pass through)."""
    if value is None:
        return ()
    if isinstance(value, (LookupDirective, Mapping)):
        value = [value]
    if isinstance(value, tuple):
        value = list(value)
    if not isinstance(value, list):
        raise InvalidLookupError(f"Lookup must be a list of directives, got {value!r}.")

    directives = tuple(_parse_directive(item) for item in value)
    if max_depth is not None:
        for directive in directives:
            if directive.depth > max_depth:
                raise InvalidLookupError(
                    f"Lookup on '{directive.prop}' nests {directive.depth} levels deep; "
                    f"at most {max_depth} are allowed.",
                    value=directive.prop,
                )
    return directives


def _parse_directive(item: Any) -> LookupDirective:
    if isinstance(item, LookupDirective):
        return item
    if not isinstance(item, Mapping):
        raise InvalidLookupError(f"Lookup directive must be an object, got {item!r}.")
    unknown = set(item) - {"prop", "scope", "set"}
    if unknown:
        raise InvalidLookupError(f"Unknown lookup directive keys {sorted(unknown)}.")

    prop = item.get("prop")
    if not isinstance(prop, str) or not _PATH.match(prop):
        raise InvalidLookupError(f"Invalid lookup property path {prop!r}.", field="prop", value=prop)

    raw_scope = item.get("scope") or {}
    if not isinstance(raw_scope, Mapping):
        raise InvalidLookupError(f"Lookup scope for '{prop}' must be an object.", field="scope")
    unknown = set(raw_scope) - _SCOPE_KEYS
    if unknown:
        raise InvalidLookupError(f"Unknown lookup scope keys {sorted(unknown)} for '{prop}'.")
    if "set" in item and "set" in raw_scope:
        raise InvalidLookupError(f"Lookup on '{prop}' gives 'set' twice.")

    try:
        scope = LookupScope(
            where=_where(raw_scope.get("where"), prop),
            set_spec=ScopeSpec.parse(item.get("set", raw_scope.get("set"))),
            order=parse_order(raw_scope.get("order")),
            skip=_non_negative(raw_scope.get("skip"), "skip", prop) or 0,
            limit=_non_negative(raw_scope.get("limit"), "limit", prop),
            projection=Projection.parse(raw_scope.get("fields")),
            lookup=parse_directives(raw_scope.get("lookup")),
        )
        # unknown set terms fail here, before any read
        compile_scope(scope.set_spec, base_where=scope.where)
    except InvalidLookupError:
        raise
    except ValidationError as exc:
        raise InvalidLookupError(f"Invalid lookup on '{prop}': {exc.message}", cause=exc) from exc
    return LookupDirective(prop, scope)


def _where(value: Any, prop: str) -> dict[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise InvalidLookupError(f"Lookup where for '{prop}' must be an object.", field="where")
    return dict(value)


def _non_negative(value: Any, name: str, prop: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidLookupError(
            f"Lookup {name} for '{prop}' must be a non-negative integer, got {value!r}.",
            field=name,
            value=value,
        )
    return value


__all__ = [
    "LookupScope",
    "LookupDirective",
    "parse_directives",
]
