"""
Scope specifications: immutable trees of named set terms.

A scope is built from a mapping or a bracket query string and is
compiled later against a single ``now``::

    ScopeSpec.parse({"actives": True, "or": [{"publics": True},
                                             {"owners": {"userIds": "u1"}}]})
    ScopeSpec.parse("set[actives]&set[or][0][publics]&set[or][1][owners][userIds]=u1")

Sibling terms of one mapping are conjoined. ``and`` / ``or`` take a list
of mappings; each list item is its own conjunction.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import quote

from entityspine.core.errors import InvalidSetError
from entityspine.sets.query import parse_query

GROUP_OPERATORS = ("and", "or")

# Terms whose missing ids are filled from the incoming record during admission
IDENTITY_BOUND_TERMS = frozenset({"owners", "audience"})


def _is_flag(value: Any) -> bool:
    """True for the "term is simply present" spellings: None, True, "", "true"."""
    if value is None or value is True:
        return True
    return isinstance(value, str) and value.strip().lower() in ("", "true", "1")


def _split_ids(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, Iterable):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise InvalidSetError(f"Expected a comma-separated string or list of ids, got {value!r}.")


@dataclass(frozen=True, slots=True)
class Identities:
    """User and group ids given to ``owners``, ``viewers`` and ``audience``."""

    user_ids: tuple[str, ...] = ()
    group_ids: tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.user_ids and not self.group_ids

    @classmethod
    def parse(cls, value: Any) -> Identities:
        if _is_flag(value):
            return cls()
        if not isinstance(value, Mapping):
            raise InvalidSetError(f"Expected userIds/groupIds, got {value!r}.")
        unknown = set(value) - {"userIds", "groupIds"}
        if unknown:
            raise InvalidSetError(f"Unexpected keys {sorted(unknown)} in identity term.")
        return cls(_split_ids(value.get("userIds")), _split_ids(value.get("groupIds")))


@dataclass(frozen=True, slots=True)
class SetTerm:
    name: str
    identities: Identities | None = None

    def describe(self, prefix: str) -> list[str]:
        key = f"{prefix}[{self.name}]"
        if self.identities is None or self.identities.empty:
            return [key]
        parts = []
        if self.identities.user_ids:
            parts.append(f"{key}[userIds]={quote(','.join(self.identities.user_ids), safe=',')}")
        if self.identities.group_ids:
            parts.append(f"{key}[groupIds]={quote(','.join(self.identities.group_ids), safe=',')}")
        return parts


@dataclass(frozen=True, slots=True)
class SetGroup:
    operator: str
    children: tuple[tuple[ScopeNode, ...], ...]

    def describe(self, prefix: str) -> list[str]:
        parts = []
        for index, conjunction in enumerate(self.children):
            child_prefix = f"{prefix}[{self.operator}][{index}]"
            for node in conjunction:
                parts.extend(node.describe(child_prefix))
        return parts


ScopeNode = SetTerm | SetGroup


@dataclass(frozen=True, slots=True)
class ScopeSpec:
    """Immutable, uncompiled scope: an implicit conjunction of nodes."""

    nodes: tuple[ScopeNode, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.nodes

    @classmethod
    def parse(cls, value: Any) -> ScopeSpec:
        """Build from a ``ScopeSpec``, a mapping, a query string, or None."""
        if value is None:
            return cls()
        if isinstance(value, ScopeSpec):
            return value
        if isinstance(value, str):
            parsed = parse_query(value) if value.strip() else {}
            unexpected = set(parsed) - {"set"}
            if unexpected:
                raise InvalidSetError(
                    f"Scope string may only contain set[...] keys, got {sorted(unexpected)}."
                )
            return cls.parse(parsed.get("set") or {})
        if isinstance(value, Mapping):
            return cls(_parse_conjunction(value))
        raise InvalidSetError(f"Cannot build a scope from {type(value).__name__}.")

    def bind_identities(self, identities: Identities) -> ScopeSpec:
        """Fill ``owners`` / ``audience`` terms that carry no ids with ``identities``."""
        return ScopeSpec(tuple(_bind(node, identities) for node in self.nodes))

    def describe(self) -> str:
        """Query-string rendering used in error messages and logs."""
        parts: list[str] = []
        for node in self.nodes:
            parts.extend(node.describe("set"))
        return "&".join(parts)

    def __str__(self) -> str:
        return self.describe()


def _parse_conjunction(mapping: Mapping[str, Any]) -> tuple[ScopeNode, ...]:
    nodes: list[ScopeNode] = []
    for raw_name, value in mapping.items():
        name = str(raw_name).strip().lower()
        if name in GROUP_OPERATORS:
            items = list(value.values()) if isinstance(value, Mapping) else value
            if not isinstance(items, list) or not all(isinstance(i, Mapping) for i in items):
                raise InvalidSetError(f"'{name}' expects a list of set objects, got {value!r}.")
            nodes.append(SetGroup(name, tuple(_parse_conjunction(item) for item in items)))
        elif _is_flag(value):
            nodes.append(SetTerm(name))
        elif isinstance(value, Mapping):
            nodes.append(SetTerm(name, Identities.parse(value)))
        elif value is False or (isinstance(value, str) and value.strip().lower() in ("false", "0")):
            continue
        else:
            raise InvalidSetError(f"Unexpected value {value!r} for set '{name}'.", value=value)
    return tuple(nodes)


def _bind(node: ScopeNode, identities: Identities) -> ScopeNode:
    if isinstance(node, SetGroup):
        return SetGroup(
            node.operator,
            tuple(tuple(_bind(child, identities) for child in conj) for conj in node.children),
        )
    if node.name in IDENTITY_BOUND_TERMS and (node.identities is None or node.identities.empty):
        return replace(node, identities=identities)
    return node


__all__ = [
    "Identities",
    "SetTerm",
    "SetGroup",
    "ScopeNode",
    "ScopeSpec",
    "IDENTITY_BOUND_TERMS",
]
