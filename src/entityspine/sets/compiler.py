"""
Set compiler: scope specifications to store predicates.

Manifesto:
    Reads, admission rules and lookup directives all speak the same
    scope language. Compiling it in exactly one place means "active" in
    a quota rule is the same "active" a client filters on, evaluated
    against the same ``now``.

    - **One clock per compilation:** ``now`` is captured once, so ``actives``
      and ``expireds`` in the same request never overlap
    - **Fail loudly:** an unknown term names itself in an ``InvalidSetError``
    - **Plain output:** the result is an ordinary ``where`` mapping any store
      (or :func:`entityspine.sets.matcher.matches`) can execute

Architecture:
    ::

        ScopeSpec ──► compile_scope(spec, now=…, base_where=…)
                         │
                         ├─ static terms   actives, expireds, pendings,
                         │                 publics, protecteds, privates,
                         │                 owners, viewers, audience, roots
                         ├─ duration terms createds-7d, updateds-2w,
                         │                 actives-1mon, expireds-30min …
                         └─ groups         and[…], or[…]  (recursive)
                         │
                         ▼
                     {"and": [base_where, …compiled terms]}

Examples:
    >>> from datetime import UTC, datetime
    >>> now = datetime(2026, 1, 1, tzinfo=UTC)
    >>> compile_scope(ScopeSpec.parse("set[publics]"), now=now)
    {'_visibility': 'public'}
    >>> compile_scope(ScopeSpec.parse("set[roots]"), now=now, base_where={"_kind": "book"})
    {'and': [{'_kind': 'book'}, {'_parentsCount': 0}]}

Guardrails:
    ❌ DON'T: Call ``utc_now()`` inside a term
    ✅ DO: Thread the caller's ``now`` through every term

Tags:
    sets, scopes, predicates, compiler, entityspine
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from entityspine.core import records as rf
from entityspine.core.enums import Visibility
from entityspine.core.errors import InvalidSetError
from entityspine.core.logging import get_logger
from entityspine.core.timestamps import shift, to_iso8601, utc_now
from entityspine.sets.spec import Identities, ScopeNode, ScopeSpec, SetGroup, SetTerm

logger = get_logger(__name__)

Where = dict[str, Any]

_DURATION = re.compile(
    r"^(createds|updateds|actives|pendings|expireds)-(\d+)(min|m|h|d|day|w|mon|mo)$"
)

_UNITS = {
    "min": "minutes",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "day": "days",
    "w": "weeks",
    "mon": "months",
    "mo": "months",
}


# -- Static terms -------------------------------------------------------


def _actives(now: str, identities: Identities | None) -> Where:
    return {
        "and": [
            {rf.VALID_FROM: {"neq": None}},
            {rf.VALID_FROM: {"lt": now}},
            {"or": [{rf.VALID_UNTIL: None}, {rf.VALID_UNTIL: {"gt": now}}]},
        ]
    }


def _expireds(now: str, identities: Identities | None) -> Where:
    return {"and": [{rf.VALID_UNTIL: {"neq": None}}, {rf.VALID_UNTIL: {"lte": now}}]}


def _pendings(now: str, identities: Identities | None) -> Where:
    return {"or": [{rf.VALID_FROM: None}, {rf.VALID_FROM: {"gt": now}}]}


def _visibility(value: Visibility) -> Callable[[str, Identities | None], Where]:
    def term(now: str, identities: Identities | None) -> Where:
        return {rf.VISIBILITY: value.value}

    return term


def _membership(user_field: str, group_field: str, identities: Identities | None) -> list[Where]:
    identities = identities or Identities()
    clauses: list[Where] = []
    if identities.user_ids:
        clauses.append({user_field: {"inq": list(identities.user_ids)}})
    if identities.group_ids:
        clauses.append({group_field: {"inq": list(identities.group_ids)}})
    return clauses


def _any_of(clauses: list[Where]) -> Where:
    return clauses[0] if len(clauses) == 1 else {"or": clauses}


def _owners(now: str, identities: Identities | None) -> Where:
    clauses = _membership(rf.OWNER_USERS, rf.OWNER_GROUPS, identities)
    if not clauses:
        # no ids: records nobody owns
        return {
            "and": [
                {rf.COUNTED_FIELDS[rf.OWNER_USERS]: 0},
                {rf.COUNTED_FIELDS[rf.OWNER_GROUPS]: 0},
            ]
        }
    return _any_of(clauses)


def _viewers(now: str, identities: Identities | None) -> Where:
    clauses = _membership(rf.VIEWER_USERS, rf.VIEWER_GROUPS, identities)
    if not clauses:
        return {
            "and": [
                {rf.COUNTED_FIELDS[rf.VIEWER_USERS]: 0},
                {rf.COUNTED_FIELDS[rf.VIEWER_GROUPS]: 0},
            ]
        }
    return _any_of(clauses)


def _audience(now: str, identities: Identities | None) -> Where:
    clauses: list[Where] = [{rf.VISIBILITY: Visibility.PUBLIC.value}]
    clauses += _membership(rf.OWNER_USERS, rf.OWNER_GROUPS, identities)
    clauses += _membership(rf.VIEWER_USERS, rf.VIEWER_GROUPS, identities)
    return _any_of(clauses)


def _roots(now: str, identities: Identities | None) -> Where:
    return {rf.COUNTED_FIELDS[rf.PARENTS]: 0}


TERMS: dict[str, Callable[[str, Identities | None], Where]] = {
    "actives": _actives,
    "expireds": _expireds,
    "pendings": _pendings,
    "publics": _visibility(Visibility.PUBLIC),
    "protecteds": _visibility(Visibility.PROTECTED),
    "privates": _visibility(Visibility.PRIVATE),
    "owners": _owners,
    "viewers": _viewers,
    "audience": _audience,
    "roots": _roots,
}


# -- Duration terms -----------------------------------------------------


def _duration(name: str, now: datetime) -> Where | None:
    match = _DURATION.match(name)
    if match is None:
        return None
    base, amount, unit = match.group(1), int(match.group(2)), _UNITS[match.group(3)]
    if amount <= 0:
        raise InvalidSetError(f"Set '{name}' needs a positive duration.", value=name)

    now_iso = to_iso8601(now)
    past = to_iso8601(shift(now, -amount, unit))
    if base == "createds":
        return {rf.CREATED: {"between": [past, now_iso]}}
    if base == "updateds":
        return {rf.LAST_UPDATED: {"between": [past, now_iso]}}
    if base == "actives":
        return {"and": [_actives(now_iso, None), {rf.VALID_FROM: {"gte": past}}]}
    if base == "expireds":
        return {"and": [{rf.VALID_UNTIL: {"neq": None}}, {rf.VALID_UNTIL: {"between": [past, now_iso]}}]}
    # pendings: starting within the next window
    future = to_iso8601(shift(now, amount, unit))
    return {"and": [{rf.VALID_FROM: {"gt": now_iso}}, {rf.VALID_FROM: {"lte": future}}]}


# -- Compilation --------------------------------------------------------


def _compile_node(node: ScopeNode, now: datetime, now_iso: str) -> Where:
    if isinstance(node, SetGroup):
        compiled = [_conjoin([_compile_node(child, now, now_iso) for child in conj]) for conj in node.children]
        compiled = [clause for clause in compiled if clause]
        if not compiled:
            return {}
        if len(compiled) == 1:
            return compiled[0]
        return {node.operator: compiled}

    if not isinstance(node, SetTerm):
        raise InvalidSetError(f"Scope node must be a set term or group, got {node!r}.", value=node)
    term = TERMS.get(node.name)
    if term is not None:
        return term(now_iso, node.identities)
    duration = _duration(node.name, now)
    if duration is not None:
        return duration
    raise InvalidSetError(f"Unknown set '{node.name}'.", value=node.name)


def _conjoin(clauses: list[Where]) -> Where:
    clauses = [clause for clause in clauses if clause]
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"and": clauses}


def merge_where(base_where: Mapping[str, Any] | None, scope_where: Where | None) -> Where | None:
    """Conjoin a caller's base predicate with a compiled scope.

    A base that is exactly one ``and`` group absorbs the scope clause
    instead of being nested inside another ``and``.
    """
    if not scope_where:
        return dict(base_where) if base_where else None
    if not base_where:
        return scope_where
    if set(base_where) == {"and"} and isinstance(base_where["and"], list):
        return {"and": [*base_where["and"], scope_where]}
    return {"and": [dict(base_where), scope_where]}


def compile_scope(
    spec: ScopeSpec | Mapping[str, Any] | str | None,
    *,
    now: datetime | None = None,
    base_where: Mapping[str, Any] | None = None,
) -> Where | None:
    """Compile ``spec`` into a ``where`` mapping (None when nothing constrains).

    Args:
        spec: Scope to compile; mappings and query strings are parsed first.
        now: Request time. Captured once and shared by every term.
        base_where: Caller's explicit field filter, conjoined with the scope.
    """
    spec = ScopeSpec.parse(spec)
    now = now or utc_now()
    now_iso = to_iso8601(now)
    scope_where = _conjoin([_compile_node(node, now, now_iso) for node in spec.nodes])
    where = merge_where(base_where, scope_where)
    if not spec.empty:
        logger.debug("scope_compiled", scope=spec.describe(), now=now_iso)
    return where


__all__ = [
    "TERMS",
    "compile_scope",
    "merge_where",
]
