"""
Admission control: the write-time gate in front of every create.

Manifesto:
    Quotas, duplicate prevention and idempotent retries are all questions
    of the form "which existing records fall in this scope?". The gate
    answers them with the same set compiler reads use, so a rule written
    as ``set[actives]`` means exactly what a client's ``set[actives]``
    filter means.

    - **Idempotency first:** a retried create returns the record it already
      made and is never reported as a duplicate or a quota violation
    - **Then uniqueness, then limits:** limits are checked in configuration
      order and only the first violation is reported
    - **Scope decides applicability:** a rule whose scope the incoming record
      does not fall into is skipped, so out-of-scope creates are uncounted
    - **Reads only:** persisting is the caller's job

Architecture:
    ::

        admit(rules, record, now)
          │
          ├─ 1. idempotency  key = sha256(fields) ─► find(_idempotencyKey ∧ scope)
          │                                          └─ hit ──► AdmissionDecision(existing)
          ├─ 2. uniqueness   bind scope ─► in scope? ─► count(fields == values ∧ scope) > 0 ─► 409
          └─ 3. limits       for rule in limits_for(kind):
                                 bind scope ─► in scope? ─► count(scope) >= limit ─► 429

Non-atomicity:
    Every check is its own store round trip, and so is the insert that
    follows. Two concurrent creates can both pass and both persist,
    transiently exceeding a limit or duplicating a "unique" record. Admission
    is approximate by contract; there is no locking here.

Guardrails:
    ❌ DON'T: Count the incoming record against a rule it is outside of
    ✅ DO: Check ``in scope`` before counting

    ❌ DON'T: Compare array fields in uniqueness checks
    ✅ DO: Express array membership with ``set[owners]`` in the rule's scope

Tags:
    admission-control, quotas, uniqueness, idempotency, entityspine
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from entityspine.admission.idempotency import compute_idempotency_key
from entityspine.config.rules import BoundScope, FamilyRules, RuleScope
from entityspine.core import records as rf
from entityspine.core.errors import LimitExceededError, UniquenessViolationError
from entityspine.core.logging import get_logger
from entityspine.sets.compiler import compile_scope
from entityspine.sets.matcher import matches, value_at
from entityspine.sets.spec import Identities
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import OrderKey, StoreQuery

logger = get_logger(__name__)

# An incoming record is judged as of the instant right after it is written,
# so one auto-approved at request time already counts as active.
PERSIST_TICK = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    """Outcome of :meth:`AdmissionGate.admit`.

    ``existing`` is set when an idempotent duplicate was found; the caller
    returns it instead of persisting.
    """

    existing: dict[str, Any] | None = None
    idempotency_key: str | None = None

    @property
    def proceed(self) -> bool:
        return self.existing is None


class AdmissionGate:
    """Runs idempotency, uniqueness and limit checks against a store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def admit(
        self, rules: FamilyRules, record: Mapping[str, Any], now: datetime
    ) -> AdmissionDecision:
        key = idempotency_key(rules, record)
        if key is not None:
            existing = await self.find_idempotent(rules, record, key, now)
            if existing is not None:
                logger.info(
                    "admission_idempotent_match",
                    family=rules.family.value,
                    kind=record.get(rf.KIND),
                    record_id=existing.get(rf.ID),
                )
                return AdmissionDecision(existing, key)

        await self.check_uniqueness(rules, record, now)
        await self.check_limits(rules, record, now)
        return AdmissionDecision(None, key)

    # -- Idempotency --------------------------------------------------------

    async def find_idempotent(
        self, rules: FamilyRules, record: Mapping[str, Any], key: str, now: datetime
    ) -> dict[str, Any] | None:
        kind = record[rf.KIND]
        rule = rules.idempotency_for(kind)
        clauses: list[dict[str, Any]] = [{rf.IDEMPOTENCY_KEY: key}]
        if kind in rules.idempotency_by_kind:
            clauses.append({rf.KIND: kind})
        bound = _bind(rule.scope, record) if rule is not None else None
        if bound is not None and bound.where:
            clauses.append(bound.where)
        where = compile_scope(bound.spec if bound else None, now=now, base_where={"and": clauses})
        found = await self._store.find(
            rules.collection,
            StoreQuery(where=where, order=(OrderKey(rf.CREATED),), limit=1),
        )
        return found[0] if found else None

    # -- Uniqueness ---------------------------------------------------------

    async def check_uniqueness(
        self,
        rules: FamilyRules,
        record: Mapping[str, Any],
        now: datetime,
        *,
        exclude_id: str | None = None,
    ) -> None:
        kind = record[rf.KIND]
        rule = rules.uniqueness_for(kind)
        if rule is None:
            return
        bound = _bind(rule.scope, record)
        if bound is not None and not _in_scope(record, bound, now):
            return

        values_by_field = {name: value_at(record, name) for name in rule.fields}
        # array-valued fields do not take part
        fields = [name for name, value in values_by_field.items() if not isinstance(value, list)]
        if not fields:
            return
        clauses: list[dict[str, Any]] = [{name: {"eq": values_by_field[name]}} for name in fields]
        if kind in rules.uniqueness_by_kind:
            clauses.append({rf.KIND: kind})
        if exclude_id is not None:
            clauses.append({rf.ID: {"neq": exclude_id}})
        if bound is not None and bound.where:
            clauses.append(bound.where)

        where = compile_scope(bound.spec if bound else None, now=now, base_where={"and": clauses})
        if await self._store.count(rules.collection, where) == 0:
            return

        description = bound.description if bound is not None else ""
        values = ", ".join(repr(values_by_field[name]) for name in fields)
        message = f"{rules.family.label} already exists. Uniqueness is enforced on fields [{', '.join(fields)}] with values [{values}]"
        if description:
            message += f" within scope '{description}'"
        logger.info(
            "admission_uniqueness_violation",
            family=rules.family.value,
            kind=kind,
            fields=fields,
            scope=description,
        )
        raise UniquenessViolationError(
            message + ".",
            code=f"{rules.family.prefix}-UNIQUENESS-VIOLATION",
        ).with_context(family=rules.family.value, kind=kind, scope=description, fields=fields)

    # -- Limits -------------------------------------------------------------

    async def check_limits(
        self,
        rules: FamilyRules,
        record: Mapping[str, Any],
        now: datetime,
        *,
        exclude_id: str | None = None,
    ) -> None:
        kind = record[rf.KIND]
        for rule in rules.limits_for(kind):
            bound = _bind(rule.scope, record)
            if not _in_scope(record, bound, now):
                continue

            clauses: list[dict[str, Any]] = []
            if bound.where:
                clauses.append(bound.where)
            if rule.kind is not None:
                clauses.append({rf.KIND: rule.kind})
            if exclude_id is not None:
                clauses.append({rf.ID: {"neq": exclude_id}})

            where = compile_scope(bound.spec, now=now, base_where={"and": clauses} if clauses else None)
            count = await self._store.count(rules.collection, where)
            if count < rule.limit:
                continue

            logger.info(
                "admission_limit_exceeded",
                family=rules.family.value,
                kind=kind,
                limit=rule.limit,
                count=count,
                scope=bound.description,
            )
            raise LimitExceededError(
                f"{rules.family.label} limit is exceeded. Only {rule.limit} "
                f"record(s) are allowed within scope '{bound.description}'.",
                code=f"{rules.family.prefix}-LIMIT-EXCEEDED",
                limit=rule.limit,
                scope=bound.description,
            ).with_context(family=rules.family.value, kind=kind)


def idempotency_key(rules: FamilyRules, record: Mapping[str, Any]) -> str | None:
    """Key for ``record`` under its kind's idempotency rule, or None without one."""
    rule = rules.idempotency_for(record[rf.KIND])
    if rule is None:
        return None
    return compute_idempotency_key(record, rule.fields)


def _bind(scope: RuleScope | None, record: Mapping[str, Any]) -> BoundScope | None:
    if scope is None:
        return None
    bound = scope.bind(record)
    identities = Identities(
        tuple(str(u) for u in record.get(rf.OWNER_USERS) or ()),
        tuple(str(g) for g in record.get(rf.OWNER_GROUPS) or ()),
    )
    return BoundScope(bound.spec.bind_identities(identities), bound.where, bound.description)


def _in_scope(record: Mapping[str, Any], bound: BoundScope, now: datetime) -> bool:
    where = compile_scope(bound.spec, now=now + PERSIST_TICK, base_where=bound.where)
    return matches(record, where)


__all__ = [
    "AdmissionDecision",
    "AdmissionGate",
    "PERSIST_TICK",
    "idempotency_key",
]
