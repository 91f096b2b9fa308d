"""
Record lifecycle manager: the repository every family builds on.

Manifesto:
    A record moves ``new → created → [updated]* → deleted``. Every step
    that changes a record goes through one place, so managed fields,
    immutability and admission control cannot be bypassed by a family
    that forgets them.

    - **Managed fields are owned here:** ``_id``, ``_version``, timestamps,
      counts and the idempotency key are never taken from callers
    - **Immutable after create:** ``_kind`` and linkage fields
    - **Checks before writes:** every validation and admission check runs
      before the single store write of an operation
    - **Reads share one scope language:** ``find`` and ``count`` compile the
      same ``set`` specifications admission control uses

Architecture:
    ::

        create(record)
          │ strip managed ─► kind ─► visibility ─► window + auto-approve
          │ ─► slug + counts ─► timestamps ─► linkage ─► lookup constraints
          │ ─► AdmissionGate.admit ──(idempotent match)──► existing record
          ▼
        _version = 1, _id ─► store.insert ─► "record_created"

        update_by_id(id, changes) / replace_by_id(id, record)
          │ load ─► immutability ─► merge or replace ─► revalidate
          │ ─► lookup constraints ─► uniqueness + limits (self excluded)
          ▼
        _version + 1 ─► store.replace ─► "record_updated"

        find(filter, scope) ─► compile_scope ─► store.find ─► LookupResolver

Guardrails:
    ❌ DON'T: Write to the store from a family subclass directly
    ✅ DO: Route mutations through ``create`` / ``update_by_id`` / ``replace_by_id``

    ❌ DON'T: Assume admission is atomic with the insert
    ✅ DO: See :mod:`entityspine.admission.gate` for the non-atomicity contract

Tags:
    repository, lifecycle, records, governance, entityspine
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping
from datetime import datetime
from typing import Any, ClassVar

from entityspine.admission.constraints import LookupConstraintValidator
from entityspine.admission.gate import AdmissionGate, idempotency_key
from entityspine.config.rules import FamilyRules, GovernanceConfig
from entityspine.core import records as rf
from entityspine.core.enums import RecordFamily
from entityspine.core.errors import (
    ImmutabilityError,
    InvalidKindError,
    NotFoundError,
    ValidationError,
)
from entityspine.core.logging import get_logger
from entityspine.core.timestamps import generate_id, to_iso8601, utc_now
from entityspine.lookup.resolver import LookupResolver
from entityspine.repositories.filters import RecordFilter
from entityspine.sets.compiler import compile_scope
from entityspine.sets.spec import ScopeSpec
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import Projection, StoreQuery

logger = get_logger(__name__)

Scope = ScopeSpec | Mapping[str, Any] | str | None
Filter = RecordFilter | Mapping[str, Any] | str | None


class RecordRepository:
    """Lifecycle operations for one record family.

    Subclasses only pin :attr:`family`; everything family-specific comes
    from the family's :class:`~entityspine.config.rules.FamilyRules`.

    Parameters:
        store: Document store holding every family's collection.
        config: Immutable governance snapshot.
        resolver: Lookup resolver; one is built from ``store`` when omitted.
        gate: Admission gate; one is built from ``store`` when omitted.
    """

    family: ClassVar[RecordFamily]

    def __init__(
        self,
        store: DocumentStore,
        config: GovernanceConfig,
        *,
        resolver: LookupResolver | None = None,
        gate: AdmissionGate | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.rules: FamilyRules = config.rules(self.family)
        self.resolver = resolver or LookupResolver(store, config)
        self.gate = gate or AdmissionGate(store)
        self.constraints = LookupConstraintValidator(store, config.reference_codec, config.families)

    @property
    def collection(self) -> str:
        return self.rules.collection

    def reference(self, record_id: str) -> str:
        """Reference string pointing at ``record_id`` in this family."""
        return self.config.reference_codec.format(self.family, record_id)

    # -- Create -------------------------------------------------------------

    async def create(self, record: Mapping[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
        """Create a record, or return the existing one on an idempotent retry.

        Raises:
            ValidationError: bad kind, visibility, window or references.
            NotFoundError: a linkage target does not exist.
            UniquenessViolationError: a duplicate exists in the rule's scope.
            LimitExceededError: a limit rule's scope is full.
        """
        now = now or utc_now()
        data = rf.strip_derived(dict(record))
        kind = self._resolve_kind(data.get(rf.KIND))
        data[rf.KIND] = kind
        self._apply_defaults(data, kind, now)
        self._derive(data)
        rf.stamp(data, now, created=True)

        await self._check_linkage(data)
        await self.constraints.validate(self.rules, data)
        decision = await self.gate.admit(self.rules, data, now)
        if not decision.proceed:
            return decision.existing

        if decision.idempotency_key is not None:
            data[rf.IDEMPOTENCY_KEY] = decision.idempotency_key
        data[rf.VERSION] = 1
        data[rf.ID] = generate_id()
        stored = await self.store.insert(self.collection, data)
        logger.info(
            "record_created",
            family=self.family.value,
            kind=kind,
            record_id=stored[rf.ID],
        )
        return stored

    async def create_child(
        self, parent_id: str, record: Mapping[str, Any], *, now: datetime | None = None
    ) -> dict[str, Any]:
        """Create ``record`` with ``parent_id`` appended to its ``_parents``."""
        await self._get_or_raise(parent_id)
        data = dict(record)
        parents = list(data.get(rf.PARENTS) or [])
        reference = self.reference(parent_id)
        if reference not in parents:
            parents.append(reference)
        data[rf.PARENTS] = parents
        return await self.create(data, now=now)

    # -- Update / replace ---------------------------------------------------

    async def update_by_id(
        self, record_id: str, changes: Mapping[str, Any], *, now: datetime | None = None
    ) -> dict[str, Any]:
        """Merge ``changes`` into the stored record and return the result."""
        now = now or utc_now()
        current = await self._get_or_raise(record_id)
        changes = rf.strip_derived(dict(changes))
        self._check_immutable(current, changes)

        merged = {**current, **changes}
        if rf.VISIBILITY in changes:
            merged[rf.VISIBILITY] = rf.validate_visibility(changes[rf.VISIBILITY])
        rf.normalize_window(merged)
        return await self._save(record_id, current, merged, now)

    async def replace_by_id(
        self, record_id: str, record: Mapping[str, Any], *, now: datetime | None = None
    ) -> dict[str, Any]:
        """Replace the stored record wholesale, keeping identity and creation data."""
        now = now or utc_now()
        current = await self._get_or_raise(record_id)
        data = rf.strip_derived(dict(record))
        self._check_immutable(current, data)

        kind = current[rf.KIND]
        data[rf.ID] = current[rf.ID]
        data[rf.KIND] = kind
        data[rf.CREATED] = current.get(rf.CREATED)
        if rf.CREATED_BY not in data and rf.CREATED_BY in current:
            data[rf.CREATED_BY] = current[rf.CREATED_BY]
        for linkage in rf.LINKAGES[self.family]:
            data[linkage.field] = current.get(linkage.field)
        self._apply_defaults(data, kind, now)
        return await self._save(record_id, current, data, now)

    async def _save(
        self, record_id: str, current: dict[str, Any], record: dict[str, Any], now: datetime
    ) -> dict[str, Any]:
        self._derive(record)
        await self.constraints.validate(self.rules, record)
        await self.gate.check_uniqueness(self.rules, record, now, exclude_id=record_id)
        await self.gate.check_limits(self.rules, record, now, exclude_id=record_id)

        key = idempotency_key(self.rules, record)
        if key is None:
            record.pop(rf.IDEMPOTENCY_KEY, None)
        else:
            record[rf.IDEMPOTENCY_KEY] = key
        record[rf.VERSION] = int(current.get(rf.VERSION) or 0) + 1
        rf.stamp(record, now, created=False)

        if not await self.store.replace(self.collection, record_id, record):
            raise self._not_found(record_id)
        logger.info(
            "record_updated",
            family=self.family.value,
            kind=record[rf.KIND],
            record_id=record_id,
            version=record[rf.VERSION],
        )
        return copy.deepcopy(record)

    # -- Delete -------------------------------------------------------------

    async def delete_by_id(self, record_id: str) -> None:
        if not await self.store.delete(self.collection, record_id):
            raise self._not_found(record_id)
        logger.info("record_deleted", family=self.family.value, record_id=record_id)

    # -- Reads --------------------------------------------------------------

    async def find(
        self, filter: Filter = None, scope: Scope = None, *, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Records matching ``filter.where`` and ``scope``, capped at the response limit."""
        now = now or utc_now()
        flt = RecordFilter.parse(filter)
        where = compile_scope(scope, now=now, base_where=flt.where)
        cap = self.rules.response_limit
        query = StoreQuery(
            where=where,
            order=flt.order,
            skip=flt.skip,
            limit=min(flt.limit or cap, cap),
            projection=self._projection(flt),
        )
        records = await self.store.find(self.collection, query)
        if flt.lookup and records:
            await self.resolver.resolve(records, flt.lookup, now=now)
        return records

    async def find_by_id(
        self, record_id: str, filter: Filter = None, *, now: datetime | None = None
    ) -> dict[str, Any]:
        flt = RecordFilter.parse(filter)
        record = await self._get_or_raise(record_id)
        projection = self._projection(flt)
        if projection is not None:
            record = projection.apply(record)
        if flt.lookup:
            await self.resolver.resolve(record, flt.lookup, now=now or utc_now())
        return record

    async def count(
        self, where: Mapping[str, Any] | None = None, scope: Scope = None, *, now: datetime | None = None
    ) -> int:
        compiled = compile_scope(scope, now=now or utc_now(), base_where=where)
        return await self.store.count(self.collection, compiled)

    async def resolve_lookups(
        self,
        records: list[dict[str, Any]] | dict[str, Any],
        directives: Any,
        *,
        now: datetime | None = None,
    ) -> list[dict[str, Any]] | dict[str, Any]:
        return await self.resolver.resolve(records, directives, now=now)

    # -- Hierarchy ----------------------------------------------------------

    async def find_parents(
        self, record_id: str, filter: Filter = None, scope: Scope = None, *, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Records this record lists in ``_parents``."""
        record = await self._get_or_raise(record_id)
        codec = self.config.reference_codec
        ids = []
        for raw in record.get(rf.PARENTS) or []:
            reference = codec.parse(raw)
            if reference is not None and reference.family == self.family:
                ids.append(reference.record_id)
        if not ids:
            return []
        return await self.find(RecordFilter.parse(filter).narrowed({rf.ID: {"inq": ids}}), scope, now=now)

    async def find_children(
        self, record_id: str, filter: Filter = None, scope: Scope = None, *, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Records that list this record in their ``_parents``."""
        await self._get_or_raise(record_id)
        pinned = RecordFilter.parse(filter).narrowed({rf.PARENTS: self.reference(record_id)})
        return await self.find(pinned, scope, now=now)

    # -- Helpers ------------------------------------------------------------

    async def _get_or_raise(self, record_id: str) -> dict[str, Any]:
        record = await self.store.get(self.collection, record_id)
        if record is None:
            raise self._not_found(record_id)
        return record

    def _not_found(self, record_id: str) -> NotFoundError:
        return NotFoundError(
            f"{self.family.label} with id '{record_id}' could not be found.",
            code=f"{self.family.prefix}-NOT-FOUND",
        ).with_context(family=self.family.value, record_id=record_id)

    def _resolve_kind(self, kind: Any) -> str:
        if kind is None or kind == "":
            kind = self.rules.default_kind
        code = f"INVALID-{self.family.prefix}-KIND"
        if not isinstance(kind, str):
            raise InvalidKindError(
                f"{self.family.label} kind must be a string, got {kind!r}.",
                code=code,
                field=rf.KIND,
                value=kind,
            )
        slug = rf.make_slug(kind)
        if kind != slug:
            raise InvalidKindError(
                f"{self.family.label} kind cannot contain special or uppercase characters. "
                f"Use '{slug}' instead.",
                code=code,
                field=rf.KIND,
                value=kind,
            )
        if not self.rules.kind_allowed(kind):
            allowed = ", ".join(sorted(self.rules.allowed_kinds or ()))
            raise InvalidKindError(
                f"{self.family.label} kind '{kind}' is not valid. Use one of: {allowed}.",
                code=code,
                field=rf.KIND,
                value=kind,
            )
        return kind

    @staticmethod
    def _projection(flt: RecordFilter) -> Projection | None:
        # _kind survives inclusion projections
        if flt.projection is not None and flt.projection.include:
            return flt.projection.with_fields(rf.KIND)
        return flt.projection

    def _apply_defaults(self, data: dict[str, Any], kind: str, now: datetime) -> None:
        if data.get(rf.VISIBILITY) is None:
            data[rf.VISIBILITY] = self.rules.visibility_for(kind).value
        else:
            data[rf.VISIBILITY] = rf.validate_visibility(data[rf.VISIBILITY])
        rf.normalize_window(data)
        if data.get(rf.VALID_FROM) is None and self.rules.auto_approve_for(kind):
            data[rf.VALID_FROM] = to_iso8601(now)

    @staticmethod
    def _derive(data: dict[str, Any]) -> None:
        name = data.get(rf.NAME)
        if isinstance(name, str) and name:
            data[rf.SLUG] = rf.make_slug(name)
        else:
            data.pop(rf.SLUG, None)
        rf.set_count_fields(data)

    def _check_immutable(self, current: Mapping[str, Any], changes: Mapping[str, Any]) -> None:
        if rf.KIND in changes and changes[rf.KIND] != current.get(rf.KIND):
            raise ImmutabilityError(
                f"{self.family.label} kind cannot be changed after creation. "
                f"Current kind is '{current.get(rf.KIND)}'.",
                code=f"IMMUTABLE-{self.family.prefix}-KIND",
                field=rf.KIND,
                value=current.get(rf.KIND),
            )
        for linkage in rf.LINKAGES[self.family]:
            if linkage.field in changes and changes[linkage.field] != current.get(linkage.field):
                raise ImmutabilityError(
                    f"{linkage.target.label} reference cannot be changed after creation. "
                    f"Current {linkage.target.value} id is '{current.get(linkage.field)}'.",
                    code=linkage.immutable_code,
                    field=linkage.field,
                    value=current.get(linkage.field),
                )

    async def _check_linkage(self, data: Mapping[str, Any]) -> None:
        linkages = rf.LINKAGES[self.family]
        for linkage in linkages:
            value = data.get(linkage.field)
            if not isinstance(value, str) or not value:
                raise ValidationError(
                    f"{linkage.target.label} id is required.",
                    code=f"{self.family.prefix}-MISSING-{linkage.target.prefix}-ID",
                    field=linkage.field,
                    value=value,
                )
        targets = await asyncio.gather(
            *(
                self.store.get(self.config.rules(linkage.target).collection, data[linkage.field])
                for linkage in linkages
            )
        )
        for linkage, target in zip(linkages, targets, strict=True):
            if target is None:
                raise NotFoundError(
                    f"{linkage.target.label} with id '{data[linkage.field]}' could not be found.",
                    code=f"{linkage.target.prefix}-NOT-FOUND",
                ).with_context(family=linkage.target.value, record_id=data[linkage.field])


__all__ = ["RecordRepository"]
