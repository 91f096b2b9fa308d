"""
Write-time validation of references held by a record.

Unlike the read-time resolver, which silently drops bad references, a
configured :class:`~entityspine.config.rules.LookupConstraint` rejects a
create or update whose constrained field holds something that is not a
reference to an existing record of the expected family and kind.

Every family carries a default constraint on ``_parents``. Reaction
families additionally require parents to react to the same entity or
list as the child.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from entityspine.config.rules import FamilyRules, LookupConstraint
from entityspine.core import records as rf
from entityspine.core.enums import RecordFamily
from entityspine.core.errors import (
    InvalidLookupConstraintError,
    InvalidLookupReferenceError,
    NotFoundError,
)
from entityspine.lookup.references import RecordReference, ReferenceCodec
from entityspine.sets.matcher import MISSING, get_path
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import StoreQuery

__all__ = ["LookupConstraintValidator"]


class LookupConstraintValidator:
    def __init__(self, store: DocumentStore, codec: ReferenceCodec, families: Mapping[RecordFamily, FamilyRules]) -> None:
        self._store = store
        self._codec = codec
        self._families = families

    async def validate(self, rules: FamilyRules, record: Mapping[str, Any]) -> None:
        """Raise when any constrained reference in ``record`` is unacceptable."""
        for constraint in rules.constraints_for(record[rf.KIND]):
            references = self._parse_all(rules, constraint, record)
            if not references:
                continue
            targets = await self._fetch(references)
            for reference in references:
                target = targets.get((reference.family, reference.record_id))
                if target is None:
                    raise NotFoundError(
                        f"{reference.family.label} with id '{reference.record_id}' referenced in "
                        f"'{constraint.property_path}' could not be found.",
                        code=f"{reference.family.prefix}-NOT-FOUND",
                    ).with_context(family=rules.family.value, field=constraint.property_path)
                if constraint.target_kind is not None and target.get(rf.KIND) != constraint.target_kind:
                    raise InvalidLookupConstraintError(
                        f"Reference in '{constraint.property_path}' must point to a record of kind "
                        f"'{constraint.target_kind}', but '{reference.record_id}' is of kind "
                        f"'{target.get(rf.KIND)}'.",
                        code=f"{rules.family.prefix}-INVALID-LOOKUP-KIND",
                        field=constraint.property_path,
                        value=target.get(rf.KIND),
                    )
                if constraint.property_path == rf.PARENTS:
                    self._check_parent_linkage(rules, record, reference, target)

    def _parse_all(
        self, rules: FamilyRules, constraint: LookupConstraint, record: Mapping[str, Any]
    ) -> list[RecordReference]:
        value = get_path(record, constraint.property_path)
        if value is MISSING or value is None:
            return []
        values = value if isinstance(value, list) else [value]
        references = []
        for raw in values:
            reference = self._codec.parse(raw)
            if reference is None or (constraint.target is not None and reference.family != constraint.target):
                expected = constraint.target.segment if constraint.target is not None else "known"
                raise InvalidLookupReferenceError(
                    f"Invalid reference {raw!r} in '{constraint.property_path}'. "
                    f"Expected a reference to {expected} records.",
                    code=f"{rules.family.prefix}-INVALID-LOOKUP-REFERENCE",
                    field=constraint.property_path,
                    value=raw,
                )
            references.append(reference)
        return references

    async def _fetch(self, references: list[RecordReference]) -> dict[tuple[RecordFamily, str], dict[str, Any]]:
        by_family: dict[RecordFamily, list[str]] = {}
        for reference in references:
            by_family.setdefault(reference.family, []).append(reference.record_id)

        async def load(family: RecordFamily, ids: list[str]) -> list[tuple[tuple[RecordFamily, str], dict[str, Any]]]:
            collection = self._families[family].collection
            found = await self._store.find(collection, StoreQuery(where={rf.ID: {"inq": ids}}))
            return [((family, doc[rf.ID]), doc) for doc in found]

        batches = await asyncio.gather(*(load(family, ids) for family, ids in by_family.items()))
        return dict(pair for batch in batches for pair in batch)

    @staticmethod
    def _check_parent_linkage(
        rules: FamilyRules, record: Mapping[str, Any], reference: RecordReference, parent: Mapping[str, Any]
    ) -> None:
        if rules.family not in (RecordFamily.ENTITY_REACTION, RecordFamily.LIST_REACTION):
            return
        for linkage in rf.LINKAGES[rules.family]:
            if parent.get(linkage.field) != record.get(linkage.field):
                raise InvalidLookupConstraintError(
                    f"Parent '{reference.record_id}' belongs to a different {linkage.target.value} "
                    f"('{parent.get(linkage.field)}') than this {rules.family.value} "
                    f"('{record.get(linkage.field)}').",
                    code=f"{rules.family.prefix}-INVALID-PARENT-{linkage.target.prefix}-ID",
                    field=rf.PARENTS,
                    value=reference.record_id,
                )
