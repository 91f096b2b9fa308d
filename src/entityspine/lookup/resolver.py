"""
Reference resolver (lookup engine).

Manifesto:
    Records point at other records with reference strings buried anywhere
    in their bodies. Clients ask for those pointers to be inlined, filtered
    with the same scope language as any query, paged, ordered, projected,
    and resolved again inside the inlined records.

    - **Never fails on data:** malformed or dangling references are dropped
      from the result, not raised
    - **Fails on requests:** a malformed directive is an ``InvalidLookupError``
    - **Batched:** one store read per directive, per level, per collection
    - **Bounded:** nesting deeper than ``lookup_max_depth`` is rejected

Architecture:
    ::

        resolve(records, directives)
          │
          for directive (in order):
          │   1. collect slots at directive.prop   (arrays fan out)
          │   2. parse references                  (codec; bad ones → None)
          │   3. per collection: find(_id ∈ ids ∧ where ∧ set, order, projection)
          │   4. nested directives on the fetched records   (depth + 1)
          │   5. write back per slot:
          │        array  → surviving records, reference order (or ``order``),
          │                 then skip/limit
          │        scalar → record, or None when requested but not resolved
          ▼
        records (mutated in place and returned)

Unresolved scalars:
    A scalar field addressed by a directive whose reference does not
    resolve (malformed, dangling, or filtered out) becomes ``None``. Fields
    no directive addresses keep their raw reference strings, so "not
    requested" and "requested but not found" stay distinguishable.

Examples:
    >>> resolver = LookupResolver(store, config)
    >>> [book] = await resolver.resolve([book], [{"prop": "refs"}])
    >>> book["refs"]
    [{'_id': '…', '_kind': 'author', …}]

Tags:
    lookup, references, resolver, recursion, entityspine
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from entityspine.core.enums import RecordFamily
from entityspine.core.errors import InvalidLookupError
from entityspine.core.logging import get_logger
from entityspine.core.records import ID
from entityspine.core.timestamps import utc_now
from entityspine.lookup.directives import LookupDirective, parse_directives
from entityspine.lookup.references import RecordReference
from entityspine.sets.compiler import compile_scope
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import StoreQuery, sort_documents

if TYPE_CHECKING:
    from entityspine.config.rules import GovernanceConfig

logger = get_logger(__name__)

_Key = tuple[RecordFamily, str]


@dataclass(slots=True)
class _Slot:
    """One location holding references: ``container[key]``."""

    container: dict[str, Any]
    key: str
    references: list[RecordReference | None]
    is_array: bool


class LookupResolver:
    """Inline referenced records into result records, recursively."""

    def __init__(self, store: DocumentStore, config: GovernanceConfig) -> None:
        self._store = store
        self._config = config
        self._codec = config.reference_codec

    async def resolve(
        self,
        records: list[dict[str, Any]] | dict[str, Any],
        directives: Any,
        *,
        now: datetime | None = None,
    ) -> list[dict[str, Any]] | dict[str, Any]:
        """Apply ``directives`` to ``records`` in place and return them."""
        parsed = parse_directives(directives, max_depth=self._config.lookup_max_depth)
        if not parsed or not records:
            return records
        items = [records] if isinstance(records, dict) else list(records)
        await self._resolve_level(items, parsed, now or utc_now(), depth=1)
        return records

    async def _resolve_level(
        self,
        records: list[dict[str, Any]],
        directives: tuple[LookupDirective, ...],
        now: datetime,
        *,
        depth: int,
    ) -> None:
        if depth > self._config.lookup_max_depth:
            raise InvalidLookupError(
                f"Lookup recursion exceeded {self._config.lookup_max_depth} levels."
            )
        for directive in directives:
            slots: list[_Slot] = []
            for record in records:
                self._collect(record, directive.prop.split("."), slots)
            if not slots:
                continue

            resolved, ranks = await self._fetch(directive, slots, now)
            if directive.scope.lookup and resolved:
                await self._resolve_level(list(resolved.values()), directive.scope.lookup, now, depth=depth + 1)

            for slot in slots:
                self._write_back(slot, directive, resolved, ranks)
            logger.debug(
                "lookup_resolved",
                prop=directive.prop,
                depth=depth,
                slots=len(slots),
                resolved=len(resolved),
            )

    # -- Slot collection ----------------------------------------------------

    def _collect(self, node: Any, segments: list[str], out: list[_Slot]) -> None:
        if isinstance(node, list):
            for item in node:
                self._collect(item, segments, out)
            return
        if not isinstance(node, dict) or segments[0] not in node:
            return
        head, rest = segments[0], segments[1:]
        value = node[head]
        if rest:
            self._collect(value, rest, out)
        elif isinstance(value, list):
            out.append(_Slot(node, head, [self._codec.parse(item) for item in value], True))
        elif isinstance(value, str):
            out.append(_Slot(node, head, [self._codec.parse(value)], False))

    # -- Batched fetch ------------------------------------------------------

    async def _fetch(
        self, directive: LookupDirective, slots: list[_Slot], now: datetime
    ) -> tuple[dict[_Key, dict[str, Any]], dict[_Key, int]]:
        wanted: dict[RecordFamily, dict[str, None]] = {}
        for slot in slots:
            for reference in slot.references:
                if reference is not None:
                    wanted.setdefault(reference.family, {})[reference.record_id] = None
        if not wanted:
            return {}, {}

        scope = directive.scope
        projection = scope.projection.with_fields(ID) if scope.projection is not None else None

        async def load(family: RecordFamily, ids: list[str]) -> list[tuple[_Key, dict[str, Any]]]:
            base: dict[str, Any] = {ID: {"inq": ids}}
            if scope.where:
                base = {"and": [base, scope.where]}
            where = compile_scope(scope.set_spec, now=now, base_where=base)
            query = StoreQuery(where=where, order=scope.order)
            found = await self._store.find(self._config.rules(family).collection, query)
            return [((family, doc[ID]), doc) for doc in found]

        batches = await asyncio.gather(*(load(family, list(ids)) for family, ids in wanted.items()))
        resolved = {key: doc for batch in batches for key, doc in batch}

        ranks: dict[_Key, int] = {}
        if scope.order:
            ordered = sort_documents(
                [dict(doc, __key=key) for key, doc in resolved.items()], scope.order
            )
            ranks = {doc["__key"]: rank for rank, doc in enumerate(ordered)}
        # ranking reads fields the projection may drop
        if projection is not None:
            resolved = {key: projection.apply(doc) for key, doc in resolved.items()}
        return resolved, ranks

    # -- Write back ---------------------------------------------------------

    @staticmethod
    def _write_back(
        slot: _Slot,
        directive: LookupDirective,
        resolved: Mapping[_Key, dict[str, Any]],
        ranks: Mapping[_Key, int],
    ) -> None:
        keys = [
            (reference.family, reference.record_id)
            for reference in slot.references
            if reference is not None and (reference.family, reference.record_id) in resolved
        ]
        if ranks:
            keys.sort(key=lambda key: ranks[key])
        scope = directive.scope
        end = None if scope.limit is None else scope.skip + scope.limit
        survivors = [copy.deepcopy(resolved[key]) for key in keys[scope.skip:end]]

        if slot.is_array:
            slot.container[slot.key] = survivors
        else:
            slot.container[slot.key] = survivors[0] if survivors else None


__all__ = ["LookupResolver"]
