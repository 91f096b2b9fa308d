"""
Governance rule table: the immutable configuration snapshot.

Manifesto:
    Per-kind behaviour (which kinds exist, who sees new records, how many
    may exist, what counts as a duplicate) is data, not code. It is
    resolved from one frozen table keyed by (family, kind), built once and
    handed explicitly to everything that needs it.

    - **Kind overrides family:** ``uniqueness_for("book")`` returns the
      ``book`` rule when one exists, otherwise the family-wide rule
    - **Limits accumulate:** family-wide and kind-specific limit rules all
      apply, in configuration order
    - **Validated up front:** a malformed scope is a ``ConfigError`` when the
      table is built, not a surprise at the first create

Architecture:
    ::

        GovernanceConfig
        ├── lookup_max_depth, reference_codec
        └── families: {RecordFamily → FamilyRules}
                       ├── allowed_kinds, default_kind, response_limit
                       ├── auto_approve      (+ per kind)
                       ├── visibility        (+ per kind)
                       ├── uniqueness        (+ per kind)   UniquenessRule
                       ├── idempotency       (+ per kind)   IdempotencyRule
                       ├── limits            (kind-tagged)  LimitRule*
                       └── lookup_constraints              LookupConstraint*

    Rule scopes are :class:`RuleScope` templates such as
    ``"set[actives]&filter[where][_kind]=${_kind}"`` that bind to the
    incoming record at admission time.

Tags:
    configuration, rules, governance, immutable, entityspine
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import unquote

from entityspine.core.enums import RecordFamily, Visibility
from entityspine.core.errors import ConfigError, EntitySpineError
from entityspine.core.records import PARENTS
from entityspine.lookup.references import ReferenceCodec, UriReferenceCodec
from entityspine.sets.compiler import compile_scope
from entityspine.sets.query import interpolate, interpolate_values, parse_query
from entityspine.sets.spec import ScopeSpec

DEFAULT_RESPONSE_LIMIT = 50
DEFAULT_LOOKUP_MAX_DEPTH = 5


@dataclass(frozen=True, slots=True)
class BoundScope:
    """A rule scope after placeholders were filled from one record."""

    spec: ScopeSpec
    where: dict[str, Any] | None
    description: str


@dataclass(frozen=True, slots=True)
class RuleScope:
    """Scope template of a rule: set terms plus an optional base ``where``.

    Accepts the query-string form (``set[actives]&filter[where][_kind]=book``)
    or the equivalent mapping (``{"set": {"actives": True},
    "filter": {"where": {"_kind": "book"}}}``). ``${path}`` placeholders are
    filled from the incoming record by :meth:`bind`.
    """

    template: str | Mapping[str, Any]

    def __post_init__(self) -> None:
        try:
            bound = self.bind({})
            compile_scope(bound.spec, base_where=bound.where)
        except EntitySpineError as exc:
            raise ConfigError(f"Invalid rule scope {self.template!r}: {exc.message}", cause=exc) from exc

    @classmethod
    def parse(cls, value: RuleScope | str | Mapping[str, Any] | None) -> RuleScope | None:
        if value is None or isinstance(value, RuleScope):
            return value
        if isinstance(value, str) and not value.strip():
            return None
        return cls(value if isinstance(value, str) else MappingProxyType(dict(value)))

    def bind(self, record: Mapping[str, Any]) -> BoundScope:
        if isinstance(self.template, str):
            text = interpolate(self.template, dict(record))
            parsed = parse_query(text)
            description = unquote(text)
        else:
            parsed = interpolate_values(_plain(self.template), dict(record))
            description = json.dumps(parsed, sort_keys=True, default=str)

        unexpected = set(parsed) - {"set", "filter", "where"}
        if unexpected:
            raise ConfigError(f"Unexpected scope keys {sorted(unexpected)}.")
        filter_part = parsed.get("filter") or {}
        if not isinstance(filter_part, Mapping) or set(filter_part) - {"where"}:
            raise ConfigError("Scope filters may only carry a 'where' clause.")
        where = filter_part.get("where") or parsed.get("where") or None
        return BoundScope(ScopeSpec.parse(parsed.get("set") or {}), where, description)

    def __str__(self) -> str:
        if isinstance(self.template, str):
            return self.template
        return json.dumps(_plain(self.template), sort_keys=True, default=str)


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


@dataclass(frozen=True, slots=True)
class LimitRule:
    """At most ``limit`` records may exist inside ``scope``.

    A rule tagged with ``kind`` applies to, and counts, only that kind.
    """

    scope: RuleScope
    limit: int
    kind: str | None = None

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ConfigError(f"Record limit must be non-negative, got {self.limit}.")


@dataclass(frozen=True, slots=True)
class UniquenessRule:
    fields: tuple[str, ...]
    scope: RuleScope | None = None

    def __post_init__(self) -> None:
        if not self.fields:
            raise ConfigError("Uniqueness rule needs at least one field.")


@dataclass(frozen=True, slots=True)
class IdempotencyRule:
    fields: tuple[str, ...]
    scope: RuleScope | None = None

    def __post_init__(self) -> None:
        if not self.fields:
            raise ConfigError("Idempotency rule needs at least one field.")


@dataclass(frozen=True, slots=True)
class LookupConstraint:
    """References at ``property_path`` must point at ``target`` records.

    ``source_kind`` limits the constraint to records of one kind;
    ``target_kind`` requires referenced records to be of one kind.
    """

    property_path: str
    target: RecordFamily | None = None
    source_kind: str | None = None
    target_kind: str | None = None


def _frozen(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True, slots=True)
class FamilyRules:
    """Everything configured for one record family."""

    family: RecordFamily
    collection: str = ""
    allowed_kinds: frozenset[str] | None = None
    default_kind: str | None = None
    auto_approve: bool = False
    auto_approve_by_kind: Mapping[str, bool] = field(default_factory=dict)
    visibility: Visibility = Visibility.PROTECTED
    visibility_by_kind: Mapping[str, Visibility] = field(default_factory=dict)
    uniqueness: UniquenessRule | None = None
    uniqueness_by_kind: Mapping[str, UniquenessRule] = field(default_factory=dict)
    idempotency: IdempotencyRule | None = None
    idempotency_by_kind: Mapping[str, IdempotencyRule] = field(default_factory=dict)
    limits: tuple[LimitRule, ...] = ()
    lookup_constraints: tuple[LookupConstraint, ...] = ()
    response_limit: int = DEFAULT_RESPONSE_LIMIT

    def __post_init__(self) -> None:
        object.__setattr__(self, "collection", self.collection or self.family.collection)
        object.__setattr__(self, "default_kind", self.default_kind or self.family.value)
        if self.allowed_kinds is not None:
            object.__setattr__(self, "allowed_kinds", frozenset(self.allowed_kinds))
        for name in ("auto_approve_by_kind", "visibility_by_kind", "uniqueness_by_kind", "idempotency_by_kind"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))
        object.__setattr__(self, "limits", tuple(self.limits))
        constraints = tuple(self.lookup_constraints)
        if not any(c.property_path == PARENTS for c in constraints):
            constraints = default_constraints(self.family) + constraints
        object.__setattr__(self, "lookup_constraints", constraints)
        if self.response_limit <= 0:
            raise ConfigError(f"Response limit must be positive, got {self.response_limit}.")

    def kind_allowed(self, kind: str) -> bool:
        return self.allowed_kinds is None or kind in self.allowed_kinds

    def auto_approve_for(self, kind: str) -> bool:
        return self.auto_approve_by_kind.get(kind, self.auto_approve)

    def visibility_for(self, kind: str) -> Visibility:
        return Visibility(self.visibility_by_kind.get(kind, self.visibility))

    def uniqueness_for(self, kind: str) -> UniquenessRule | None:
        return self.uniqueness_by_kind.get(kind, self.uniqueness)

    def idempotency_for(self, kind: str) -> IdempotencyRule | None:
        return self.idempotency_by_kind.get(kind, self.idempotency)

    def limits_for(self, kind: str) -> tuple[LimitRule, ...]:
        return tuple(rule for rule in self.limits if rule.kind in (None, kind))

    def constraints_for(self, kind: str) -> tuple[LookupConstraint, ...]:
        return tuple(c for c in self.lookup_constraints if c.source_kind in (None, kind))


def default_constraints(family: RecordFamily) -> tuple[LookupConstraint, ...]:
    """Hierarchy references: ``_parents`` point at the same family."""
    return (LookupConstraint(PARENTS, target=family),)


@dataclass(frozen=True, slots=True)
class GovernanceConfig:
    """Immutable configuration snapshot handed to repositories."""

    families: Mapping[RecordFamily, FamilyRules] = field(default_factory=dict)
    lookup_max_depth: int = DEFAULT_LOOKUP_MAX_DEPTH
    reference_codec: ReferenceCodec = field(default_factory=UriReferenceCodec)

    def __post_init__(self) -> None:
        families = dict(self.families)
        for family in RecordFamily:
            families.setdefault(family, FamilyRules(family))
        object.__setattr__(self, "families", MappingProxyType(families))
        if self.lookup_max_depth < 1:
            raise ConfigError(f"lookup_max_depth must be at least 1, got {self.lookup_max_depth}.")

    def rules(self, family: RecordFamily) -> FamilyRules:
        return self.families[family]


__all__ = [
    "DEFAULT_RESPONSE_LIMIT",
    "DEFAULT_LOOKUP_MAX_DEPTH",
    "BoundScope",
    "RuleScope",
    "LimitRule",
    "UniquenessRule",
    "IdempotencyRule",
    "LookupConstraint",
    "FamilyRules",
    "GovernanceConfig",
    "default_constraints",
]
