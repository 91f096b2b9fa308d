"""
Environment-driven settings for entityspine.

Manifesto:
    Operators describe governance (allowed kinds, quotas, uniqueness,
    idempotency) in environment variables or a ``.env`` file. Settings are
    validated once, then frozen into the :class:`GovernanceConfig` snapshot
    that the core receives explicitly. Nothing in the core reads the
    environment.

    - **Pydantic validation:** bad types fail at load time
    - **Scopes checked eagerly:** an unknown set term is a ``ConfigError``
      from :meth:`EntitySpineSettings.to_config`, not at the first create
    - **Per family:** one nested block per record family

Examples:
    ::

        ENTITYSPINE_ENTITIES__ALLOWED_KINDS='["book", "author"]'
        ENTITYSPINE_ENTITIES__AUTO_APPROVE=true
        ENTITYSPINE_ENTITIES__LIMITS='[{"scope": "set[actives]", "limit": 1, "kind": "book"}]'
        ENTITYSPINE_ENTITIES__UNIQUENESS='{"fields": ["_name"], "scope": "set[actives]"}'
        ENTITYSPINE_LOOKUP_MAX_DEPTH=3

    >>> config = get_settings().to_config()
    >>> config.rules(RecordFamily.ENTITY).limits_for("book")

Tags:
    settings, configuration, pydantic, environment, entityspine
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from entityspine.config.rules import (
    DEFAULT_LOOKUP_MAX_DEPTH,
    DEFAULT_RESPONSE_LIMIT,
    FamilyRules,
    GovernanceConfig,
    IdempotencyRule,
    LimitRule,
    LookupConstraint,
    RuleScope,
    UniquenessRule,
)
from entityspine.core.enums import RecordFamily, Visibility
from entityspine.lookup.references import UriReferenceCodec

ScopeValue = str | dict[str, Any]


class LimitSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scope: ScopeValue
    limit: int = Field(ge=0)
    kind: str | None = None

    def to_rule(self) -> LimitRule:
        # an empty scope limits the whole family
        return LimitRule(RuleScope.parse(self.scope) or RuleScope(""), self.limit, self.kind)


class FieldRuleSettings(BaseModel):
    """Uniqueness or idempotency rule: ``fields`` within an optional ``scope``."""

    model_config = ConfigDict(extra="forbid")

    fields: list[str] = Field(min_length=1)
    scope: ScopeValue | None = None

    def to_uniqueness(self) -> UniquenessRule:
        return UniquenessRule(tuple(self.fields), RuleScope.parse(self.scope))

    def to_idempotency(self) -> IdempotencyRule:
        return IdempotencyRule(tuple(self.fields), RuleScope.parse(self.scope))


class LookupConstraintSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    property_path: str
    target: RecordFamily | None = None
    source_kind: str | None = None
    target_kind: str | None = None

    def to_constraint(self) -> LookupConstraint:
        return LookupConstraint(self.property_path, self.target, self.source_kind, self.target_kind)


class FamilySettings(BaseModel):
    """Rules for one record family. Per-kind maps override family-wide values."""

    model_config = ConfigDict(extra="forbid")

    collection: str = ""
    allowed_kinds: list[str] | None = None
    default_kind: str | None = None
    auto_approve: bool = False
    auto_approve_by_kind: dict[str, bool] = Field(default_factory=dict)
    visibility: Visibility = Visibility.PROTECTED
    visibility_by_kind: dict[str, Visibility] = Field(default_factory=dict)
    uniqueness: FieldRuleSettings | None = None
    uniqueness_by_kind: dict[str, FieldRuleSettings] = Field(default_factory=dict)
    idempotency: FieldRuleSettings | None = None
    idempotency_by_kind: dict[str, FieldRuleSettings] = Field(default_factory=dict)
    limits: list[LimitSettings] = Field(default_factory=list)
    lookup_constraints: list[LookupConstraintSettings] = Field(default_factory=list)
    response_limit: int = Field(default=DEFAULT_RESPONSE_LIMIT, gt=0)

    def to_rules(self, family: RecordFamily) -> FamilyRules:
        return FamilyRules(
            family,
            collection=self.collection,
            allowed_kinds=frozenset(self.allowed_kinds) if self.allowed_kinds is not None else None,
            default_kind=self.default_kind,
            auto_approve=self.auto_approve,
            auto_approve_by_kind=self.auto_approve_by_kind,
            visibility=self.visibility,
            visibility_by_kind=self.visibility_by_kind,
            uniqueness=self.uniqueness.to_uniqueness() if self.uniqueness else None,
            uniqueness_by_kind={k: r.to_uniqueness() for k, r in self.uniqueness_by_kind.items()},
            idempotency=self.idempotency.to_idempotency() if self.idempotency else None,
            idempotency_by_kind={k: r.to_idempotency() for k, r in self.idempotency_by_kind.items()},
            limits=tuple(limit.to_rule() for limit in self.limits),
            lookup_constraints=tuple(c.to_constraint() for c in self.lookup_constraints),
            response_limit=self.response_limit,
        )


# Settings attribute holding each family's block
FAMILY_FIELDS: dict[RecordFamily, str] = {
    RecordFamily.ENTITY: "entities",
    RecordFamily.LIST: "lists",
    RecordFamily.RELATION: "relations",
    RecordFamily.ENTITY_REACTION: "entity_reactions",
    RecordFamily.LIST_REACTION: "list_reactions",
}


class EntitySpineSettings(BaseSettings):
    """entityspine configuration.

    All fields can be set through ``ENTITYSPINE_*`` environment variables;
    family blocks use ``__`` for nesting (``ENTITYSPINE_LISTS__AUTO_APPROVE``).
    """

    model_config = SettingsConfigDict(
        env_prefix="ENTITYSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Families ─────────────────────────────────────────────────
    entities: FamilySettings = Field(default_factory=FamilySettings)
    lists: FamilySettings = Field(default_factory=FamilySettings)
    relations: FamilySettings = Field(default_factory=FamilySettings)
    entity_reactions: FamilySettings = Field(default_factory=FamilySettings)
    list_reactions: FamilySettings = Field(default_factory=FamilySettings)

    # ── Lookups ──────────────────────────────────────────────────
    lookup_max_depth: int = Field(default=DEFAULT_LOOKUP_MAX_DEPTH, ge=1)
    reference_scheme: str = Field(default="tapp")
    reference_host: str = Field(default="localhost")

    # ── Storage ──────────────────────────────────────────────────
    store_backend: Literal["memory", "sql"] = Field(default="memory")
    database_url: str = Field(default="sqlite:///entityspine.db")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    def family(self, family: RecordFamily) -> FamilySettings:
        return getattr(self, FAMILY_FIELDS[family])

    def to_config(self) -> GovernanceConfig:
        """Freeze these settings into a :class:`GovernanceConfig`.

        Raises:
            ConfigError: a rule scope does not parse or compile.
        """
        return GovernanceConfig(
            families={family: self.family(family).to_rules(family) for family in RecordFamily},
            lookup_max_depth=self.lookup_max_depth,
            reference_codec=UriReferenceCodec(self.reference_scheme, self.reference_host),
        )


_settings_cache: dict[str, EntitySpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> EntitySpineSettings:
    """Load, validate and cache :class:`EntitySpineSettings`."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = EntitySpineSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "FAMILY_FIELDS",
    "LimitSettings",
    "FieldRuleSettings",
    "LookupConstraintSettings",
    "FamilySettings",
    "EntitySpineSettings",
    "get_settings",
    "clear_settings_cache",
]
