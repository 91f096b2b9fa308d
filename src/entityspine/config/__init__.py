"""
entityspine.config - governance rules and the settings that build them.

:class:`GovernanceConfig` is the frozen snapshot the core receives;
:class:`EntitySpineSettings` loads it from ``ENTITYSPINE_*`` variables.
"""

from entityspine.config.rules import (
    FamilyRules,
    GovernanceConfig,
    IdempotencyRule,
    LimitRule,
    LookupConstraint,
    RuleScope,
    UniquenessRule,
)
from entityspine.config.settings import (
    EntitySpineSettings,
    FamilySettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "FamilyRules",
    "GovernanceConfig",
    "IdempotencyRule",
    "LimitRule",
    "LookupConstraint",
    "RuleScope",
    "UniquenessRule",
    "EntitySpineSettings",
    "FamilySettings",
    "clear_settings_cache",
    "get_settings",
]
