"""
entityspine.core - primitives shared by every other package.

Modules:
    - errors:     EntitySpineError hierarchy with stable codes
    - logging:    structlog configuration and context helpers
    - timestamps: UTC clock, ids, ISO-8601 parsing, calendar shifts
    - enums:      RecordFamily, Visibility
    - records:    managed field names and the helpers that maintain them

Nothing here imports from other entityspine packages.
"""

from entityspine.core.enums import RecordFamily, Visibility
from entityspine.core.errors import (
    ConfigError,
    EntitySpineError,
    ErrorCategory,
    ErrorContext,
    ImmutabilityError,
    InvalidFilterError,
    InvalidKindError,
    InvalidLookupConstraintError,
    InvalidLookupError,
    InvalidLookupReferenceError,
    InvalidSetError,
    LimitExceededError,
    NotFoundError,
    StorageError,
    UniquenessViolationError,
    ValidationError,
)
from entityspine.core.logging import configure_logging, get_logger
from entityspine.core.timestamps import generate_id, utc_now

__all__ = [
    "RecordFamily",
    "Visibility",
    "ErrorCategory",
    "ErrorContext",
    "EntitySpineError",
    "ValidationError",
    "InvalidKindError",
    "InvalidSetError",
    "InvalidFilterError",
    "InvalidLookupError",
    "ImmutabilityError",
    "InvalidLookupReferenceError",
    "InvalidLookupConstraintError",
    "NotFoundError",
    "UniquenessViolationError",
    "LimitExceededError",
    "ConfigError",
    "StorageError",
    "configure_logging",
    "get_logger",
    "generate_id",
    "utc_now",
]
