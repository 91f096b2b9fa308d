"""
Structured error types for entityspine.

Every failure the record core can raise is an ``EntitySpineError`` that
carries a stable machine-readable ``code`` (``ENTITY-NOT-FOUND``,
``IMMUTABLE-LIST-KIND``, ``RELATION-LIMIT-EXCEEDED`` ...), a category, an
HTTP-like status hint, and structured context. Request layers branch on
``code``; they never parse messages.

Manifesto:
    - **Stable codes:** One code per condition, prefixed by record family
    - **Typed hierarchy:** Catch ``ValidationError`` to catch every bad input
    - **Rich context:** family, kind, record id, scope and limit travel with the error
    - **Terminal:** Nothing here is retried internally

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       EntitySpineError                          │
        │          (code, category, status_code, context, cause)          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ValidationError          NotFoundError      ImmutabilityError   │
        │  (VALIDATION, 422)        (NOT_FOUND, 404)   (VALIDATION, 422)   │
        │       │                                                          │
        │  InvalidKindError         UniquenessViolationError (409)         │
        │  InvalidSetError          LimitExceededError       (429)         │
        │  InvalidFilterError                                              │
        │  InvalidLookupError       InvalidLookupReferenceError (422)      │
        │                           InvalidLookupConstraintError (422)     │
        │                                                                  │
        │  ConfigError (CONFIG)     StorageError (STORAGE)                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = NotFoundError("Entity with id 'x' could not be found.", code="ENTITY-NOT-FOUND")
    >>> error.status_code
    404
    >>> error.with_context(family="entity", record_id="x").to_dict()["context"]
    {'family': 'entity', 'record_id': 'x'}

Guardrails:
    ❌ DON'T: Raise plain ValueError from core logic
    ✅ DO: Raise the narrowest subclass with a family-prefixed code

    ❌ DON'T: Branch on ``str(error)``
    ✅ DO: Branch on ``error.code``

Tags:
    error-handling, exception-hierarchy, error-codes, entityspine
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and reporting."""

    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    LIMIT = "LIMIT"
    CONFIG = "CONFIG"
    STORAGE = "STORAGE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured context attached to an error.

    Attributes:
        family: Record family the operation ran against (``entity``, ``list`` ...)
        kind: Record kind, when known
        record_id: Identifier of the record involved
        field: Field that triggered the failure
        scope: Human-readable scope description (limits, uniqueness)
        limit: Numeric limit that was hit
        metadata: Additional key-value pairs
    """

    family: str | None = None
    kind: str | None = None
    record_id: str | None = None
    field: str | None = None
    scope: str | None = None
    limit: int | None = None

    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["family", "kind", "record_id", "field", "scope", "limit"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EntitySpineError(Exception):
    """
    Base exception for all entityspine errors.

    Subclasses set ``default_code``, ``default_category`` and
    ``default_status`` so that raising sites only pass what varies,
    usually the family-prefixed ``code``.
    """

    default_code: str = "INTERNAL-ERROR"
    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        category: ErrorCategory | None = None,
        status_code: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.category = category or self.default_category
        self.status_code = status_code or self.default_status
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EntitySpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("gone", code="ENTITY-NOT-FOUND").with_context(
                family="entity", record_id=record_id
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "status_code": self.status_code,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(EntitySpineError):
    """
    Invalid input: disallowed kind, bad visibility, malformed filter or lookup.

    Surfaced immediately, with no partial effects.
    """

    default_code = "VALIDATION-ERROR"
    default_category = ErrorCategory.VALIDATION
    default_status = 422

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        if field is not None:
            self.context.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class InvalidKindError(ValidationError):
    """Kind is malformed or not in the family's allow-list."""

    default_code = "INVALID-KIND"


class InvalidSetError(ValidationError):
    """Scope specification names an unknown set term or is malformed."""

    default_code = "INVALID-SET"


class InvalidFilterError(ValidationError):
    """Where clause uses an unknown operator or a malformed condition."""

    default_code = "INVALID-FILTER"


class InvalidLookupError(ValidationError):
    """Lookup directive has a bad property path, scope or nesting depth."""

    default_code = "INVALID-LOOKUP"


class ImmutabilityError(ValidationError):
    """Attempt to change ``_kind`` or a linkage field after creation."""

    default_code = "IMMUTABLE-FIELD"


class InvalidLookupReferenceError(ValidationError):
    """A constrained field holds a value that is not a valid reference."""

    default_code = "INVALID-LOOKUP-REFERENCE"


class InvalidLookupConstraintError(ValidationError):
    """A reference points at a record of a kind the constraint rejects."""

    default_code = "INVALID-LOOKUP-KIND"


# =============================================================================
# LOOKUP / ADMISSION ERRORS
# =============================================================================


class NotFoundError(EntitySpineError):
    """Operation on a missing id, or a create linking to a missing record."""

    default_code = "NOT-FOUND"
    default_category = ErrorCategory.NOT_FOUND
    default_status = 404


class UniquenessViolationError(EntitySpineError):
    """An existing record already matches the uniqueness rule."""

    default_code = "UNIQUENESS-VIOLATION"
    default_category = ErrorCategory.CONFLICT
    default_status = 409


class LimitExceededError(EntitySpineError):
    """A configured record limit is already reached for the rule's scope."""

    default_code = "LIMIT-EXCEEDED"
    default_category = ErrorCategory.LIMIT
    default_status = 429

    def __init__(self, message: str, *, limit: int, scope: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.limit = limit
        self.scope = scope
        self.context.limit = limit
        self.context.scope = scope


# =============================================================================
# CONFIGURATION / STORAGE ERRORS
# =============================================================================


class ConfigError(EntitySpineError):
    """Settings could not be turned into a valid rule table."""

    default_code = "INVALID-CONFIG"
    default_category = ErrorCategory.CONFIG
    default_status = 500


class StorageError(EntitySpineError):
    """The document store failed to execute an operation."""

    default_code = "STORAGE-ERROR"
    default_category = ErrorCategory.STORAGE
    default_status = 500


__all__ = [
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
]
