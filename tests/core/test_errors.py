"""Tests for entityspine.core.errors module."""

import pytest

from entityspine.core.errors import (
    ConfigError,
    EntitySpineError,
    ErrorCategory,
    ErrorContext,
    ImmutabilityError,
    InvalidKindError,
    InvalidLookupError,
    LimitExceededError,
    NotFoundError,
    StorageError,
    UniquenessViolationError,
    ValidationError,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context(self):
        """An empty context serializes to an empty dict."""
        ctx = ErrorContext()
        assert ctx.family is None
        assert ctx.to_dict() == {}

    def test_to_dict_skips_none_and_merges_metadata(self):
        ctx = ErrorContext(family="entity", record_id="r1", metadata={"fields": ["_name"]})
        assert ctx.to_dict() == {"family": "entity", "record_id": "r1", "fields": ["_name"]}

    def test_field_and_metadata_defaults(self):
        """A ``field`` attribute coexists with a per-instance metadata dict."""
        first, second = ErrorContext(field="_name"), ErrorContext()
        first.metadata["scope"] = "set[actives]"
        assert first.field == "_name"
        assert second.field is None
        assert second.metadata == {}


class TestEntitySpineError:
    """Test the base error."""

    def test_defaults(self):
        error = EntitySpineError("boom")
        assert error.code == "INTERNAL-ERROR"
        assert error.category == ErrorCategory.INTERNAL
        assert error.status_code == 500
        assert str(error) == "boom"

    def test_explicit_code_overrides_default(self):
        error = NotFoundError("gone", code="ENTITY-NOT-FOUND")
        assert error.code == "ENTITY-NOT-FOUND"
        assert error.status_code == 404
        assert error.category == ErrorCategory.NOT_FOUND

    def test_with_context_is_fluent(self):
        """Known keys land on the context, unknown keys in metadata."""
        error = NotFoundError("gone").with_context(family="list", record_id="x", attempt=2)
        assert isinstance(error, NotFoundError)
        assert error.context.family == "list"
        assert error.context.record_id == "x"
        assert error.context.metadata == {"attempt": 2}

    def test_cause_is_chained(self):
        cause = RuntimeError("driver")
        error = StorageError("store failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "driver"

    def test_to_dict(self):
        error = UniquenessViolationError("dup", code="ENTITY-UNIQUENESS-VIOLATION").with_context(family="entity")
        data = error.to_dict()
        assert data["error_type"] == "UniquenessViolationError"
        assert data["code"] == "ENTITY-UNIQUENESS-VIOLATION"
        assert data["category"] == "CONFLICT"
        assert data["status_code"] == 409
        assert data["context"] == {"family": "entity"}

    def test_repr_includes_code(self):
        assert "code=INVALID-CONFIG" in repr(ConfigError("bad"))


class TestValidationHierarchy:
    """Validation subclasses share category and status."""

    @pytest.mark.parametrize(
        "error_cls",
        [InvalidKindError, InvalidLookupError, ImmutabilityError],
    )
    def test_subclasses_are_validation_errors(self, error_cls):
        error = error_cls("bad", field="_kind", value="Book")
        assert isinstance(error, ValidationError)
        assert error.category == ErrorCategory.VALIDATION
        assert error.status_code == 422
        assert error.context.field == "_kind"

    def test_field_and_value_in_dict(self):
        data = ValidationError("bad", field="_visibility", value="secret").to_dict()
        assert data["field"] == "_visibility"
        assert data["value"] == "'secret'"


class TestLimitExceededError:
    def test_carries_limit_and_scope(self):
        error = LimitExceededError("full", limit=3, scope="set[actives]", code="ENTITY-LIMIT-EXCEEDED")
        assert error.limit == 3
        assert error.scope == "set[actives]"
        assert error.context.limit == 3
        assert error.status_code == 429
        assert error.to_dict()["context"] == {"scope": "set[actives]", "limit": 3}
