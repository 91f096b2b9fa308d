"""Record lifecycle: create, update, replace, delete under governance rules."""

import uuid
from datetime import timedelta

import pytest

from entityspine.config.rules import IdempotencyRule, LimitRule, RuleScope, UniquenessRule
from entityspine.core.enums import Visibility
from entityspine.core.errors import (
    ImmutabilityError,
    InvalidKindError,
    InvalidLookupReferenceError,
    LimitExceededError,
    NotFoundError,
    UniquenessViolationError,
    ValidationError,
)
from entityspine.repositories import EntityRepository


@pytest.fixture
def governed(store, make_config):
    """EntityRepository built from per-test entity rules."""

    def _governed(**entity_rules):
        return EntityRepository(store, make_config(entity=entity_rules))

    return _governed


class TestCreate:
    @pytest.mark.asyncio
    async def test_managed_fields(self, entities, now):
        record = await entities.create({"_kind": "book", "_name": "Dune: Messiah", "pages": 256}, now=now)

        assert uuid.UUID(record["_id"])
        assert record["_version"] == 1
        assert record["_visibility"] == "protected"
        assert record["_slug"] == "dune-messiah"
        assert record["_createdDateTime"] == record["_lastUpdatedDateTime"] == now.isoformat()
        assert record["_ownerUsers"] == [] and record["_ownerUsersCount"] == 0
        assert record["_parentsCount"] == 0
        assert record["pages"] == 256
        assert "_idempotencyKey" not in record

    @pytest.mark.asyncio
    async def test_caller_cannot_set_managed_fields(self, entities, now):
        record = await entities.create(
            {"_id": "mine", "_version": 7, "_ownerUsers": ["u1"], "_ownerUsersCount": 9, "_createdDateTime": "x"},
            now=now,
        )
        assert record["_id"] != "mine"
        assert record["_version"] == 1
        assert record["_ownerUsersCount"] == 1
        assert record["_createdDateTime"] == now.isoformat()

    @pytest.mark.asyncio
    async def test_default_kind(self, entities, now):
        assert (await entities.create({}, now=now))["_kind"] == "entity"

    @pytest.mark.asyncio
    async def test_slug_without_name_is_dropped(self, entities, now):
        assert "_slug" not in await entities.create({"_kind": "book", "_slug": "custom"}, now=now)

    @pytest.mark.asyncio
    async def test_kind_must_be_a_slug(self, entities, now):
        with pytest.raises(InvalidKindError) as exc_info:
            await entities.create({"_kind": "Sci Fi"}, now=now)
        assert exc_info.value.code == "INVALID-ENTITY-KIND"
        assert "Use 'sci-fi' instead." in exc_info.value.message

    @pytest.mark.asyncio
    async def test_kind_must_be_allowed(self, governed, now):
        repo = governed(allowed_kinds={"book", "author"})
        with pytest.raises(InvalidKindError) as exc_info:
            await repo.create({"_kind": "film"}, now=now)
        assert "Use one of: author, book." in exc_info.value.message

    @pytest.mark.asyncio
    async def test_visibility(self, governed, entities, now):
        with pytest.raises(ValidationError) as exc_info:
            await entities.create({"_visibility": "secret"}, now=now)
        assert exc_info.value.code == "INVALID-VISIBILITY"

        repo = governed(visibility_by_kind={"book": Visibility.PUBLIC})
        assert (await repo.create({"_kind": "book"}, now=now))["_visibility"] == "public"
        assert (await repo.create({"_kind": "film"}, now=now))["_visibility"] == "protected"

    @pytest.mark.asyncio
    async def test_auto_approve(self, governed, now, at):
        repo = governed(auto_approve_by_kind={"book": True})
        assert (await repo.create({"_kind": "book"}, now=now))["_validFromDateTime"] == now.isoformat()
        assert (await repo.create({"_kind": "film"}, now=now)).get("_validFromDateTime") is None
        given = await repo.create({"_kind": "book", "_validFromDateTime": at(days=1)}, now=now)
        assert given["_validFromDateTime"] == at(days=1)

    @pytest.mark.asyncio
    async def test_window_normalized(self, entities, now):
        record = await entities.create({"_validUntilDateTime": "2030-01-01T00:00:00Z"}, now=now)
        assert record["_validUntilDateTime"] == "2030-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_invalid_parent_reference(self, entities, now):
        with pytest.raises(InvalidLookupReferenceError) as exc_info:
            await entities.create({"_parents": ["not-a-reference"]}, now=now)
        assert exc_info.value.code == "ENTITY-INVALID-LOOKUP-REFERENCE"


class TestIdempotentCreate:
    @pytest.mark.asyncio
    async def test_same_payload_returns_same_record(self, governed, now):
        repo = governed(idempotency=IdempotencyRule(("_name", "tags")))
        first = await repo.create({"_kind": "book", "_name": "Dune", "tags": ["a", "b"]}, now=now)
        second = await repo.create({"_kind": "book", "_name": "Dune", "tags": ["b", "a", "a"]}, now=now)

        assert second["_id"] == first["_id"]
        assert second["_version"] == 1
        assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_different_payload_creates(self, governed, now):
        repo = governed(idempotency=IdempotencyRule(("_name",)))
        first = await repo.create({"_name": "Dune"}, now=now)
        second = await repo.create({"_name": "Emma"}, now=now)
        assert first["_id"] != second["_id"]

    @pytest.mark.asyncio
    async def test_idempotent_retry_bypasses_limits(self, governed, now):
        repo = governed(
            idempotency=IdempotencyRule(("_name",)),
            limits=(LimitRule(RuleScope(""), 1),),
        )
        first = await repo.create({"_name": "Dune"}, now=now)
        assert (await repo.create({"_name": "Dune"}, now=now))["_id"] == first["_id"]
        with pytest.raises(LimitExceededError):
            await repo.create({"_name": "Emma"}, now=now)


class TestUniqueness:
    @pytest.mark.asyncio
    async def test_duplicate_rejected_until_a_field_or_scope_differs(self, governed, now, at):
        repo = governed(uniqueness=UniquenessRule(("_name", "year"), RuleScope("set[actives]")))
        active = {"_kind": "book", "_name": "Dune", "year": 1965, "_validFromDateTime": at(hours=-1)}
        await repo.create(active, now=now)

        with pytest.raises(UniquenessViolationError) as exc_info:
            await repo.create(active, now=now)
        assert exc_info.value.code == "ENTITY-UNIQUENESS-VIOLATION"

        await repo.create({**active, "year": 1984}, now=now)
        pending = {key: value for key, value in active.items() if key != "_validFromDateTime"}
        await repo.create(pending, now=now)
        assert await repo.count() == 3

    @pytest.mark.asyncio
    async def test_update_rechecks_excluding_self(self, governed, now):
        repo = governed(uniqueness=UniquenessRule(("_name",)))
        dune = await repo.create({"_name": "Dune"}, now=now)
        emma = await repo.create({"_name": "Emma"}, now=now)

        await repo.update_by_id(dune["_id"], {"_name": "Dune", "pages": 1}, now=now)
        with pytest.raises(UniquenessViolationError):
            await repo.update_by_id(emma["_id"], {"_name": "Dune"}, now=now)
        assert (await repo.find_by_id(emma["_id"]))["_name"] == "Emma"


class TestLimits:
    @pytest.mark.asyncio
    async def test_exactly_n_creates_in_scope(self, governed, now):
        repo = governed(limits=(LimitRule(RuleScope("set[publics]"), 2),))
        for _ in range(2):
            await repo.create({"_visibility": "public"}, now=now)

        with pytest.raises(LimitExceededError) as exc_info:
            await repo.create({"_visibility": "public"}, now=now)
        assert exc_info.value.limit == 2
        assert exc_info.value.scope == "set[publics]"
        assert exc_info.value.code == "ENTITY-LIMIT-EXCEEDED"

        # outside the scope: neither checked nor counted
        await repo.create({"_visibility": "private"}, now=now)
        assert await repo.count(scope="set[publics]") == 2

    @pytest.mark.asyncio
    async def test_update_into_full_scope(self, governed, now):
        repo = governed(limits=(LimitRule(RuleScope("set[publics]"), 1),))
        await repo.create({"_visibility": "public"}, now=now)
        hidden = await repo.create({"_visibility": "private"}, now=now)
        with pytest.raises(LimitExceededError):
            await repo.update_by_id(hidden["_id"], {"_visibility": "public"}, now=now)

    @pytest.mark.asyncio
    async def test_active_books(self, governed, now, at):
        """One active book allowed; inactive books are neither checked nor counted."""
        repo = governed(limits=(LimitRule(RuleScope("set[actives]"), 1, kind="book"),))
        await repo.create(
            {
                "_kind": "book",
                "_name": "A",
                "_visibility": "public",
                "_validFromDateTime": at(minutes=-1),
                "_validUntilDateTime": at(days=7),
            },
            now=now,
        )
        await repo.create(
            {
                "_kind": "book",
                "_name": "B",
                "_validFromDateTime": at(days=-30),
                "_validUntilDateTime": at(days=-1),
            },
            now=now,
        )

        with pytest.raises(LimitExceededError) as exc_info:
            await repo.create({"_kind": "book", "_name": "C", "_validFromDateTime": at(minutes=-1)}, now=now)
        assert exc_info.value.limit == 1

        inactive = await repo.create(
            {"_kind": "book", "_name": "D", "_validFromDateTime": at(days=-30), "_validUntilDateTime": at(days=-2)},
            now=now,
        )
        assert inactive["_version"] == 1
        await repo.create({"_kind": "author", "_validFromDateTime": at(minutes=-1)}, now=now)


class TestUpdate:
    @pytest.mark.asyncio
    async def test_merge_bumps_version(self, entities, now):
        created = await entities.create({"_kind": "book", "_name": "Dune", "pages": 412}, now=now)
        later = now + timedelta(hours=1)
        updated = await entities.update_by_id(created["_id"], {"_name": "Dune Messiah", "_version": 99}, now=later)

        assert updated["_version"] == 2
        assert updated["pages"] == 412
        assert updated["_slug"] == "dune-messiah"
        assert updated["_createdDateTime"] == now.isoformat()
        assert updated["_lastUpdatedDateTime"] == later.isoformat()
        assert await entities.find_by_id(created["_id"]) == updated

    @pytest.mark.asyncio
    async def test_invalid_visibility(self, entities, now):
        created = await entities.create({}, now=now)
        with pytest.raises(ValidationError):
            await entities.update_by_id(created["_id"], {"_visibility": "everyone"}, now=now)

    @pytest.mark.asyncio
    async def test_same_kind_is_allowed(self, entities, now):
        created = await entities.create({"_kind": "book"}, now=now)
        updated = await entities.update_by_id(created["_id"], {"_kind": "book", "x": 1}, now=now)
        assert updated["x"] == 1

    @pytest.mark.asyncio
    async def test_kind_is_immutable(self, entities, now):
        created = await entities.create({"_kind": "book"}, now=now)
        with pytest.raises(ImmutabilityError) as exc_info:
            await entities.update_by_id(created["_id"], {"_kind": "author", "_name": "Changed"}, now=now)
        assert exc_info.value.code == "IMMUTABLE-ENTITY-KIND"
        assert "Current kind is 'book'" in exc_info.value.message

        stored = await entities.find_by_id(created["_id"])
        assert stored == created

    @pytest.mark.asyncio
    async def test_kind_is_immutable_on_replace(self, entities, now):
        created = await entities.create({"_kind": "book"}, now=now)
        with pytest.raises(ImmutabilityError):
            await entities.replace_by_id(created["_id"], {"_kind": "author"}, now=now)
        assert await entities.find_by_id(created["_id"]) == created

    @pytest.mark.asyncio
    async def test_missing(self, entities, now):
        with pytest.raises(NotFoundError) as exc_info:
            await entities.update_by_id(str(uuid.uuid4()), {"x": 1}, now=now)
        assert exc_info.value.code == "ENTITY-NOT-FOUND"


class TestReplace:
    @pytest.mark.asyncio
    async def test_replace_keeps_identity_and_creation(self, entities, now):
        created = await entities.create(
            {"_kind": "book", "_name": "Dune", "pages": 412, "_visibility": "public", "_createdBy": "u1"}, now=now
        )
        later = now + timedelta(days=1)
        replaced = await entities.replace_by_id(created["_id"], {"_name": "Emma"}, now=later)

        assert replaced["_id"] == created["_id"]
        assert replaced["_kind"] == "book"
        assert replaced["_createdDateTime"] == now.isoformat()
        assert replaced["_createdBy"] == "u1"
        assert replaced["_version"] == 2
        assert replaced["_visibility"] == "protected"
        assert "pages" not in replaced
        assert replaced["_slug"] == "emma"

    @pytest.mark.asyncio
    async def test_missing(self, entities, now):
        with pytest.raises(NotFoundError):
            await entities.replace_by_id(str(uuid.uuid4()), {}, now=now)


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, entities, now):
        created = await entities.create({}, now=now)
        await entities.delete_by_id(created["_id"])
        with pytest.raises(NotFoundError):
            await entities.find_by_id(created["_id"])
        with pytest.raises(NotFoundError) as exc_info:
            await entities.delete_by_id(created["_id"])
        assert exc_info.value.context.record_id == created["_id"]


class TestReferencedRecords:
    @pytest.mark.asyncio
    async def test_lookup_then_delete_referenced(self, entities, now):
        author = await entities.create({"_kind": "author", "_name": "Asimov"}, now=now)
        book = await entities.create(
            {"_kind": "book", "_name": "Foundation", "refs": [entities.reference(author["_id"])]}, now=now
        )

        found = await entities.find_by_id(book["_id"], {"lookup": [{"prop": "refs"}]}, now=now)
        assert found["refs"] == [author]

        await entities.delete_by_id(author["_id"])
        found = await entities.find_by_id(book["_id"], {"lookup": [{"prop": "refs"}]}, now=now)
        assert found["refs"] == []
