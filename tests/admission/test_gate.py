"""Tests for the admission control gate."""

import pytest

from entityspine.admission.gate import AdmissionGate, idempotency_key
from entityspine.config.rules import FamilyRules, IdempotencyRule, LimitRule, RuleScope, UniquenessRule
from entityspine.core.enums import RecordFamily
from entityspine.core.errors import LimitExceededError, UniquenessViolationError
from entityspine.core.records import set_count_fields


@pytest.fixture
def gate(store):
    return AdmissionGate(store)


@pytest.fixture
def book(at):
    """Record as the lifecycle manager hands it to the gate."""

    def _book(**fields):
        record = {
            "_kind": "book",
            "_visibility": "public",
            "_validFromDateTime": at(hours=-1),
            "_validUntilDateTime": None,
            "_createdDateTime": at(hours=-1),
        }
        record.update(fields)
        set_count_fields(record)
        return record

    return _book


@pytest.fixture
def seed(store):
    async def _seed(record):
        return await store.insert("entities", record)

    return _seed


def entity_rules(**kwargs):
    return FamilyRules(RecordFamily.ENTITY, **kwargs)


class TestLimits:
    @pytest.mark.asyncio
    async def test_n_pass_then_n_plus_one_fails(self, gate, book, seed, now):
        rules = entity_rules(limits=(LimitRule(RuleScope("set[actives]"), 2),))
        for _ in range(2):
            record = book()
            await gate.admit(rules, record, now)
            await seed(record)

        with pytest.raises(LimitExceededError) as exc_info:
            await gate.admit(rules, book(), now)
        error = exc_info.value
        assert error.limit == 2
        assert error.scope == "set[actives]"
        assert error.code == "ENTITY-LIMIT-EXCEEDED"

    @pytest.mark.asyncio
    async def test_out_of_scope_record_is_not_checked(self, gate, book, seed, now, at):
        rules = entity_rules(limits=(LimitRule(RuleScope("set[actives]"), 1),))
        await seed(book())
        pending = book(_validFromDateTime=None)
        expired = book(_validUntilDateTime=at(minutes=-5))
        assert (await gate.admit(rules, pending, now)).proceed
        assert (await gate.admit(rules, expired, now)).proceed

    @pytest.mark.asyncio
    async def test_out_of_scope_records_are_not_counted(self, gate, book, seed, now, at):
        rules = entity_rules(limits=(LimitRule(RuleScope("set[actives]"), 1),))
        await seed(book(_validUntilDateTime=at(minutes=-5)))
        await seed(book(_validFromDateTime=None))
        assert (await gate.admit(rules, book(), now)).proceed

    @pytest.mark.asyncio
    async def test_auto_approved_at_request_time_is_in_scope(self, gate, book, seed, now, at):
        """A record whose window starts at ``now`` counts as active once written."""
        rules = entity_rules(limits=(LimitRule(RuleScope("set[actives]"), 0),))
        with pytest.raises(LimitExceededError):
            await gate.admit(rules, book(_validFromDateTime=at()), now)

    @pytest.mark.asyncio
    async def test_kind_tagged_limit_counts_only_its_kind(self, gate, book, seed, now):
        rules = entity_rules(limits=(LimitRule(RuleScope("set[actives]"), 1, kind="book"),))
        await seed(book(_kind="author"))
        assert (await gate.admit(rules, book(), now)).proceed
        await seed(book())
        with pytest.raises(LimitExceededError):
            await gate.admit(rules, book(), now)
        assert (await gate.admit(rules, book(_kind="author"), now)).proceed

    @pytest.mark.asyncio
    async def test_first_violated_rule_is_reported(self, gate, book, seed, now):
        rules = entity_rules(
            limits=(
                LimitRule(RuleScope("set[publics]"), 5),
                LimitRule(RuleScope("set[actives]"), 1),
                LimitRule(RuleScope("set[roots]"), 1),
            )
        )
        await seed(book())
        with pytest.raises(LimitExceededError) as exc_info:
            await gate.admit(rules, book(), now)
        assert exc_info.value.scope == "set[actives]"

    @pytest.mark.asyncio
    async def test_owners_scope_binds_to_incoming_owners(self, gate, book, seed, now):
        rules = entity_rules(limits=(LimitRule(RuleScope("set[owners]"), 1),))
        await seed(book(_ownerUsers=["u1"]))
        assert (await gate.admit(rules, book(_ownerUsers=["u2"]), now)).proceed
        with pytest.raises(LimitExceededError) as exc_info:
            await gate.admit(rules, book(_ownerUsers=["u1"]), now)
        assert exc_info.value.scope == "set[owners]"

    @pytest.mark.asyncio
    async def test_placeholder_scope(self, gate, book, seed, now):
        rules = entity_rules(limits=(LimitRule(RuleScope("filter[where][shelf]=${shelf}"), 1),))
        await seed(book(shelf="a"))
        assert (await gate.admit(rules, book(shelf="b"), now)).proceed
        with pytest.raises(LimitExceededError):
            await gate.admit(rules, book(shelf="a"), now)

    @pytest.mark.asyncio
    async def test_exclude_id(self, gate, book, seed, now):
        rules = entity_rules(limits=(LimitRule(RuleScope("set[actives]"), 1),))
        stored = await seed(book())
        await gate.check_limits(rules, stored, now, exclude_id=stored["_id"])
        with pytest.raises(LimitExceededError):
            await gate.check_limits(rules, stored, now)


class TestUniqueness:
    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, gate, book, seed, now):
        rules = entity_rules(uniqueness=UniquenessRule(("_name", "year")))
        await seed(book(_name="Dune", year=1965))
        with pytest.raises(UniquenessViolationError) as exc_info:
            await gate.admit(rules, book(_name="Dune", year=1965), now)
        assert exc_info.value.code == "ENTITY-UNIQUENESS-VIOLATION"
        assert "[_name, year]" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_changing_one_field_passes(self, gate, book, seed, now):
        rules = entity_rules(uniqueness=UniquenessRule(("_name", "year")))
        await seed(book(_name="Dune", year=1965))
        assert (await gate.admit(rules, book(_name="Dune", year=1984), now)).proceed

    @pytest.mark.asyncio
    async def test_scoped_rule(self, gate, book, seed, now, at):
        rules = entity_rules(uniqueness=UniquenessRule(("_name",), RuleScope("set[actives]")))
        await seed(book(_name="Dune"))
        # inactive incoming record is outside the scope
        assert (await gate.admit(rules, book(_name="Dune", _validFromDateTime=None), now)).proceed
        with pytest.raises(UniquenessViolationError) as exc_info:
            await gate.admit(rules, book(_name="Dune"), now)
        assert "within scope 'set[actives]'" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_inactive_existing_record_is_ignored(self, gate, book, seed, now, at):
        rules = entity_rules(uniqueness=UniquenessRule(("_name",), RuleScope("set[actives]")))
        await seed(book(_name="Dune", _validUntilDateTime=at(days=-1)))
        assert (await gate.admit(rules, book(_name="Dune"), now)).proceed

    @pytest.mark.asyncio
    async def test_kind_rule_only_compares_same_kind(self, gate, book, seed, now):
        rules = entity_rules(uniqueness_by_kind={"book": UniquenessRule(("_name",))})
        await seed(book(_kind="author", _name="Dune"))
        assert (await gate.admit(rules, book(_name="Dune"), now)).proceed

    @pytest.mark.asyncio
    async def test_exclude_self(self, gate, book, seed, now):
        rules = entity_rules(uniqueness=UniquenessRule(("_name",)))
        stored = await seed(book(_name="Dune"))
        await gate.check_uniqueness(rules, stored, now, exclude_id=stored["_id"])

    @pytest.mark.asyncio
    async def test_nested_field(self, gate, book, seed, now):
        """Dotted rule fields compare the nested value."""
        rules = entity_rules(uniqueness=UniquenessRule(("meta.isbn",)))
        await seed(book(_name="Dune", meta={"isbn": "111"}))
        assert (await gate.admit(rules, book(_name="Emma", meta={"isbn": "222"}), now)).proceed
        with pytest.raises(UniquenessViolationError) as exc_info:
            await gate.admit(rules, book(_name="Dune II", meta={"isbn": "111"}), now)
        assert "[meta.isbn] with values ['111']" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_nested_array_field_is_skipped(self, gate, book, seed, now):
        rules = entity_rules(uniqueness=UniquenessRule(("meta.tags",)))
        await seed(book(meta={"tags": ["scifi"]}))
        assert (await gate.admit(rules, book(meta={"tags": ["scifi"]}), now)).proceed


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_match_returns_existing_before_other_checks(self, gate, book, seed, now):
        rules = entity_rules(
            idempotency=IdempotencyRule(("_name", "tags")),
            uniqueness=UniquenessRule(("_name",)),
            limits=(LimitRule(RuleScope("set[actives]"), 1),),
        )
        first = book(_name="Dune", tags=["a", "b"])
        first["_idempotencyKey"] = idempotency_key(rules, first)
        stored = await seed(first)

        decision = await gate.admit(rules, book(_name="Dune", tags=["b", "a"]), now)
        assert not decision.proceed
        assert decision.existing["_id"] == stored["_id"]

    @pytest.mark.asyncio
    async def test_no_match_proceeds_with_key(self, gate, book, now):
        rules = entity_rules(idempotency=IdempotencyRule(("_name",)))
        decision = await gate.admit(rules, book(_name="Dune"), now)
        assert decision.proceed
        assert decision.idempotency_key == idempotency_key(rules, book(_name="Dune"))

    @pytest.mark.asyncio
    async def test_scoped_idempotency_ignores_expired_match(self, gate, book, seed, now, at):
        rules = entity_rules(idempotency=IdempotencyRule(("_name",), RuleScope("set[actives]")))
        old = book(_name="Dune", _validUntilDateTime=at(days=-1))
        old["_idempotencyKey"] = idempotency_key(rules, old)
        await seed(old)
        assert (await gate.admit(rules, book(_name="Dune"), now)).proceed

    @pytest.mark.asyncio
    async def test_nested_field_tells_records_apart(self, gate, book, seed, now):
        rules = entity_rules(idempotency=IdempotencyRule(("meta.isbn",)))
        first = book(_name="Dune", meta={"isbn": "111"})
        first["_idempotencyKey"] = idempotency_key(rules, first)
        stored = await seed(first)

        assert (await gate.admit(rules, book(_name="Emma", meta={"isbn": "222"}), now)).proceed
        repeat = await gate.admit(rules, book(_name="Dune", meta={"isbn": "111"}), now)
        assert repeat.existing["_id"] == stored["_id"]

    def test_no_rule_no_key(self, book):
        assert idempotency_key(entity_rules(), book()) is None
