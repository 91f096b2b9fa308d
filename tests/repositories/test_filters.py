"""Tests for RecordFilter parsing."""

import pytest

from entityspine.core.errors import InvalidFilterError
from entityspine.repositories import RecordFilter
from entityspine.store.query import OrderKey


class TestParseForms:
    def test_none_is_empty(self):
        flt = RecordFilter.parse(None)
        assert flt == RecordFilter()
        assert flt.skip == 0
        assert flt.limit is None

    def test_filter_instance_passes_through(self):
        flt = RecordFilter(limit=3)
        assert RecordFilter.parse(flt) is flt

    def test_mapping(self):
        flt = RecordFilter.parse(
            {"where": {"_kind": "book"}, "order": "_name DESC, year", "skip": 2, "limit": 5, "fields": ["_name"]}
        )
        assert flt.where == {"_kind": "book"}
        assert flt.order == (OrderKey("_name", True), OrderKey("year"))
        assert flt.skip == 2
        assert flt.limit == 5
        assert flt.projection.include
        assert flt.projection.fields == frozenset({"_name"})

    def test_offset_is_skip(self):
        assert RecordFilter.parse({"offset": 4}).skip == 4

    def test_query_string(self):
        flt = RecordFilter.parse(
            "filter[where][_kind]=book&filter[skip]=1&filter[limit]=10"
            "&filter[fields][_name]=true&filter[lookup][0][prop]=author"
        )
        assert flt.where == {"_kind": "book"}
        assert flt.skip == 1
        assert flt.limit == 10
        assert flt.projection.fields == frozenset({"_name"})
        assert [directive.prop for directive in flt.lookup] == ["author"]

    def test_bare_query_string(self):
        flt = RecordFilter.parse("where[_kind]=book&limit=2")
        assert flt.where == {"_kind": "book"}
        assert flt.limit == 2

    def test_blank_string(self):
        assert RecordFilter.parse("  ") == RecordFilter()


class TestParseErrors:
    @pytest.mark.parametrize(
        "value",
        [
            {"skip": 1, "offset": 1},
            {"colour": "red"},
            {"where": "kind=book"},
            {"limit": -1},
            {"limit": "ten"},
            {"skip": True},
            {"order": "_name SIDEWAYS"},
            {"fields": {"_name": True, "year": False}},
            42,
        ],
    )
    def test_rejected(self, value):
        with pytest.raises(InvalidFilterError):
            RecordFilter.parse(value)


class TestNarrowed:
    def test_without_where(self):
        flt = RecordFilter(limit=2).narrowed({"_id": {"inq": ["a"]}})
        assert flt.where == {"_id": {"inq": ["a"]}}
        assert flt.limit == 2

    def test_with_where(self):
        flt = RecordFilter.parse({"where": {"_kind": "book"}}).narrowed({"_entityId": "e1"})
        assert flt.where == {"and": [{"_entityId": "e1"}, {"_kind": "book"}]}

    def test_original_is_untouched(self):
        original = RecordFilter.parse({"where": {"_kind": "book"}})
        original.narrowed({"_entityId": "e1"})
        assert original.where == {"_kind": "book"}
