"""Tests for filter translation."""

from datetime import date, datetime, timezone

import pytest

from pg_modelkit.errors import FilterError
from pg_modelkit.query.filters import (
    FILTER_OPS,
    Op,
    or_null,
    parse_filter,
    parse_filter_value,
    parse_value,
    to_where_options,
    with_range_filters,
)


class TestParseValue:
    """Tests for typing filter values given as text."""

    def test_integer(self) -> None:
        assert parse_value("18") == 18
        assert isinstance(parse_value("18"), int)

    def test_float(self) -> None:
        assert parse_value("-2.5") == -2.5

    def test_non_canonical_numbers_stay_text(self) -> None:
        assert parse_value("007") == "007"
        assert parse_value("1.50") == "1.50"

    def test_iso_date(self) -> None:
        assert parse_value("2024-03-01") == date(2024, 3, 1)

    def test_iso_datetime_with_zulu(self) -> None:
        assert parse_value("2024-03-01T10:30:00Z") == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)

    def test_invalid_date_stays_text(self) -> None:
        assert parse_value("2024-13-45") == "2024-13-45"

    def test_plain_text(self) -> None:
        assert parse_value("ann") == "ann"


class TestParseFilterValue:
    """Tests for inline operator strings."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (">=18", {Op.GTE: 18}),
            (">18", {Op.GT: 18}),
            ("<=5", {Op.LTE: 5}),
            ("<5", {Op.LT: 5}),
            ("=7", {Op.EQ: 7}),
        ],
    )
    def test_inline_operators(self, value: str, expected: dict) -> None:
        assert parse_filter_value("age", value) == {"age": expected}

    def test_percent_means_case_insensitive_like(self) -> None:
        assert parse_filter_value("name", "%ann%") == {"name": {Op.ILIKE: "%ann%"}}

    def test_percent_wins_over_comparison(self) -> None:
        assert parse_filter_value("name", ">%") == {"name": {Op.ILIKE: ">%"}}

    def test_plain_values_pass_through(self) -> None:
        assert parse_filter_value("name", "ann") == {"name": "ann"}
        assert parse_filter_value("qty", 3) == {"qty": 3}


class TestParseFilter:
    """Tests for operator key translation."""

    def test_operator_keys_become_ops(self) -> None:
        assert parse_filter({"$or": [{"$gt": 1}, {"$lt": 0}]}) == {Op.OR: [{Op.GT: 1}, {Op.LT: 0}]}

    def test_every_operator_has_a_key(self) -> None:
        assert FILTER_OPS["$notBetween"] is Op.NOT_BETWEEN
        assert FILTER_OPS["$iLike"] is Op.ILIKE
        assert len(FILTER_OPS) == len(Op)

    def test_unknown_operator_keys_are_kept_literally(self) -> None:
        assert parse_filter({"$bogus": 1, "city": {"$eq": "Oslo"}}) == {
            "$bogus": 1,
            "city": {Op.EQ: "Oslo"},
        }


class TestToWhereOptions:
    """Tests for building where options from filters."""

    def test_comparison_is_typed_as_number(self) -> None:
        options = to_where_options({"age": ">=18"})
        assert options == {"where": {"age": {Op.GTE: 18}}}
        assert isinstance(options["where"]["age"][Op.GTE], int)

    def test_empty_list_is_skipped(self) -> None:
        assert to_where_options({"tags": []}) == {}
        assert "tags" not in to_where_options({"tags": [], "qty": 1})["where"]

    def test_single_element_list_is_unwrapped(self) -> None:
        assert to_where_options({"qty": [">3"]}) == {"where": {"qty": {Op.GT: 3}}}

    def test_list_becomes_in(self) -> None:
        assert to_where_options({"id": [1, 2]}) == {"where": {"id": {Op.IN: [1, 2]}}}

    def test_range_becomes_between(self) -> None:
        assert to_where_options({"price": {"start": 5, "end": 20}}) == {
            "where": {"price": {Op.BETWEEN: [5, 20]}}
        }

    def test_none_filters_on_null(self) -> None:
        assert to_where_options({"name": None}) == {"where": {"name": None}}
        assert to_where_options({"name": None, "qty": 2}) == {"where": {"name": None, "qty": 2}}

    def test_operator_at_top_level(self) -> None:
        assert to_where_options({"$or": [{"qty": 1}, {"qty": 2}]}) == {
            "where": {Op.OR: [{"qty": 1}, {"qty": 2}]}
        }

    def test_nested_dict_is_parsed(self) -> None:
        assert to_where_options({"qty": {"$between": [1, 3]}}) == {
            "where": {"qty": {Op.BETWEEN: [1, 3]}}
        }

    def test_empty_filter(self) -> None:
        assert to_where_options(None) == {}
        assert to_where_options({}) == {}


class TestRangeFilters:
    """Tests for folding <column>Range filters."""

    def test_range_is_folded(self) -> None:
        filter = {"priceRange": {"start": 5, "end": 20}}
        assert with_range_filters(filter) == {"price": {"start": 5, "end": 20}}
        assert to_where_options(filter) == {"where": {"price": {Op.BETWEEN: [5, 20]}}}

    def test_conflict_raises(self) -> None:
        with pytest.raises(FilterError) as exc_info:
            with_range_filters({"price": 10, "priceRange": {"start": 5, "end": 20}})

        assert '"price" or "priceRange"' in exc_info.value.message

    def test_nested_ranges_are_folded(self) -> None:
        filter = {"lines": {"qtyRange": {"start": 1, "end": 2}}}
        with_range_filters(filter)
        assert filter == {"lines": {"qty": {"start": 1, "end": 2}}}

    def test_where_options_fold_ranges_without_touching_input(self) -> None:
        filter = {"priceRange": {"start": 5, "end": 20}}

        assert to_where_options(filter) == {"where": {"price": {Op.BETWEEN: [5, 20]}}}
        assert filter == {"priceRange": {"start": 5, "end": 20}}

    def test_where_options_report_conflicting_range(self) -> None:
        with pytest.raises(FilterError, match="priceRange"):
            to_where_options({"price": 10, "priceRange": {"start": 5, "end": 20}})

    def test_non_range_values_are_left_alone(self) -> None:
        filter = {"sizeRange": "large"}
        assert with_range_filters(filter) == {"sizeRange": "large"}


class TestOrNull:
    def test_single_value(self) -> None:
        assert or_null(3) == {Op.OR: [None, 3]}

    def test_list(self) -> None:
        assert or_null([1, 2]) == {Op.OR: [None, 1, 2]}
