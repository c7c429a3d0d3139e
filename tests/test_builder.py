"""Tests for the query auto-builder."""

import pytest

from pg_modelkit.errors import MergeError
from pg_modelkit.models import ModelRegistry
from pg_modelkit.query.builder import (
    auto_count_query,
    auto_query,
    filtered,
    foreign_keys,
    foreign_keys_map,
    get_include,
    merge_query,
    need_nesting,
    override_join,
    pure_data,
    pure_fields,
    skip,
    to_limit_options,
    to_order_options,
)
from pg_modelkit.query.filters import Op


class TestMergeQuery:
    """Tests for merging option dicts."""

    def test_lists_are_unioned_in_order(self) -> None:
        assert merge_query({"tags": ["a", "b"]}, {"tags": ["b", "c"]}) == {"tags": ["a", "b", "c"]}

    def test_missing_props_are_copied(self) -> None:
        override = {"order": [["id", "ASC"]]}
        merged = merge_query({}, override)
        assert merged == override
        assert merged["order"] is not override["order"]

    def test_dicts_are_updated_and_scalars_replaced(self) -> None:
        merged = merge_query({"where": {"a": 1}, "limit": 5}, {"where": {"b": 2}, "limit": 10})
        assert merged == {"where": {"a": 1, "b": 2}, "limit": 10}

    def test_none_values_and_overrides_are_skipped(self) -> None:
        assert merge_query({"limit": 5}, None, {"limit": None}) == {"limit": 5}

    def test_shape_mismatch_raises(self) -> None:
        with pytest.raises(MergeError, match="Given tags option is invalid!"):
            merge_query({"tags": ["a"]}, {"tags": "b"})

        with pytest.raises(TypeError):
            merge_query({"where": {"a": 1}}, {"where": [1]})


class TestAutoQuery:
    """Tests for building options from field-request trees."""

    def test_primary_key_always_projected(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Customer"), {"name": True})
        assert options == {"attributes": ["name", "id"]}

    def test_attribute_list(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), ["total", "unknown"])
        assert options == {"attributes": ["total", "id"]}

    def test_no_matching_fields_fall_back_to_primary_key(self, registry: ModelRegistry) -> None:
        assert auto_query(registry.get("Order"), {"nothing": True}) == {"attributes": ["id"]}

    def test_filter_values_become_where(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("OrderLine"), {"qty": ">2", "id": True})
        assert options["attributes"] == ["id", "qty"]
        assert options["where"] == {"qty": {Op.GT: 2}}

    def test_empty_dict_is_not_a_filter(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("OrderLine"), {"qty": {}})
        assert "where" not in options

    def test_none_value_filters_on_null(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), {"total": None})
        assert options == {"attributes": ["total", "id"], "where": {"total": None}}

    def test_unrequested_keys_are_not_filtered(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), {"customer": {"name": True}})
        assert options["attributes"] == ["id", "customer_id"]
        assert "where" not in options

    def test_range_field_becomes_between(self, registry: ModelRegistry) -> None:
        fields = {"totalRange": {"start": 5, "end": 20}}

        options = auto_query(registry.get("Order"), fields)

        assert options == {"attributes": ["total", "id"], "where": {"total": {Op.BETWEEN: [5, 20]}}}
        assert fields == {"totalRange": {"start": 5, "end": 20}}

    def test_nested_association(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        line = registry.get("OrderLine")
        options = auto_query(order, {"total": True, "lines": {"qty": True}})

        assert options["attributes"] == ["total", "id"]
        assert options["include"] == [
            {"model": line, "as": "lines", "attributes": ["qty", "id"]},
        ]

    def test_belongs_to_adds_foreign_key(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), {"total": True, "customer": {"name": True}})
        assert options["attributes"] == ["total", "customer_id", "id"]
        assert options["include"][0]["as"] == "customer"

    def test_association_true_selects_all_columns(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), {"lines": True})
        assert options["include"][0] == {"model": registry.get("OrderLine"), "as": "lines"}

    def test_false_excludes_association(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), {"total": True, "lines": False})
        assert "include" not in options

    def test_nested_filter_lands_on_include(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), {"lines": {"qty": [1, 2]}})
        assert options["include"][0]["where"] == {"qty": {Op.IN: [1, 2]}}
        assert "where" not in options

    def test_merge_order_keeps_field_unfiltered(self, registry: ModelRegistry) -> None:
        fields = {"id": True}
        options = auto_query(registry.get("Order"), fields, {"order": [["total", "DESC"]]})

        assert options["attributes"] == ["id", "total"]
        assert options["order"] == [["total", "DESC"]]
        assert "where" not in options
        assert fields == {"id": True}

    def test_merge_pagination(self, registry: ModelRegistry) -> None:
        options = auto_query(registry.get("Order"), None, to_limit_options({"limit": 10, "offset": 20}))
        assert options == {"offset": 20, "limit": 10}


class TestAutoCountQuery:
    def test_count_options(self, registry: ModelRegistry) -> None:
        options = auto_count_query(registry.get("Order"), {"total": ">10"})
        assert "attributes" not in options
        assert options["distinct"] is True
        assert options["col"] == "id"
        assert options["where"] == {"total": {Op.GT: 10}}


class TestOrderAndLimit:
    def test_order_options(self) -> None:
        assert to_order_options({"total": "desc", "id": "whatever"}) == {
            "order": [["total", "DESC"], ["id", "ASC"]]
        }
        assert to_order_options(None) == {}

    def test_limit_options(self) -> None:
        assert to_limit_options({"limit": 10}) == {"offset": 0, "limit": 10}
        assert to_limit_options({"offset": 5}) == {}

    def test_negative_limit_pages_from_the_end(self) -> None:
        assert to_limit_options({"limit": -10, "count": 25}) == {"offset": 15, "limit": 10}
        assert to_limit_options({"limit": -10, "count": 4}) == {"offset": 0, "limit": 10}


class TestHelpers:
    """Tests for small field and option helpers."""

    def test_filtered_keeps_attribute_order(self) -> None:
        assert filtered(["id", "a", "b"], ["b", "id"]) == ["id", "b"]

    def test_foreign_keys_only_for_belongs_to(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        assert foreign_keys(order, ["customer", "lines", "tags"]) == ["customer_id"]

    def test_foreign_keys_map(self, registry: ModelRegistry) -> None:
        assert foreign_keys_map(registry.get("Order"), registry.get("OrderLine")) == {"order_id": "id"}
        assert foreign_keys_map(registry.get("Tag"), registry.get("OrderLine")) is None

    def test_pure_data(self, registry: ModelRegistry) -> None:
        line = registry.get("OrderLine")
        assert pure_data(line, {"qty": 1, "order": {}, "x": 2}) == {"qty": 1}
        assert pure_data(line, [{"qty": 1, "x": 2}]) == [{"qty": 1}]

    def test_pure_fields(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        assert pure_fields(order, None) is True
        assert pure_fields(order, {"total": True, "lines": {}}) == ["total", "id"]

    def test_need_nesting(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        assert need_nesting(order, {"lines": True})
        assert not need_nesting(order, {"total": True})
        assert not need_nesting(registry.get("Tag"), {"name": True})

    def test_skip(self) -> None:
        assert skip({"a": 1, "b": 2, "c": 3}, "a", "c") == {"b": 2}
        assert skip(None, "a") is None


class TestIncludes:
    """Tests for locating and overriding includes."""

    def test_get_include_by_path(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        options = auto_query(registry.get("OrderLine"), {"order": {"lines": {"qty": True}}})

        found = get_include(options, [order, "OrderLine"])
        assert found is not None
        assert found["as"] == "lines"
        assert get_include(options, ["Tag"]) is None
        assert get_include(options, []) is None

    def test_override_join_updates_matching_include(self, registry: ModelRegistry) -> None:
        line = registry.get("OrderLine")
        options = auto_query(registry.get("Order"), {"lines": {"qty": True}})

        override_join(options, {"model": line, "required": True})
        assert options["include"][0]["required"] is True
        assert options["include"][0]["attributes"] == ["qty", "id"]

    def test_override_join_appends_missing_include(self, registry: ModelRegistry) -> None:
        tag = registry.get("Tag")
        options = auto_query(registry.get("Order"), {"lines": True})

        override_join(options, {"model": tag, "as": "tags"})
        assert options["include"][-1] == {"model": tag, "as": "tags"}
