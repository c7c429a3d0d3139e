"""Query construction: filters, option builders and raw SQL helpers."""

from pg_modelkit.query.builder import (
    QueryOptions,
    auto_count_query,
    auto_query,
    filtered,
    foreign_keys,
    foreign_keys_map,
    get_include,
    merge_query,
    need_nesting,
    override_join,
    primary_keys,
    pure_data,
    pure_fields,
    skip,
    to_limit_options,
    to_order_options,
)
from pg_modelkit.query.compiler import compile_column, compile_where
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
from pg_modelkit.query.sql import (
    escape,
    literal,
    render_view_definition,
    safe_sql_space_cleanup,
    sql,
    text_clause,
    view_params_in,
)

__all__ = [
    # Builder
    "QueryOptions",
    "auto_count_query",
    "auto_query",
    "filtered",
    "foreign_keys",
    "foreign_keys_map",
    "get_include",
    "merge_query",
    "need_nesting",
    "override_join",
    "primary_keys",
    "pure_data",
    "pure_fields",
    "skip",
    "to_limit_options",
    "to_order_options",
    # Filters
    "FILTER_OPS",
    "Op",
    "or_null",
    "parse_filter",
    "parse_filter_value",
    "parse_value",
    "to_where_options",
    "with_range_filters",
    "compile_column",
    "compile_where",
    # SQL
    "escape",
    "literal",
    "render_view_definition",
    "safe_sql_space_cleanup",
    "sql",
    "text_clause",
    "view_params_in",
]
