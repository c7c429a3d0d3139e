"""Tests for compiling predicate trees into SQL."""

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import ARRAY, JSONB

from pg_modelkit.errors import FilterError
from pg_modelkit.query.compiler import compile_column, compile_where
from pg_modelkit.query.filters import Op, parse_filter, to_where_options
from tests.conftest import compile_sql

metadata = sa.MetaData()
people = sa.Table(
    "people",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String),
    sa.Column("age", sa.Integer),
    sa.Column("active", sa.Boolean),
    sa.Column("tags", ARRAY(sa.String)),
    sa.Column("profile", JSONB),
)


class TestCompileWhere:
    """Tests for table-level predicates."""

    def test_empty_predicate(self) -> None:
        assert compile_where(people, None) is None
        assert compile_where(people, {}) is None

    def test_filter_translation_compiles(self) -> None:
        where = to_where_options({"age": ">=18", "name": "%ann%"})["where"]
        sql = compile_sql(compile_where(people, where))
        assert "people.age >= 18" in sql
        assert "ILIKE" in sql
        assert " AND " in sql

    def test_equality_and_null(self) -> None:
        assert compile_sql(compile_where(people, {"name": "ann"})) == "people.name = 'ann'"
        assert compile_sql(compile_where(people, {"name": None})) == "people.name IS NULL"

    def test_list_means_in(self) -> None:
        assert "people.id IN (1, 2)" in compile_sql(compile_where(people, {"id": [1, 2]}))

    def test_or_of_columns(self) -> None:
        sql = compile_sql(compile_where(people, {Op.OR: [{"age": {Op.LT: 10}}, {"age": {Op.GT: 60}}]}))
        assert sql == "people.age < 10 OR people.age > 60"

    def test_not(self) -> None:
        sql = compile_sql(compile_where(people, {Op.NOT: {"name": "ann"}}))
        assert sql == "people.name != 'ann'"

    def test_ready_clause_passes_through(self) -> None:
        clause = people.c.age > 3
        assert compile_where(people, clause) is clause

    def test_unknown_column(self) -> None:
        with pytest.raises(FilterError) as exc_info:
            compile_where(people, {"nme": "ann"})

        assert "Unknown column 'nme'" in exc_info.value.message
        assert "name" in (exc_info.value.suggestion or "")

    def test_column_operator_at_top_level(self) -> None:
        with pytest.raises(FilterError, match="must be applied to a column"):
            compile_where(people, {Op.GT: 1})

    def test_non_mapping_predicate(self) -> None:
        with pytest.raises(FilterError):
            compile_where(people, [1, 2])


class TestCompileColumn:
    """Tests for column-level operators."""

    def test_between(self) -> None:
        sql = compile_sql(compile_column(people.c.age, {Op.BETWEEN: [18, 30]}))
        assert sql == "people.age BETWEEN 18 AND 30"

    def test_not_between(self) -> None:
        sql = compile_sql(compile_column(people.c.age, {Op.NOT_BETWEEN: [18, 30]}))
        assert "NOT BETWEEN 18 AND 30" in sql

    def test_ne_null(self) -> None:
        assert compile_sql(compile_column(people.c.name, {Op.NE: None})) == "people.name IS NOT NULL"

    def test_not_true(self) -> None:
        assert compile_sql(compile_column(people.c.active, {Op.NOT: True})) == "people.active IS NOT true"

    def test_not_in(self) -> None:
        assert "NOT IN (1, 2)" in compile_sql(compile_column(people.c.id, {Op.NOT_IN: [1, 2]}))

    def test_regexp(self) -> None:
        assert compile_sql(compile_column(people.c.name, {Op.IREGEXP: "^a"})) == "people.name ~* '^a'"

    def test_array_overlap(self) -> None:
        sql = str(compile_column(people.c.tags, {Op.OVERLAP: ["a"]}).compile(dialect=postgresql.dialect()))
        assert "&&" in sql

    def test_multiple_operators_are_anded(self) -> None:
        sql = compile_sql(compile_column(people.c.age, {Op.GTE: 18, Op.LT: 65}))
        assert sql == "people.age >= 18 AND people.age < 65"

    def test_nested_or(self) -> None:
        sql = compile_sql(compile_column(people.c.age, {Op.OR: [{Op.LT: 10}, {Op.GT: 60}]}))
        assert sql == "people.age < 10 OR people.age > 60"

    def test_empty_mapping_matches_everything(self) -> None:
        assert compile_sql(compile_column(people.c.age, {})) == "true"


class TestUnknownOperatorKeys:
    """Unknown "$op" keys stay literal names: a JSON path or an error."""

    def test_literal_key_on_plain_column_raises(self) -> None:
        predicate = parse_filter({"age": {"$bogus": 1}})
        with pytest.raises(FilterError, match="Unknown operator or nested field '\\$bogus'"):
            compile_where(people, predicate)

    def test_literal_key_on_json_column_is_a_path(self) -> None:
        predicate = parse_filter({"profile": {"city": "Oslo"}})
        sql = compile_sql(compile_where(people, predicate))
        assert "->> 'city'" in sql
        assert "'Oslo'" in sql

    def test_numeric_json_leaf_is_cast(self) -> None:
        predicate = parse_filter({"profile": {"score": {"$gt": 5}}})
        sql = compile_sql(compile_where(people, predicate))
        assert "CAST" in sql
        assert "NUMERIC" in sql
