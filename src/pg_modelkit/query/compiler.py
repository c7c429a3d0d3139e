"""Compile predicate trees into SQLAlchemy boolean clauses."""

from collections.abc import Callable, Mapping
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSON, JSONB
from sqlalchemy.sql.elements import ClauseElement, ColumnElement
from sqlalchemy.sql.selectable import FromClause

from pg_modelkit.errors import FilterError, did_you_mean
from pg_modelkit.query.filters import Op


def _custom(symbol: str) -> Callable[[ColumnElement, Any], ColumnElement]:
    return lambda col, value: col.op(symbol, is_comparison=True)(value)


def _eq(col: ColumnElement, value: Any) -> ColumnElement:
    return col.is_(None) if value is None else col == value


def _ne(col: ColumnElement, value: Any) -> ColumnElement:
    return col.is_not(None) if value is None else col != value


def _not(col: ColumnElement, value: Any) -> ColumnElement:
    if value is None or isinstance(value, bool):
        return col.is_not(value)
    return col != value


def _between(col: ColumnElement, value: Any) -> ColumnElement:
    start, end = value
    return col.between(start, end)


def _any(col: ColumnElement, value: Any) -> ColumnElement:
    return col == sa.any_(sa.literal(list(value), type_=ARRAY(col.type)))


COLUMN_OPERATORS: dict[Op, Callable[[ColumnElement, Any], ColumnElement]] = {
    Op.EQ: _eq,
    Op.NE: _ne,
    Op.IS: lambda col, value: col.is_(value),
    Op.NOT: _not,
    Op.GT: lambda col, value: col > value,
    Op.GTE: lambda col, value: col >= value,
    Op.LT: lambda col, value: col < value,
    Op.LTE: lambda col, value: col <= value,
    Op.BETWEEN: _between,
    Op.NOT_BETWEEN: lambda col, value: sa.not_(_between(col, value)),
    Op.IN: lambda col, value: col.in_(list(value)),
    Op.NOT_IN: lambda col, value: col.not_in(list(value)),
    Op.LIKE: lambda col, value: col.like(value),
    Op.NOT_LIKE: lambda col, value: col.not_like(value),
    Op.ILIKE: lambda col, value: col.ilike(value),
    Op.NOT_ILIKE: lambda col, value: col.not_ilike(value),
    Op.REGEXP: _custom("~"),
    Op.NOT_REGEXP: _custom("!~"),
    Op.IREGEXP: _custom("~*"),
    Op.NOT_IREGEXP: _custom("!~*"),
    Op.OVERLAP: _custom("&&"),
    Op.CONTAINS: _custom("@>"),
    Op.CONTAINED: _custom("<@"),
    Op.ADJACENT: _custom("-|-"),
    Op.STRICT_LEFT: _custom("<<"),
    Op.STRICT_RIGHT: _custom(">>"),
    Op.NO_EXTEND_RIGHT: _custom("&<"),
    Op.NO_EXTEND_LEFT: _custom("&>"),
    Op.ANY: _any,
}


def compile_where(source: FromClause, predicate: Any) -> ColumnElement | None:
    """Compile a predicate against the columns of a table or subquery.

    Args:
        source: Table, alias or subquery whose columns the predicate names.
        predicate: Predicate tree or a ready SQLAlchemy clause.

    Returns:
        Boolean clause, or None for an empty predicate.

    Raises:
        FilterError: On unknown columns or misplaced operators.
    """
    if predicate is None:
        return None
    if isinstance(predicate, ClauseElement):
        return predicate  # type: ignore[return-value]
    if not isinstance(predicate, Mapping):
        raise FilterError(f"Predicate must be a mapping, got {type(predicate).__name__}")
    if not predicate:
        return None

    clauses = [_compile_entry(source, key, value) for key, value in predicate.items()]
    return clauses[0] if len(clauses) == 1 else sa.and_(*clauses)


def _compile_entry(source: FromClause, key: Any, value: Any) -> ColumnElement:
    if key is Op.AND:
        return sa.and_(*[_compile_nested(source, item) for item in _as_list(value)])
    if key is Op.OR:
        return sa.or_(*[_compile_nested(source, item) for item in _as_list(value)])
    if key is Op.NOT:
        return sa.not_(_compile_nested(source, value))
    if isinstance(key, Op):
        raise FilterError(f"Operator '${key.value}' must be applied to a column")

    col = source.c.get(key)
    if col is None:
        raise FilterError(
            f"Unknown column '{key}' in filter",
            suggestion=did_you_mean(str(key), list(source.c.keys())),
        )
    return compile_column(col, value)


def _compile_nested(source: FromClause, item: Any) -> ColumnElement:
    clause = compile_where(source, item)
    if clause is None:
        return sa.true()
    return clause


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        return [{k: v} for k, v in value.items()]
    return list(value)


def compile_column(col: ColumnElement, value: Any, path: tuple[str, ...] = ()) -> ColumnElement:
    """Compile the filter value of a single column.

    Literal (non-operator) keys address nested JSON fields; they are only
    valid on JSON columns.
    """
    target = _json_path(col, path) if path else col

    if isinstance(value, ClauseElement):
        return target == value
    if value is None:
        return target.is_(None)
    if isinstance(value, list):
        return _typed(target, value, path).in_(value)
    if not isinstance(value, Mapping):
        return _typed(target, value, path) == value

    clauses = []
    for key, operand in value.items():
        if key is Op.AND:
            clauses.append(sa.and_(*[compile_column(col, item, path) for item in _as_list(operand)]))
        elif key is Op.OR:
            clauses.append(sa.or_(*[compile_column(col, item, path) for item in _as_list(operand)]))
        elif key is Op.NOT and isinstance(operand, Mapping):
            clauses.append(sa.not_(compile_column(col, operand, path)))
        elif isinstance(key, Op):
            clauses.append(COLUMN_OPERATORS[key](_typed(target, operand, path), operand))
        elif isinstance(col.type, (JSON, JSONB, sa.JSON)):
            clauses.append(compile_column(col, operand, (*path, str(key))))
        else:
            raise FilterError(
                f"Unknown operator or nested field '{key}' on column '{col.key}'",
                suggestion="Nested field filters are only supported on JSON columns",
            )

    if not clauses:
        return sa.true()
    return clauses[0] if len(clauses) == 1 else sa.and_(*clauses)


def _json_path(col: ColumnElement, path: tuple[str, ...]) -> ColumnElement:
    if len(path) == 1:
        return col[path[0]].as_string()
    return col[path].as_string()


def _typed(target: ColumnElement, operand: Any, path: tuple[str, ...]) -> ColumnElement:
    # JSON leaves are text; cast them to match numeric or boolean operands
    if not path:
        return target
    sample = operand[0] if isinstance(operand, (list, tuple)) and operand else operand
    if isinstance(sample, bool):
        return sa.cast(target, sa.Boolean)
    if isinstance(sample, (int, float)):
        return sa.cast(target, sa.Numeric)
    return target
