"""Query execution for built query options.

The root statement selects the requested attributes; required includes are
enforced with EXISTS semi-joins so joins never multiply root rows. Included
associations are then loaded one statement per level, with IN on the
linking keys, and stitched onto their parent rows.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy.sql.elements import ClauseElement, ColumnElement
from sqlalchemy.sql.selectable import FromClause, Select

from pg_modelkit.errors import FilterError, did_you_mean
from pg_modelkit.models.descriptors import DELETED_AT, Association, AssociationKind, ModelDescriptor
from pg_modelkit.query.builder import QueryOptions, merge_unique
from pg_modelkit.query.compiler import compile_where

if TYPE_CHECKING:
    from pg_modelkit.database.interface import QueryInterface

logger = logging.getLogger(__name__)

# Label of the parent key selected alongside many-to-many rows
_THROUGH_KEY = "__through_key"

Row = dict[str, Any]


@dataclass(frozen=True)
class Link:
    """How parent rows and child rows of an association are matched."""

    parent_key: str
    child_key: str
    through: ModelDescriptor | None = None


def link_for(model: ModelDescriptor, association: Association) -> Link:
    """Resolve the linking keys of an association declared on model."""
    target = model.registry.get(association.target)

    if association.kind == AssociationKind.BELONGS_TO:
        return Link(
            parent_key=association.foreign_key,
            child_key=association.target_key or target.primary_keys[0],
        )

    parent_key = association.source_key or model.primary_keys[0]
    if association.kind == AssociationKind.BELONGS_TO_MANY:
        return Link(
            parent_key=parent_key,
            child_key=association.target_key or target.primary_keys[0],
            through=model.registry.get(association.through),
        )

    return Link(parent_key=parent_key, child_key=association.foreign_key)


def fix_numbers(model: ModelDescriptor, rows: list[Row]) -> list[Row]:
    """Cast numeric columns that came back as text (seen with views)."""
    casts = {}
    for col in model.columns:
        if isinstance(col.type, sa.Integer):
            casts[col.name] = int
        elif isinstance(col.type, sa.Float):
            casts[col.name] = float
        elif isinstance(col.type, sa.Numeric):
            casts[col.name] = (lambda v: Decimal(str(v))) if col.type.asdecimal else float

    for row in rows:
        for name, cast in casts.items():
            value = row.get(name)
            if value is not None and isinstance(value, str):
                row[name] = cast(value)
    return rows


def _column(source: FromClause, model: ModelDescriptor, name: str) -> ColumnElement:
    if name not in source.c:
        raise FilterError(
            f"Unknown attribute '{name}' of model '{model.name}'",
            suggestion=did_you_mean(name, list(source.c.keys())),
        )
    return source.c[name]


def _association(model: ModelDescriptor, alias: str) -> Association:
    association = model.associations.get(alias)
    if association is None:
        raise FilterError(
            f"Model '{model.name}' has no association '{alias}'",
            suggestion=did_you_mean(alias, list(model.associations)),
        )
    return association


def _is_required(include: QueryOptions) -> bool:
    required = include.get("required")
    if required is None:
        return bool(include.get("where"))
    return bool(required)


def _view_params(include: QueryOptions, parent_params: dict[str, Any] | None) -> dict[str, Any] | None:
    params = {**(parent_params or {}), **(include.get("view_params") or {})}
    return params or None


def _order_by(source: FromClause, model: ModelDescriptor, order: Any) -> list[Any]:
    clauses = []
    for entry in order or []:
        if isinstance(entry, ClauseElement):
            clauses.append(entry)
            continue
        if isinstance(entry, str):
            entry = [entry, "ASC"]
        field, direction = entry[0], entry[1] if len(entry) > 1 else "ASC"
        col = _column(source, model, field)
        clauses.append(col.desc() if str(direction).upper() == "DESC" else col.asc())
    return clauses


def _exists(
    qi: "QueryInterface",
    model: ModelDescriptor,
    parent: FromClause,
    include: QueryOptions,
    parent_params: dict[str, Any] | None,
) -> ColumnElement:
    """EXISTS clause keeping parent rows with at least one matching child."""
    alias = include["as"]
    association = _association(model, alias)
    target = model.registry.resolve(include["model"])
    link = link_for(model, association)
    params = _view_params(include, parent_params)
    child = qi.from_clause(target, params, name=f"{alias}_exists")

    if link.through is not None:
        through = link.through.table.alias(f"{alias}_through")
        statement = (
            sa.select(sa.literal(1))
            .select_from(
                through.join(
                    child,
                    through.c[association.other_key] == _column(child, target, link.child_key),
                )
            )
            .where(through.c[association.foreign_key] == _column(parent, model, link.parent_key))
        )
    else:
        statement = sa.select(sa.literal(1)).where(
            _column(child, target, link.child_key) == _column(parent, model, link.parent_key)
        )

    statement = _filtered(qi, target, child, statement, include, params)
    return statement.exists()


def _filtered(
    qi: "QueryInterface",
    model: ModelDescriptor,
    source: FromClause,
    statement: Select,
    options: QueryOptions,
    params: dict[str, Any] | None,
) -> Select:
    if model.paranoid and options.get("paranoid", True):
        statement = statement.where(source.c[DELETED_AT].is_(None))

    clause = compile_where(source, options.get("where"))
    if clause is not None:
        statement = statement.where(clause)

    for include in options.get("include") or []:
        if _is_required(include):
            statement = statement.where(_exists(qi, model, source, include, params))
    return statement


def _projection(model: ModelDescriptor, options: QueryOptions, extra: list[str]) -> tuple[list[str], list[str]]:
    """Columns to select and columns to return."""
    wanted = options.get("attributes") or model.attribute_names
    return merge_unique(wanted, extra), list(wanted)


async def find_all(
    qi: "QueryInterface",
    model: ModelDescriptor,
    options: QueryOptions | None = None,
) -> list[Row]:
    """Select rows of a model with its requested includes.

    Args:
        qi: Query interface bound to a connection.
        model: Root model.
        options: Query options (attributes, where, include, order, offset,
            limit, view_params, paranoid). Soft-deleted rows of
            paranoid models are skipped unless paranoid is False.

    Returns:
        Row dicts; includes are nested under their alias.
    """
    options = options or {}
    params = options.get("view_params") or None
    source = qi.from_clause(model, params)
    includes = options.get("include") or []

    links = [link_for(model, _association(model, inc["as"])).parent_key for inc in includes]
    selected, returned = _projection(model, options, links)

    statement = sa.select(*[_column(source, model, name) for name in selected])
    statement = _filtered(qi, model, source, statement, options, params)

    if options.get("order"):
        statement = statement.order_by(*_order_by(source, model, options["order"]))
    if options.get("offset"):
        statement = statement.offset(options["offset"])
    if options.get("limit"):
        statement = statement.limit(options["limit"])

    rows = await qi.fetch(statement)
    if model.is_view:
        fix_numbers(model, rows)

    for include in includes:
        await _load_include(qi, model, rows, include, params)

    return _strip(rows, returned, includes)


async def _load_include(
    qi: "QueryInterface",
    model: ModelDescriptor,
    rows: list[Row],
    include: QueryOptions,
    parent_params: dict[str, Any] | None,
) -> None:
    alias = include["as"]
    association = _association(model, alias)
    target = model.registry.resolve(include["model"])
    link = link_for(model, association)

    keys = merge_unique([row[link.parent_key] for row in rows if row.get(link.parent_key) is not None])
    if not keys:
        for row in rows:
            row[alias] = [] if association.is_many else None
        return

    params = _view_params(include, parent_params)
    source = qi.from_clause(target, params)
    child_includes = include.get("include") or []
    child_links = [link_for(target, _association(target, inc["as"])).parent_key for inc in child_includes]

    if link.through is not None:
        selected, returned = _projection(target, include, [link.child_key, *child_links])
        through = link.through.table
        group_key = _THROUGH_KEY
        statement = (
            sa.select(
                *[_column(source, target, name) for name in selected],
                through.c[association.foreign_key].label(_THROUGH_KEY),
            )
            .select_from(
                through.join(source, through.c[association.other_key] == source.c[link.child_key])
            )
            .where(through.c[association.foreign_key].in_(keys))
        )
    else:
        selected, returned = _projection(target, include, [link.child_key, *child_links])
        group_key = link.child_key
        statement = sa.select(*[_column(source, target, name) for name in selected]).where(
            source.c[link.child_key].in_(keys)
        )

    statement = _filtered(qi, target, source, statement, include, params)
    if include.get("order"):
        statement = statement.order_by(*_order_by(source, target, include["order"]))

    child_rows = await qi.fetch(statement)
    logger.debug(f"Loaded {len(child_rows)} {target.name} rows for {model.name}.{alias}")
    if target.is_view:
        fix_numbers(target, child_rows)

    for child_include in child_includes:
        await _load_include(qi, target, child_rows, child_include, params)

    grouped: dict[Any, list[Row]] = {}
    for child in child_rows:
        grouped.setdefault(child[group_key], []).append(child)

    for row in rows:
        matches = _strip(grouped.get(row.get(link.parent_key), []), returned, child_includes)
        if association.is_many:
            row[alias] = matches
        else:
            row[alias] = matches[0] if matches else None


def _strip(rows: list[Row], returned: list[str], includes: list[QueryOptions]) -> list[Row]:
    """Drop internally selected columns, keeping requested ones and includes."""
    keep = set(returned) | {include["as"] for include in includes}
    return [{key: value for key, value in row.items() if key in keep} for row in rows]


async def find_one(
    qi: "QueryInterface",
    model: ModelDescriptor,
    options: QueryOptions | None = None,
) -> Row | None:
    rows = await find_all(qi, model, {**(options or {}), "limit": 1})
    return rows[0] if rows else None


async def find_by_pk(
    qi: "QueryInterface",
    model: ModelDescriptor,
    identifier: Any,
    options: QueryOptions | None = None,
) -> Row | None:
    """Find a row by primary key; composite keys are given as a dict."""
    if isinstance(identifier, dict):
        key_filter = dict(identifier)
    else:
        key_filter = {model.primary_keys[0]: identifier}

    options = dict(options or {})
    options["where"] = {**(options.get("where") or {}), **key_filter}
    return await find_one(qi, model, options)


async def count(
    qi: "QueryInterface",
    model: ModelDescriptor,
    options: QueryOptions | None = None,
) -> int:
    """Count rows; COUNT(DISTINCT col) when options["distinct"] is set."""
    options = options or {}
    params = options.get("view_params") or None
    source = qi.from_clause(model, params)

    if options.get("distinct"):
        col = options.get("col") or model.primary_keys[0]
        expression = sa.func.count(sa.distinct(_column(source, model, col)))
    else:
        expression = sa.func.count()

    statement = sa.select(expression).select_from(source)
    statement = _filtered(qi, model, source, statement, options, params)

    result = await qi.conn.execute(statement)
    return int(result.scalar() or 0)
