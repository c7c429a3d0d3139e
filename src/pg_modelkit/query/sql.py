"""Raw SQL helpers: escaping, whitespace cleanup and view-definition rendering."""

import re
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import literal_column, text
from sqlalchemy.sql.elements import ColumnClause, TextClause

if TYPE_CHECKING:
    from pg_modelkit.models.descriptors import ViewDefinition

MATCHER = r"@\{([a-z0-9_]+?)\}"
RX_MATCHER = re.compile(MATCHER, re.IGNORECASE)
RX_CREATE_VIEW = re.compile(
    r"create\s+(or\s+replace\s+)?(materialized\s+)?view\s+(.*?)\s+as", re.IGNORECASE
)


def escape(value: Any) -> str:
    """Render a scalar as an SQL literal.

    Numbers are rendered bare, strings single-quoted (embedded quotes
    doubled), anything else as NULL.
    """
    if isinstance(value, bool):
        return "NULL"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return "NULL"


def safe_sql_space_cleanup(text: str) -> str:
    """Collapse runs of whitespace into one space outside quoted literals."""
    output: list[str] = []
    opened = False
    space = False

    for char in text:
        if not opened and char.isspace():
            if not space:
                output.append(" ")
            space = True
        else:
            output.append(char)
            space = False

        if char == "'":
            opened = not opened

    return "".join(output)


def sql(text: str) -> str:
    """Inline an SQL statement and make sure it ends with a semicolon."""
    cleaned = safe_sql_space_cleanup(str(text)).strip()
    while cleaned.endswith(";"):
        cleaned = cleaned[:-1].rstrip()
    return cleaned + ";"


def literal(text: str) -> ColumnClause:
    """Wrap raw SQL so it can be used inside built query options."""
    return literal_column(text)


def text_clause(statement: str) -> TextClause:
    """Wrap raw SQL for execution, keeping every colon literal.

    Plain text() would read ":name" inside string literals or casts as a
    bind parameter.
    """
    return text(statement.replace(":", r"\:"))


def view_params_in(definition: str) -> list[str]:
    """Return placeholder names referenced by a view definition, in order."""
    names: list[str] = []
    for name in RX_MATCHER.findall(definition):
        if name not in names:
            names.append(name)
    return names


def render_view_definition(
    view: "ViewDefinition",
    params: dict[str, Any] | None = None,
    as_query: bool = False,
) -> str:
    """Render a stored view definition.

    Args:
        view: View definition to render.
        params: Per-call placeholder values, overriding the stored defaults.
            Only dynamic views are parameterized.
        as_query: Strip the CREATE VIEW prefix so only the SELECT remains.

    Returns:
        Normalized SQL text terminated with a semicolon.
    """
    definition = view.sql

    if view.is_dynamic:
        values = {**view.params, **(params or {})}
        definition = RX_MATCHER.sub(lambda m: escape(values.get(m.group(1))), definition)

    if as_query:
        definition = RX_CREATE_VIEW.sub("", definition, count=1)

    return sql(definition)


def as_subquery(view: "ViewDefinition", params: dict[str, Any] | None = None) -> str:
    """Render a view definition as a bare SELECT usable in a FROM clause."""
    return render_view_definition(view, params, as_query=True).rstrip(";")
