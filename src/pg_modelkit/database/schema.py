"""DDL statement builders for views and indices.

Statements are built as plain strings so they can be logged, tested and
executed through any connection.
"""

import re

from pg_modelkit.errors import ViewDefinitionError
from pg_modelkit.models.descriptors import ColumnIndex, ModelDescriptor


def quote(name: str) -> str:
    """Quote an identifier."""
    return '"' + name.replace('"', '""') + '"'


def drop_view_sql(view_name: str, cascade: bool = False) -> str:
    return f"DROP VIEW IF EXISTS {quote(view_name)}{' CASCADE' if cascade else ''}"


def drop_table_sql(table_name: str, cascade: bool = False) -> str:
    return f"DROP TABLE IF EXISTS {quote(table_name)}{' CASCADE' if cascade else ''}"


def check_view_definition(view_name: str, definition: str) -> None:
    """Make sure a CREATE VIEW statement creates the view it is declared for.

    Raises:
        ViewDefinitionError: If the statement names another view.
    """
    rx = re.compile(
        r"\s*create\s+(or\s+replace\s+)?(temp\s+|temporary\s+)?view\s+"
        rf'"?{re.escape(view_name)}"?\s+',
        re.IGNORECASE,
    )
    if not rx.match(definition):
        raise ViewDefinitionError(
            f"Given view definition does not match given view name '{view_name}'",
            suggestion=f'Start the definition with CREATE VIEW "{view_name}" AS',
        )


def drop_index_sql(index_name: str, concurrently: bool = False) -> str:
    return f"DROP INDEX{' CONCURRENTLY' if concurrently else ''} IF EXISTS {quote(index_name)}"


def create_index_sql(model: ModelDescriptor, index: ColumnIndex, position: int) -> str:
    """Build the CREATE INDEX statement of a declared index.

    Args:
        model: Model owning the index.
        index: Declared index.
        position: 1-based position among the model's indices, used for the
            derived name.

    Returns:
        CREATE INDEX statement; absent options leave their clause out.
    """
    options = index.options
    name = model.index_name(index, position)

    target = f"({options.expression})" if options.expression else quote(index.column)
    if options.collation:
        target += f" COLLATE {options.collation}"
    if options.op_class:
        target += f" {options.op_class}"
    if options.order:
        target += f" {options.order.value}"
    if options.nulls_first is True:
        target += " NULLS FIRST"
    elif options.nulls_first is False:
        target += " NULLS LAST"

    parts = [
        "CREATE",
        " UNIQUE" if options.unique else "",
        " INDEX",
        " CONCURRENTLY" if options.concurrently else "",
        " IF NOT EXISTS" if options.safe else "",
        f" {quote(name)}",
        f" ON {quote(model.table_name)}",
        f" USING {options.method.value}" if options.method else "",
        f" ({target})",
        f" INCLUDE ({', '.join(quote(c) for c in options.include)})" if options.include else "",
        f" TABLESPACE {options.tablespace}" if options.tablespace else "",
        f" WHERE {options.predicate}" if options.predicate else "",
    ]
    return "".join(parts)


def index_statements(model: ModelDescriptor, index: ColumnIndex, position: int) -> list[str]:
    """Statements that (re)create one index: drop first unless safe."""
    statements = []
    if not index.options.safe:
        name = model.index_name(index, position)
        statements.append(drop_index_sql(name, index.options.concurrently))
    statements.append(create_index_sql(model, index, position))
    return statements
