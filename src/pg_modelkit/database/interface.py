"""Model-aware query interface wrapping an AsyncConnection.

The wrapper composes the connection rather than patching it: returning
directives are normalized, view definitions are checked before CREATE VIEW,
and dynamic views are selected through their rendered definition.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.schema import CreateTable, DropTable
from sqlalchemy.sql.selectable import FromClause

from pg_modelkit.database import queries
from pg_modelkit.database.schema import (
    check_view_definition,
    drop_index_sql,
    drop_table_sql,
    drop_view_sql,
)
from pg_modelkit.errors import DeclarationError, FilterError, did_you_mean
from pg_modelkit.models.descriptors import ModelDescriptor
from pg_modelkit.models.registry import ModelRegistry
from pg_modelkit.query.builder import QueryOptions
from pg_modelkit.query.compiler import compile_where
from pg_modelkit.query.sql import as_subquery, text_clause

logger = logging.getLogger(__name__)

Returning = bool | Iterable[str] | None


def normalize_returning(model: ModelDescriptor, returning: Returning) -> list[sa.Column]:
    """Turn a returning directive into the columns to return.

    None, False and an empty list return nothing; True returns every column;
    a list returns the named columns.

    Raises:
        FilterError: If a named column does not exist.
    """
    if returning is None or returning is False:
        return []

    table = model.table
    if returning is True:
        return list(table.c)

    columns = []
    for name in returning:
        if name not in table.c:
            raise FilterError(
                f"Unknown column '{name}' in returning of model '{model.name}'",
                suggestion=did_you_mean(name, list(table.c.keys())),
            )
        columns.append(table.c[name])
    return columns


class QueryInterface:
    """Data and schema operations for registered models over one connection."""

    def __init__(self, conn: AsyncConnection, registry: ModelRegistry) -> None:
        """Initialize query interface.

        Args:
            conn: Async database connection.
            registry: Registry the models belong to.
        """
        self.conn = conn
        self.registry = registry

    # --- raw access ----------------------------------------------------------

    async def fetch(self, statement: Any, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Execute a statement and return its rows as dicts."""
        result = await self.conn.execute(statement, dict(params or {}))
        return [dict(row._mapping) for row in result.fetchall()]

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run raw SQL with named (:name) parameters."""
        return await self.fetch(sa.text(sql), params)

    async def execute_ddl(self, statement: str) -> None:
        logger.debug(f"DDL: {statement}")
        await self.conn.execute(text_clause(statement))

    def from_clause(
        self,
        model: ModelDescriptor,
        view_params: Mapping[str, Any] | None = None,
        name: str | None = None,
    ) -> FromClause:
        """Selectable for a model.

        A dynamic view queried with parameters is replaced by its rendered
        definition as a subquery.
        """
        if model.view is not None and model.is_dynamic_view and view_params:
            rendered = text_clause(as_subquery(model.view, dict(view_params)))
            columns = [sa.column(col.name, col.type) for col in model.columns]
            return rendered.columns(*columns).subquery(name or model.table_name)

        table = model.table
        return table.alias(name) if name else table

    # --- data ----------------------------------------------------------------

    def _writable(self, model: ModelDescriptor | str) -> ModelDescriptor:
        model = self.registry.resolve(model)
        if model.is_view:
            raise DeclarationError(f"Model '{model.name}' is a view and is read-only")
        return model

    async def insert(
        self,
        model: ModelDescriptor | str,
        values: Mapping[str, Any],
        returning: Returning = True,
    ) -> dict[str, Any] | None:
        """Insert one row.

        Returns:
            The returned columns, or None when nothing is returned.
        """
        model = self._writable(model)
        columns = normalize_returning(model, returning)
        statement = sa.insert(model.table).values(dict(values))
        if not columns:
            await self.conn.execute(statement)
            return None

        rows = await self.fetch(statement.returning(*columns))
        return rows[0] if rows else None

    async def bulk_insert(
        self,
        model: ModelDescriptor | str,
        rows: list[Mapping[str, Any]],
        returning: Returning = False,
    ) -> list[dict[str, Any]]:
        """Insert many rows in one statement."""
        model = self._writable(model)
        if not rows:
            return []

        columns = normalize_returning(model, returning)
        statement = sa.insert(model.table).values([dict(row) for row in rows])
        if not columns:
            await self.conn.execute(statement)
            return []
        return await self.fetch(statement.returning(*columns))

    async def update(
        self,
        model: ModelDescriptor | str,
        values: Mapping[str, Any],
        where: Any = None,
        returning: Returning = False,
    ) -> list[dict[str, Any]] | int:
        """Update matching rows.

        Returns:
            Returned rows, or the affected row count when nothing is returned.
        """
        model = self._writable(model)
        table = model.table
        statement = sa.update(table).values(dict(values))
        clause = compile_where(table, where)
        if clause is not None:
            statement = statement.where(clause)

        columns = normalize_returning(model, returning)
        if columns:
            return await self.fetch(statement.returning(*columns))
        result = await self.conn.execute(statement)
        return result.rowcount

    async def delete(
        self,
        model: ModelDescriptor | str,
        where: Any = None,
        returning: Returning = False,
    ) -> list[dict[str, Any]] | int:
        """Delete matching rows."""
        model = self._writable(model)
        table = model.table
        statement = sa.delete(table)
        clause = compile_where(table, where)
        if clause is not None:
            statement = statement.where(clause)

        columns = normalize_returning(model, returning)
        if columns:
            return await self.fetch(statement.returning(*columns))
        result = await self.conn.execute(statement)
        return result.rowcount

    async def select(
        self, model: ModelDescriptor | str, options: QueryOptions | None = None
    ) -> list[dict[str, Any]]:
        return await queries.find_all(self, self.registry.resolve(model), options)

    async def count(self, model: ModelDescriptor | str, options: QueryOptions | None = None) -> int:
        return await queries.count(self, self.registry.resolve(model), options)

    # --- schema --------------------------------------------------------------

    async def create_table(self, model: ModelDescriptor) -> None:
        self.registry.build()
        await self.conn.execute(CreateTable(model.table, if_not_exists=True))

    async def drop_table(self, model: ModelDescriptor, cascade: bool = False) -> None:
        if cascade:
            await self.execute_ddl(drop_table_sql(model.table_name, cascade=True))
        else:
            await self.conn.execute(DropTable(model.table, if_exists=True))

    async def create_view(self, view_name: str, definition: str) -> None:
        """Create a view from its CREATE VIEW statement.

        Raises:
            ViewDefinitionError: If the statement names another view.
        """
        check_view_definition(view_name, definition)
        await self.execute_ddl(definition)

    async def drop_view(self, view_name: str, cascade: bool = False) -> None:
        await self.execute_ddl(drop_view_sql(view_name, cascade))

    async def create_index(self, statement: str) -> None:
        await self.execute_ddl(statement)

    async def drop_index(self, index_name: str, concurrently: bool = False) -> None:
        await self.execute_ddl(drop_index_sql(index_name, concurrently))
