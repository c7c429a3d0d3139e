"""Schema synchronization: tables, then indices, then views."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from pg_modelkit.database.interface import QueryInterface
from pg_modelkit.database.relationships import sync_order, view_levels
from pg_modelkit.database.schema import (
    check_view_definition,
    create_index_sql,
    drop_index_sql,
    drop_view_sql,
    index_statements,
)
from pg_modelkit.errors import DeclarationError, SchemaSyncError
from pg_modelkit.models.descriptors import ColumnIndex, ModelDescriptor
from pg_modelkit.models.registry import ModelRegistry
from pg_modelkit.query.sql import render_view_definition

logger = logging.getLogger(__name__)

__all__ = [
    "ModelSynchronizer",
    "SyncOptions",
    "create_index_sql",
    "drop_index_sql",
    "drop_view_sql",
]


class SyncOptions(BaseModel):
    """Options of a synchronization run."""

    force: bool = Field(default=False, description="Drop tables before creating them")
    with_no_views: bool = Field(default=False, description="Skip the view phase")
    without_drop: bool = Field(default=False, description="Create views without dropping first")
    cascade: bool = Field(default=False, description="Drop views and tables with CASCADE")
    safe: bool = Field(default=False, description="Create indices with IF NOT EXISTS, never drop")


class ModelSynchronizer:
    """Materializes declared models into the database.

    Tables are created in dependency order, their indices next, then views
    level by level. Views of one level are created concurrently, each on its
    own connection. Sync is not transactional across models: a failure stops
    the run, already created tables stay.
    """

    def __init__(self, engine: AsyncEngine, registry: ModelRegistry) -> None:
        """Initialize synchronizer.

        Args:
            engine: Async engine to run DDL through.
            registry: Registry holding the models to sync.
        """
        self.engine = engine
        self.registry = registry

    @asynccontextmanager
    async def _ddl(self, model: ModelDescriptor) -> AsyncIterator[QueryInterface]:
        try:
            async with self.engine.begin() as conn:
                yield QueryInterface(conn, self.registry)
        except SQLAlchemyError as e:
            raise SchemaSyncError(model.name, str(e)) from e

    async def sync(self, options: SyncOptions | None = None) -> None:
        """Synchronize every declared model."""
        options = options or SyncOptions()
        self.registry.build()

        tables = [model for model in sync_order(self.registry) if not model.is_view]
        logger.info(f"Syncing {len(tables)} tables")
        for model in tables:
            await self.sync_model(model, options)

        for model in self.registry.models_with_indices():
            if not model.is_view:
                await self.sync_indices(model, options)

        if options.with_no_views:
            return

        for level in view_levels(self.registry):
            logger.info(f"Syncing views: {', '.join(view.name for view in level)}")
            await asyncio.gather(*[self.sync_view(view, options) for view in level])

    async def sync_model(self, model: ModelDescriptor | str, options: SyncOptions | None = None) -> None:
        """Create a table if missing; views are left to sync_view()."""
        model = self.registry.resolve(model)
        options = options or SyncOptions()

        if model.is_view:
            logger.debug(f"Skipping view {model.name} in table phase")
            return

        self.registry.build()
        async with self._ddl(model) as qi:
            if options.force:
                await qi.drop_table(model, cascade=options.cascade)
            await qi.create_table(model)
        logger.debug(f"Table {model.table_name} synced")

    async def sync_view(self, model: ModelDescriptor | str, options: SyncOptions | None = None) -> None:
        """Drop (unless without_drop) and create a view.

        Raises:
            DeclarationError: If the model is not a view.
            ViewDefinitionError: If the definition names another view.
        """
        model = self.registry.resolve(model)
        options = options or SyncOptions()

        if not model.is_view or model.view is None:
            raise DeclarationError(f"Model '{model.name}' is not a view")

        definition = render_view_definition(model.view)
        check_view_definition(model.table_name, definition)

        async with self._ddl(model) as qi:
            if not options.without_drop:
                await qi.drop_view(model.table_name, cascade=options.cascade)
            await qi.create_view(model.table_name, definition)
        logger.debug(f"View {model.table_name} synced")

    async def sync_indices(self, model: ModelDescriptor | str, options: SyncOptions | None = None) -> None:
        """Re-create the declared indices of a model in declaration order."""
        model = self.registry.resolve(model)
        options = options or SyncOptions()

        for position, index in enumerate(model.indices, start=1):
            if options.safe and not index.options.safe:
                index = index.model_copy(update={"options": index.options.model_copy(update={"safe": True})})
            await self.sync_index(model, index, position)

    async def sync_index(self, model: ModelDescriptor, index: ColumnIndex, position: int) -> None:
        statements = index_statements(model, index, position)

        if not index.options.concurrently:
            async with self._ddl(model) as qi:
                for statement in statements:
                    await qi.execute_ddl(statement)
            return

        # CONCURRENTLY cannot run inside a transaction block
        try:
            async with self.engine.connect() as conn:
                autocommit: AsyncConnection = await conn.execution_options(isolation_level="AUTOCOMMIT")
                qi = QueryInterface(autocommit, self.registry)
                for statement in statements:
                    await qi.execute_ddl(statement)
        except SQLAlchemyError as e:
            raise SchemaSyncError(model.name, str(e)) from e

    async def drop(self, model: ModelDescriptor | str, cascade: bool = False) -> None:
        """Drop a model's view or table if it exists."""
        model = self.registry.resolve(model)

        async with self._ddl(model) as qi:
            if model.is_view:
                await qi.drop_view(model.table_name, cascade=cascade)
            else:
                await qi.drop_table(model, cascade=cascade)
