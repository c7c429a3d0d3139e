"""Database handle and the process-wide database() singleton."""

import logging
import threading
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from pg_modelkit.config import Settings, get_settings
from pg_modelkit.database import queries
from pg_modelkit.database.engine import build_engine, dispose_engine
from pg_modelkit.database.interface import QueryInterface
from pg_modelkit.database.sync import ModelSynchronizer, SyncOptions
from pg_modelkit.database.writer import create_entity
from pg_modelkit.errors import ConfigurationError
from pg_modelkit.models.descriptors import ModelDescriptor
from pg_modelkit.models.registry import ModelRegistry
from pg_modelkit.query.builder import QueryOptions

logger = logging.getLogger(__name__)


class Database:
    """Entry point bundling an engine with a model registry.

    Reads run on a fresh connection unless one is passed in; writes through
    create_entity() run in their own transaction unless one is passed in.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        registry: ModelRegistry,
        settings: Settings | None = None,
    ) -> None:
        """Initialize database handle.

        Args:
            engine: Async engine for the target database.
            registry: Registry with the declared models.
            settings: Settings the handle was built from, if any.
        """
        self.engine = engine
        self.registry = registry
        self.settings = settings
        self.synchronizer = ModelSynchronizer(engine, registry)

    def interface(self, conn: AsyncConnection) -> QueryInterface:
        return QueryInterface(conn, self.registry)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[QueryInterface]:
        """Query interface over a new connection (no transaction)."""
        async with self.engine.connect() as conn:
            yield self.interface(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[QueryInterface]:
        """Query interface over a new connection in a transaction.

        Commits when the block exits normally, rolls back on error.
        """
        async with self.engine.begin() as conn:
            yield self.interface(conn)

    @asynccontextmanager
    async def _reader(self, connection: AsyncConnection | None) -> AsyncIterator[QueryInterface]:
        if connection is not None:
            yield self.interface(connection)
            return
        async with self.connect() as qi:
            yield qi

    # --- reads ---------------------------------------------------------------

    async def find_all(
        self,
        model: ModelDescriptor | str,
        options: QueryOptions | None = None,
        connection: AsyncConnection | None = None,
    ) -> list[dict[str, Any]]:
        """Find rows of a model.

        Args:
            model: Model or model name.
            options: Query options, usually built with auto_query().
            connection: Connection to run on; a new one is used when None.

        Returns:
            Row dicts with included associations nested under their alias.
        """
        model = self.registry.resolve(model)
        async with self._reader(connection) as qi:
            return await queries.find_all(qi, model, options)

    async def find_one(
        self,
        model: ModelDescriptor | str,
        options: QueryOptions | None = None,
        connection: AsyncConnection | None = None,
    ) -> dict[str, Any] | None:
        model = self.registry.resolve(model)
        async with self._reader(connection) as qi:
            return await queries.find_one(qi, model, options)

    async def find_by_pk(
        self,
        model: ModelDescriptor | str,
        identifier: Any,
        options: QueryOptions | None = None,
        connection: AsyncConnection | None = None,
    ) -> dict[str, Any] | None:
        model = self.registry.resolve(model)
        async with self._reader(connection) as qi:
            return await queries.find_by_pk(qi, model, identifier, options)

    async def count(
        self,
        model: ModelDescriptor | str,
        options: QueryOptions | None = None,
        connection: AsyncConnection | None = None,
    ) -> int:
        model = self.registry.resolve(model)
        async with self._reader(connection) as qi:
            return await queries.count(qi, model, options)

    # --- writes --------------------------------------------------------------

    async def create_entity(
        self,
        model: ModelDescriptor | str,
        data: Mapping[str, Any],
        fields: Mapping[str, Any] | None = None,
        connection: AsyncConnection | None = None,
    ) -> dict[str, Any]:
        """Create an entity with its nested associated entities.

        See pg_modelkit.database.writer.create_entity().
        """
        return await create_entity(self, model, data, fields, connection)

    # --- schema --------------------------------------------------------------

    async def sync(self, options: SyncOptions | None = None) -> None:
        await self.synchronizer.sync(options)

    async def sync_model(self, model: ModelDescriptor | str, options: SyncOptions | None = None) -> None:
        await self.synchronizer.sync_model(model, options)

    async def sync_view(self, model: ModelDescriptor | str, options: SyncOptions | None = None) -> None:
        await self.synchronizer.sync_view(model, options)

    async def sync_indices(self, model: ModelDescriptor | str, options: SyncOptions | None = None) -> None:
        await self.synchronizer.sync_indices(model, options)

    async def drop(self, model: ModelDescriptor | str, cascade: bool = False) -> None:
        await self.synchronizer.drop(model, cascade)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await dispose_engine(self.engine)


class DatabaseOptions(BaseModel):
    """Options of the first database() call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    conn_str: SecretStr | None = Field(
        default=None, description="Connection string; DB_CONN_STR is used when unset"
    )
    models_path: str | None = Field(
        default=None, description="Dotted name of the models package; DB_MODELS_PATH when unset"
    )
    registry: ModelRegistry | None = Field(
        default=None, description="Registry to load models into; a new one when unset"
    )
    settings: Settings | None = Field(
        default=None, description="Settings to use instead of loading them from the environment"
    )


# Module-level singleton state
_database: Database | None = None
_lock = threading.Lock()


def database(options: DatabaseOptions | None = None) -> Database:
    """Return the process-wide database handle, creating it on first call.

    Args:
        options: Required on the first call; ignored afterwards.

    Returns:
        The shared Database.

    Raises:
        ConfigurationError: If the first call has no options, or no
            connection string or models path can be resolved.
    """
    global _database

    with _lock:
        if _database is not None:
            return _database

        if options is None:
            raise ConfigurationError("First call of database() must provide valid options!")

        settings = options.settings or get_settings()
        conn_str = options.conn_str or settings.database.conn_str
        if conn_str is None or not conn_str.get_secret_value():
            raise ConfigurationError(
                "Database connection string is missing! Pass conn_str or set DB_CONN_STR."
            )

        models_path = options.models_path or settings.database.models_path
        if not models_path:
            raise ConfigurationError(
                "Models path is missing! Pass models_path or set DB_MODELS_PATH."
            )

        registry = options.registry if options.registry is not None else ModelRegistry()
        registry.load_models(models_path)
        registry.build()

        database_settings = settings.database.model_copy(
            update={"conn_str": conn_str, "models_path": models_path}
        )
        engine = build_engine(database_settings, settings.logging)

        _database = Database(engine, registry, settings)
        logger.info(f"Database initialized with {len(registry)} models")
        return _database


async def reset_database() -> None:
    """Dispose and forget the shared handle."""
    global _database

    with _lock:
        handle, _database = _database, None

    if handle is not None:
        await handle.dispose()
