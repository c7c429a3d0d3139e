"""Database layer: engine, query execution, schema sync and the handle."""

from pg_modelkit.database.engine import build_engine, create_engine, dispose_engine, format_sql
from pg_modelkit.database.queries import count, find_all, find_by_pk, find_one, fix_numbers
from pg_modelkit.database.interface import QueryInterface, normalize_returning
from pg_modelkit.database.relationships import schema_graph, sync_order, to_graph, view_levels
from pg_modelkit.database.schema import (
    check_view_definition,
    create_index_sql,
    drop_index_sql,
    drop_view_sql,
)
from pg_modelkit.database.sync import ModelSynchronizer, SyncOptions
from pg_modelkit.database.writer import create_entity
from pg_modelkit.database.handle import Database, DatabaseOptions, database, reset_database

__all__ = [
    # Engine
    "build_engine",
    "create_engine",
    "dispose_engine",
    "format_sql",
    # Queries
    "QueryInterface",
    "count",
    "find_all",
    "find_by_pk",
    "find_one",
    "fix_numbers",
    "normalize_returning",
    # Schema
    "ModelSynchronizer",
    "SyncOptions",
    "check_view_definition",
    "create_index_sql",
    "drop_index_sql",
    "drop_view_sql",
    "schema_graph",
    "sync_order",
    "to_graph",
    "view_levels",
    # Entities
    "create_entity",
    # Handle
    "Database",
    "DatabaseOptions",
    "database",
    "reset_database",
]
