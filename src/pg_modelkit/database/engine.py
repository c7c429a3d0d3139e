"""SQLAlchemy async engine management and SQL statement logging."""

import logging
import time
from typing import Any

import sqlparse
import typer
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pg_modelkit.config import DatabaseSettings, LoggingSettings

logger = logging.getLogger(__name__)

_QUERY_START = "pg_modelkit_query_start"


def format_sql(statement: str, prettify: bool = False, colorize: bool = False) -> str:
    """Format an SQL statement for logging.

    Args:
        statement: SQL text.
        prettify: Re-indent and upper-case keywords with sqlparse.
        colorize: Color the statement for terminal output.

    Returns:
        Formatted statement.
    """
    if prettify:
        statement = sqlparse.format(statement, reindent=True, keyword_case="upper")
    if colorize:
        statement = typer.style(statement, fg=typer.colors.CYAN)
    return statement


def install_sql_logging(engine: AsyncEngine, settings: LoggingSettings) -> None:
    """Log every statement executed through the engine with its duration.

    Args:
        engine: The async engine to instrument.
        settings: Logging settings (prettify/colorize).
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        conn.info.setdefault(_QUERY_START, []).append(time.perf_counter())
        logger.debug(
            "SQL Query: %s",
            format_sql(statement, settings.prettify, settings.colorize),
        )

    @event.listens_for(sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        started = conn.info.get(_QUERY_START)
        if not started:
            return
        elapsed = (time.perf_counter() - started.pop()) * 1000
        logger.debug(f"executed in {elapsed:.2f} ms")


def build_engine(
    settings: DatabaseSettings,
    logging_settings: LoggingSettings | None = None,
) -> AsyncEngine:
    """Create async SQLAlchemy engine with connection pool.

    Args:
        settings: Database configuration settings.
        logging_settings: When given, statement logging is installed.

    Returns:
        AsyncEngine configured for asyncpg with connection pooling.
    """
    connect_args: dict[str, Any] = {}
    if settings.statement_timeout:
        connect_args["server_settings"] = {"statement_timeout": str(settings.statement_timeout)}

    engine = create_async_engine(
        settings.async_url,
        pool_size=settings.pool_size,
        pool_timeout=settings.pool_timeout,
        pool_pre_ping=True,  # Health check connections before use
        echo=settings.echo,
        connect_args=connect_args,
    )

    if logging_settings is not None:
        install_sql_logging(engine, logging_settings)

    return engine


async def create_engine(
    settings: DatabaseSettings,
    logging_settings: LoggingSettings | None = None,
) -> AsyncEngine:
    """Async variant of build_engine() for use inside running event loops."""
    return build_engine(settings, logging_settings)


async def dispose_engine(engine: AsyncEngine) -> None:
    """Dispose of the engine and close all connections.

    Args:
        engine: The async engine to dispose.
    """
    await engine.dispose()


async def test_connection(engine: AsyncEngine) -> None:
    """Test database connectivity by executing a simple query.

    Args:
        engine: The async engine to test.

    Raises:
        Exception: If connection fails.
    """
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
