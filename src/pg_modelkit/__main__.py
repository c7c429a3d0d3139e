"""Command line interface for pg-modelkit."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Annotated

import typer

from pg_modelkit.config import get_settings, set_env_file_path
from pg_modelkit.database.engine import create_engine, dispose_engine, test_connection
from pg_modelkit.database.relationships import schema_graph, sync_order
from pg_modelkit.database.sync import ModelSynchronizer, SyncOptions
from pg_modelkit.errors import ModelKitError
from pg_modelkit.models.registry import ModelRegistry

app = typer.Typer(
    name="pg-modelkit",
    no_args_is_help=True,
)


def validate_env_file(ctx: typer.Context, value: str | None) -> str | None:
    """Validate that the specified env file exists.

    Args:
        ctx: Typer context for handling shell completion.
        value: Path to env file, or None if not specified.

    Returns:
        Resolved absolute path to the env file, or None if not specified.

    Raises:
        typer.BadParameter: If the file doesn't exist or is not a file.
    """
    # Skip validation during shell completion
    if ctx.resilient_parsing:
        return None

    if value is None:
        return None

    env_path = Path(value)
    if not env_path.exists():
        raise typer.BadParameter(f"Environment file not found: {value}")
    if not env_path.is_file():
        raise typer.BadParameter(f"Path is not a file: {value}")
    return str(env_path.resolve())


def resolve_default_env_file(env_file: str | None) -> str | None:
    """Resolve default .env file if --env-file not specified.

    Args:
        env_file: Explicitly provided env file path, or None.

    Returns:
        The provided path if set, otherwise the resolved path to .env
        in the current working directory if it exists, or None.
    """
    if env_file is not None:
        return env_file

    default_env = Path.cwd() / ".env"
    if default_env.exists() and default_env.is_file():
        return str(default_env.resolve())
    return None


def setup_logging(level: str, format_type: str) -> None:
    """Configure logging based on settings.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        format_type: Log format type ('json' or 'text').
    """
    if format_type == "json":
        log_format = (
            '{"time": "%(asctime)s", "name": "%(name)s", '
            '"level": "%(levelname)s", "message": "%(message)s"}'
        )
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level.upper(),
        format=log_format,
        stream=sys.stderr,  # stdout is reserved for command output
    )


def load_registry(models: str | None) -> ModelRegistry:
    """Load the models package given on the command line or in DB_MODELS_PATH.

    Raises:
        typer.BadParameter: If no models package is configured.
    """
    settings = get_settings()
    models_path = models or settings.database.models_path
    if not models_path:
        raise typer.BadParameter("Models package is required (--models or DB_MODELS_PATH)")

    registry = ModelRegistry()
    registry.load_models(models_path)
    return registry


@app.callback()
def main(
    env_file: Annotated[
        str | None,
        typer.Option(
            "--env-file",
            help="Path to .env file (default: .env in current directory)",
            callback=validate_env_file,
            metavar="PATH",
        ),
    ] = None,
) -> None:
    """Declare PostgreSQL tables and views, sync them, and query them."""
    set_env_file_path(resolve_default_env_file(env_file))

    settings = get_settings()
    setup_logging(settings.logging.log_level, settings.logging.log_format)


ModelsOption = Annotated[
    str | None,
    typer.Option("--models", "-m", help="Dotted name of the models package (default: DB_MODELS_PATH)"),
]


@app.command()
def sync(
    models: ModelsOption = None,
    no_views: Annotated[bool, typer.Option("--no-views", help="Skip view synchronization")] = False,
    without_drop: Annotated[
        bool, typer.Option("--without-drop", help="Create views without dropping them first")
    ] = False,
    force: Annotated[bool, typer.Option("--force", help="Drop tables before creating them")] = False,
    cascade: Annotated[bool, typer.Option("--cascade", help="Drop with CASCADE")] = False,
    safe: Annotated[
        bool, typer.Option("--safe", help="Create indices with IF NOT EXISTS instead of re-creating them")
    ] = False,
) -> None:
    """Create missing tables, re-create indices and views."""
    settings = get_settings()
    registry = load_registry(models)
    options = SyncOptions(
        force=force,
        with_no_views=no_views,
        without_drop=without_drop,
        cascade=cascade,
        safe=safe,
    )

    async def run_sync() -> bool:
        try:
            engine = await create_engine(settings.database, settings.logging)
        except ValueError as e:
            typer.echo(f"Sync failed: {e}", err=True)
            return False

        try:
            await ModelSynchronizer(engine, registry).sync(options)
            return True
        except ModelKitError as e:
            typer.echo(f"Sync failed: {e.message}", err=True)
            if e.suggestion:
                typer.echo(f"Suggestion: {e.suggestion}", err=True)
            return False
        finally:
            await dispose_engine(engine)

    if asyncio.run(run_sync()):
        typer.echo(f"Synced {len(registry)} models")
        raise typer.Exit(0)
    else:
        raise typer.Exit(1)


@app.command()
def graph(models: ModelsOption = None) -> None:
    """Print models in synchronization order."""
    registry = load_registry(models)

    if schema_graph(registry).is_cycled():
        typer.echo("Model dependencies contain a cycle", err=True)
        raise typer.Exit(1)

    for model in sync_order(registry):
        typer.echo(f"{model.name} ({model.kind.value}: {model.table_name})")


@app.command()
def test() -> None:
    """Test database connection and exit."""
    # env_file is set by the callback
    settings = get_settings()

    async def run_test() -> bool:
        try:
            engine = await create_engine(settings.database)
        except ValueError as e:
            typer.echo(f"Connection failed: {e}", err=True)
            return False

        try:
            await test_connection(engine)
            return True
        except Exception as e:
            typer.echo(f"Connection failed: {e}", err=True)
            return False
        finally:
            await dispose_engine(engine)

    if asyncio.run(run_test()):
        typer.echo("Connection successful")
        raise typer.Exit(0)
    else:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
