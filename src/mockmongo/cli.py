# src/mockmongo/cli.py
"""CLI for inspecting and running the ephemeral mongod outside a test run.

Usage:
    # Show the effective settings, binary and storage engine
    mockmongo info

    # Start one ephemeral mongod and keep it up until Ctrl-C
    mockmongo serve --port=27100

    # Read MOCKMONGO_* from a specific .env file
    mockmongo --env-file=ci.env info

    # Force the engine version when the binary cannot be queried
    mockmongo info --mongod-version=3.0
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError

from mockmongo.config import InterceptionSettings
from mockmongo.errors import MockMongoError
from mockmongo.logging import configure_logging
from mockmongo.mongod import MongodLauncher, find_mongod_binary
from mockmongo.service import ServiceController

app = typer.Typer(
    name="mockmongo",
    help="mockmongo: ephemeral MongoDB for tests.",
    no_args_is_help=True,
)

PortOption = Annotated[int | None, typer.Option("--port", help="First port to try (default 27017).")]
BindOption = Annotated[str | None, typer.Option("--bind-address", help="Address mongod binds to.")]
StorageOption = Annotated[
    Path | None,
    typer.Option("--storage-directory", help="Base directory for per-port data directories."),
]
EngineOption = Annotated[str | None, typer.Option("--storage-engine", help="Storage engine keyword.")]
VersionOption = Annotated[
    str | None,
    typer.Option("--mongod-version", help="mongod version; selects the storage engine."),
]
LogLevelOption = Annotated[str, typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR.")]
JsonLogsOption = Annotated[bool, typer.Option("--json-logs", help="Emit logs as JSON.")]


def _version_callback(value: bool) -> None:
    if value:
        from mockmongo import __version__

        typer.echo(f"mockmongo {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load MOCKMONGO_* variables from a .env file without overriding the environment.

    Raises:
        typer.Exit: If an explicit env_file does not exist
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version and exit."),
    ] = False,
    no_dotenv: Annotated[bool, typer.Option("--no-dotenv", help="Skip loading .env file.")] = False,
    env_file: Annotated[
        Path | None,
        typer.Option("--env-file", help="Path to .env file (skips automatic search)."),
    ] = None,
) -> None:
    """Ephemeral MongoDB for tests."""
    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _load_settings(**options: Any) -> InterceptionSettings:
    overrides = {name: value for name, value in options.items() if value is not None}
    try:
        return InterceptionSettings.from_env(**overrides)
    except ValidationError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e


@app.command()
def info(
    port: PortOption = None,
    bind_address: BindOption = None,
    storage_directory: StorageOption = None,
    storage_engine: EngineOption = None,
    mongod_version: VersionOption = None,
) -> None:
    """Show the effective settings as JSON.

    Queries ``mongod --version`` when neither a version nor a storage
    engine is configured.
    """
    settings = _load_settings(
        port=port,
        bind_address=bind_address,
        storage_directory=storage_directory,
        storage_engine=storage_engine,
        version=mongod_version,
    )
    binary = find_mongod_binary(settings)
    report: dict[str, Any] = settings.model_dump(mode="json")
    report["resolved_binary"] = str(binary) if binary is not None else None

    version = settings.version
    if version is None and settings.storage_engine is None and binary is not None:
        try:
            version = asyncio.run(MongodLauncher(binary).active_version())
        except MockMongoError as e:
            typer.secho(f"Warning: {e}", fg=typer.colors.YELLOW, err=True)
    report["resolved_version"] = version
    report["resolved_storage_engine"] = (
        settings.resolve_storage_engine(version or "") if settings.storage_engine or version else None
    )
    typer.echo(json.dumps(report, indent=2))


@app.command()
def serve(
    port: PortOption = None,
    bind_address: BindOption = None,
    storage_directory: StorageOption = None,
    storage_engine: EngineOption = None,
    mongod_version: VersionOption = None,
    log_level: LogLevelOption = "INFO",
    json_logs: JsonLogsOption = False,
) -> None:
    """Start one ephemeral mongod and keep it running until interrupted."""
    configure_logging(json_output=json_logs, level=log_level)
    settings = _load_settings(
        port=port,
        bind_address=bind_address,
        storage_directory=storage_directory,
        storage_engine=storage_engine,
        version=mongod_version,
    )
    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        typer.echo("Stopped.")
    except MockMongoError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e


async def _serve(settings: InterceptionSettings) -> None:
    launcher = MongodLauncher.from_settings(settings)
    controller = ServiceController(settings, launcher)
    address = await controller.ensure_running()
    typer.secho(f"Ephemeral mongod running at {address.uri}", fg=typer.colors.GREEN)
    typer.echo("Press Ctrl-C to stop.")
    try:
        await asyncio.Event().wait()
    finally:
        controller.signal_idle()
        await launcher.wait_stopped()


def main() -> None:
    """Entry point for mockmongo CLI."""
    app()


if __name__ == "__main__":
    main()
