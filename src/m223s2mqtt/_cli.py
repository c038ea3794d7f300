"""Command-line entry point (Typer-based).

:func:`build_cli` constructs a Typer app that parses the bridge's
options (``--version``, ``--log-level``, ``--log-format``,
``--env-file``) and hands off to the async lifecycle.

Exit codes:

- ``0`` clean shutdown
- ``1`` configuration error
- ``3`` runtime error, including an unavailable system bus
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import TYPE_CHECKING, Annotated, get_args

import typer
from pydantic import ValidationError

from m223s2mqtt._settings import LoggingSettings

if TYPE_CHECKING:
    from m223s2mqtt._app import App
    from m223s2mqtt._settings import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


def build_cli(app: App) -> typer.Typer:
    """Construct a Typer CLI around *app*."""
    name = app.name
    version = app.version

    cli = typer.Typer(help=f"{name} v{version}: {app.description}")

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"{name} v{version}")
            raise typer.Exit()

        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        try:
            settings: Settings = app.settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )
        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )

        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(app._run_async(settings=settings))
        except SystemExit:
            raise
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def main() -> None:
    """Console-script entry point."""
    from m223s2mqtt import App, __version__

    App(version=__version__).cli()
