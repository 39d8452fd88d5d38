"""CLI entry-point: Click command group and dispatch."""

from __future__ import annotations

import dataclasses
import logging

import click
from pydantic import ValidationError

from dronewatch.errors import ConfigError, PersistenceError, ReconnectExhaustedError
from dronewatch.models.config import AppSettings
from dronewatch.output.formatter import OutputFormatter

logger = logging.getLogger(__name__)

_NOISY_LOGGERS = ("websockets", "httpx", "httpcore", "uvicorn", "uvicorn.error")

# ---------------------------------------------------------------------------
# Application context (stored in ctx.obj)
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class AppContext:
    """Shared state passed to every Click command via ``@click.pass_obj``.

    :func:`main` creates it before parsing so that errors raised after
    Click has unwound its contexts can still be reported in the chosen
    format and under the right command name.
    """

    output_format: str | None = None
    verbose: bool = False
    database_url: str | None = None
    command: str = "unknown"
    _formatter: OutputFormatter | None = dataclasses.field(default=None, repr=False)
    _settings: AppSettings | None = dataclasses.field(default=None, repr=False)

    @property
    def formatter(self) -> OutputFormatter:
        if self._formatter is None:
            self._formatter = OutputFormatter(force_format=self.output_format)
        return self._formatter

    @property
    def settings(self) -> AppSettings:
        """Environment settings with the root ``--db`` override applied."""
        if self._settings is None:
            try:
                base = AppSettings()
            except ValidationError as exc:
                raise ConfigError(f"Invalid DRONEWATCH_* configuration: {exc}") from exc
            self._settings = base.merge_overrides(database_url=self.database_url)
        return self._settings


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Root Click group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["rich", "json", "quiet"]),
    default=None,
    help="Output format (default: auto-detect)",
)
@click.option("--db", "database_url", default=None, help="Persistence URL (sqlite:///path)")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable verbose logging")
@click.pass_context
def cli(
    ctx: click.Context,
    output_format: str | None,
    database_url: str | None,
    verbose: bool,
) -> None:
    """Relay live drone telemetry and track nearby devices."""
    configure_logging(verbose)
    app_ctx = ctx.ensure_object(AppContext)
    app_ctx.output_format = output_format
    app_ctx.verbose = verbose
    app_ctx.database_url = database_url
    app_ctx.command = ctx.invoked_subcommand or app_ctx.command


# ---------------------------------------------------------------------------
# Register subcommands (lazy imports keep startup fast)
# ---------------------------------------------------------------------------


def _register_commands() -> None:
    from dronewatch.cli.client import send_cmd, watch_cmd
    from dronewatch.cli.query import history_cmd, latest_cmd
    from dronewatch.cli.scan import scan_cmd
    from dronewatch.cli.serve import serve_cmd

    cli.add_command(serve_cmd)
    cli.add_command(watch_cmd)
    cli.add_command(send_cmd)
    cli.add_command(latest_cmd)
    cli.add_command(history_cmd)
    cli.add_command(scan_cmd)


_register_commands()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

_ERROR_CODES: tuple[tuple[type[BaseException], str], ...] = (
    (ConfigError, "config_error"),
    (PersistenceError, "persistence_unavailable"),
    (ReconnectExhaustedError, "reconnect_exhausted"),
    (OSError, "connection_error"),
)


def _error_code(exc: Exception) -> str:
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    return type(exc).__name__


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to the appropriate command handler."""
    app_ctx = AppContext()
    try:
        cli(args=argv, standalone_mode=False, obj=app_ctx)
    except click.exceptions.Exit as exc:
        raise SystemExit(exc.exit_code) from None
    except click.exceptions.Abort:
        raise SystemExit(1) from None
    except click.ClickException as exc:
        exc.show()
        raise SystemExit(exc.exit_code) from None
    except KeyboardInterrupt:
        raise SystemExit(130) from None
    except SystemExit:
        raise
    except Exception as exc:
        logger.debug("Command %s failed", app_ctx.command, exc_info=True)
        app_ctx.formatter.output_error(
            code=_error_code(exc),
            message=str(exc),
            command=app_ctx.command,
        )
        raise SystemExit(1) from exc
