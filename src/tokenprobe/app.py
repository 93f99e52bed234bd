"""Typer application and CLI entry point for tokenprobe.

The root callback configures output and logging from the global flags; the
sub-commands live in :mod:`tokenprobe.commands`. :func:`main` is the
console-script entry point declared in ``pyproject.toml``. It maps
:class:`~tokenprobe.exceptions.TokenprobeError` to its exit code and writes
a crash log for anything unexpected.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime

import typer
from rich.console import Console
from rich.logging import RichHandler

from tokenprobe import __version__
from tokenprobe.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="tokenprobe",
    help="Run OAuth 2.0 authorization-code flows against configured clients.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

from tokenprobe.commands.clients import clients_app  # noqa: E402
from tokenprobe.commands.config import config_app  # noqa: E402
from tokenprobe.commands.flow import login_command, manual_command, url_command  # noqa: E402
from tokenprobe.commands.presets import presets_app  # noqa: E402

app.command("login")(login_command)
app.command("manual")(manual_command)
app.command("url")(url_command)
app.add_typer(clients_app, name="clients", help="Manage client configurations.")
app.add_typer(presets_app, name="presets", help="Manage service presets.")
app.add_typer(config_app, name="config", help="View and modify global settings.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tokenprobe {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool, no_color: bool) -> None:
    """Send ``tokenprobe.*`` log records to stderr through Rich."""
    logger = logging.getLogger("tokenprobe")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~tokenprobe.output.OutputManager` and the
    log handler, and keeps the flags in ``ctx.obj`` for sub-commands.
    """
    from tokenprobe.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    _setup_logging(verbose, no_color)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Turn SIGINT into ``KeyboardInterrupt`` so open flows are cancelled on the way out."""
    signal.signal(signal.SIGINT, signal.default_int_handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under the data directory and return its path."""
    from tokenprobe.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``tokenprobe`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from tokenprobe.exceptions import TokenprobeError
        from tokenprobe.output import error

        if isinstance(exc, TokenprobeError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
