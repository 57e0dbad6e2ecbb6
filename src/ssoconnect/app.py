"""Typer application and CLI entry point for ssoconnect.

This module wires together the top-level Typer application and registers the
built-in sub-commands (``connector``, ``discover``, ``login``, ``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
:class:`~ssoconnect.exceptions.SsoConnectError` exits with the error's exit
code; any other exception is written to a crash log under the data
directory.

See Also:
    :mod:`ssoconnect.config`: Global configuration resolution.
    :mod:`ssoconnect.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from ssoconnect import __version__
from ssoconnect.exit_codes import EXIT_GENERIC_FAILURE

if TYPE_CHECKING:
    from ssoconnect.output import OutputFormat


app = typer.Typer(
    name="ssoconnect",
    help="Manage and test OpenID Connect single sign-on connectors.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"ssoconnect {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, no_color: bool) -> None:
    """Route library log records to stderr through Rich when ``--verbose`` is set."""
    if not verbose:
        return
    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger = logging.getLogger("ssoconnect")
    logger.handlers = [h for h in logger.handlers if not isinstance(h, RichHandler)]
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def _configured_format() -> OutputFormat:
    """Return the ``output.format`` default from the global config.

    An unreadable config file falls back to ``AUTO``.
    """
    from ssoconnect.config import load_global_config
    from ssoconnect.exceptions import ConfigError
    from ssoconnect.output import OutputFormat

    try:
        return OutputFormat(load_global_config().output.format)
    except ConfigError:
        return OutputFormat.AUTO


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
    server_url: Optional[str] = typer.Option(
        None,
        "--server-url",
        help="Base URL of the web tier hosting the SSO callback page.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~ssoconnect.output.OutputManager` from
    CLI flags, configures logging for ``--verbose``, and stores shared
    options in ``ctx.obj`` for sub-commands.
    """
    from ssoconnect.output import OutputFormat, OutputManager, set_output

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = _configured_format()

    set_output(
        OutputManager(
            format=fmt,
            no_color=no_color,
            quiet=quiet,
            verbose=verbose,
        )
    )
    _configure_logging(verbose, no_color)

    ctx.ensure_object(dict)
    ctx.obj["server_url"] = server_url
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _register_commands() -> None:
    from ssoconnect.commands.config import config_app
    from ssoconnect.commands.connector import connector_app
    from ssoconnect.commands.discover import discover_command
    from ssoconnect.commands.login import login_command

    app.add_typer(connector_app, name="connector", help="Manage SSO connectors.")
    app.command("discover")(discover_command)
    app.command("login")(login_command)
    app.add_typer(config_app, name="config", help="Configuration management.")


_register_commands()


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from ssoconnect.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``ssoconnect`` console script.

    Unhandled :class:`~ssoconnect.exceptions.SsoConnectError` instances
    cause a clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

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
        sys.exit(130)
    except Exception as exc:
        from ssoconnect.exceptions import SsoConnectError
        from ssoconnect.output import error

        if isinstance(exc, SsoConnectError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
