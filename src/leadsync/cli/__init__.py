"""leadsync CLI.

Built with Typer; commands live in ``cli/commands`` and are registered on
``app`` here. Global options (config file, logging) are handled by the app
callback before any command runs.

Package structure:
    cli/
    ├── __init__.py           # app assembly and global options
    ├── helpers.py            # option state, config, factories, watcher
    ├── output.py             # Rich formatting
    └── commands/
        ├── run.py            # run
        ├── jobs.py           # list, status, cancel, resume
        └── export.py         # export
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from leadsync import __version__

from . import helpers as helpers
from .commands import cancel, export, list_jobs, resume, run, status
from .helpers import configure_global_logging, set_cli_options
from .output import console

app = typer.Typer(
    name="leadsync",
    help="Launch and follow lead-scraper jobs",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"leadsync v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML config file",
            envvar="LEADSYNC_CONFIG",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="LEADSYNC_LOG_LEVEL",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            help="Log format: console or json",
            envvar="LEADSYNC_LOG_FORMAT",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            help="Path for log file output",
            envvar="LEADSYNC_LOG_FILE",
        ),
    ] = None,
) -> None:
    """leadsync - launch and follow lead-scraper jobs."""
    set_cli_options(config, log_level, log_format, log_file)
    configure_global_logging()


app.command()(run)
app.command(name="list")(list_jobs)
app.command()(status)
app.command()(cancel)
app.command()(resume)
app.command()(export)

__all__ = ["app", "console", "main"]
