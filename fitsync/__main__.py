"""Entry point for fitsync."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from fitsync import __version__
from fitsync.commands.history import history_command
from fitsync.commands.importing import import_command
from fitsync.commands.log import log_command
from fitsync.commands.records import export_command, records_command
from fitsync.core.config import (
    ConfigError,
    default_config_path,
    engine_settings_from_config,
    load_config,
    resolve_database_path,
)
from fitsync.core.state import CLIState

app = typer.Typer(
    add_completion=False,
    help="Import and reconcile fitness records",
    invoke_without_command=True,
)


def configure_logging(console: Console, verbose: bool, quiet: bool) -> None:
    """Route package logging through a RichHandler on the shared console."""
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logger = logging.getLogger("fitsync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = RichHandler(console=console, show_path=False, markup=False, rich_tracebacks=verbose)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output JSON where available"),
    plain_output: bool = typer.Option(
        False,
        "--plain",
        help="Output plain text (no rich formatting/tables)",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    database: Optional[Path] = typer.Option(None, "--database", help="Path to the SQLite record store"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Quiet output"),
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    """Initialize global CLI state."""
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if json_output and plain_output:
        typer.echo("Options --json and --plain are mutually exclusive.")
        raise typer.Exit(code=2)

    cfg_path = (config or default_config_path()).expanduser().resolve()
    try:
        cfg = load_config(cfg_path)
        settings = engine_settings_from_config(cfg)
    except ConfigError as exc:
        typer.echo(f"Config error: {exc}")
        raise typer.Exit(code=2)

    console = Console(
        quiet=quiet,
        no_color=plain_output,
        log_time=False,
        log_path=False,
    )
    configure_logging(Console(stderr=True, no_color=plain_output), verbose, quiet)

    ctx.obj = CLIState(
        json_output=(json_output and not plain_output),
        plain_output=plain_output,
        verbose=verbose,
        quiet=quiet,
        config_path=cfg_path,
        config=cfg,
        console=console,
        settings=settings,
        database_path=resolve_database_path(cfg, explicit=database),
    )

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)


app.command("import")(import_command)
app.command("log")(log_command)
app.command("records")(records_command)
app.command("history")(history_command)
app.command("export")(export_command)


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
