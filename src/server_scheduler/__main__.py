# server_scheduler/__main__.py
"""
Main entry point for the Server Scheduler command-line interface.

This module sets up the application environment (settings, logging, the
database), assembles the `click` commands and launches them. The `run`
command starts the control loop that schedules every autostart server's
events each day.
"""

import datetime
import logging
import sys

import click

from . import __version__
from .cli.utils import _INFO_PREFIX, _OK_PREFIX, format_server_line
from .config import app_name_title
from .config.settings import Settings
from .context import AppContext
from .core.controller import ScheduleController
from .core.events import EventType
from .core.scheduler import calculate_delay
from .logging import log_separator, setup_logging


# --- Main Click Group Definition ---
@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(
    __version__, "-v", "--version", message=f"{app_name_title} %(version)s"
)
@click.pass_context
def cli(ctx: click.Context):
    """Schedules daily start, stop and console events for game servers.

    Servers run inside terminal multiplexer sessions (screen or tmux).
    Their events are read from the database and fire at a time of day,
    every day.
    """
    ctx.ensure_object(dict)
    if "app_context" in ctx.obj:
        return

    try:
        settings = Settings()
        logger = setup_logging(
            log_dir=settings.resolve_path(settings.get("paths.logs")),
            log_keep=settings.get("retention.logs"),
            file_log_level=settings.get("logging.file_level"),
            cli_log_level=settings.get("logging.cli_level"),
            force_reconfigure=True,
        )
        log_separator(logger, app_name=app_name_title, app_version=__version__)
        logger.info(f"Starting {app_name_title} v{__version__} (CLI context)...")

        app_context = AppContext(settings=settings)
        app_context.load()
    except Exception as setup_e:
        logging.getLogger("server_scheduler_critical_setup").critical(
            f"An unrecoverable error occurred during CLI application startup: {setup_e}",
            exc_info=True,
        )
        click.secho(f"CRITICAL STARTUP ERROR: {setup_e}", fg="red", bold=True)
        sys.exit(1)

    ctx.obj["app_context"] = app_context


@cli.command("run")
@click.option(
    "--no-console", is_flag=True, help="Do not start the interactive console."
)
@click.option(
    "--console-only",
    is_flag=True,
    help="Only run the interactive console; schedule no events.",
)
@click.pass_context
def run(ctx: click.Context, no_console: bool, console_only: bool):
    """Runs the scheduler until interrupted or told to exit."""
    app_context = ctx.obj["app_context"]
    controller = ScheduleController(
        app_context, run_console=not no_console, console_only=console_only
    )
    if not no_console:
        click.echo(f"{_INFO_PREFIX}Type 'help' for a list of console commands.")
    controller.start()
    click.echo(f"{_OK_PREFIX}Scheduler stopped.")


@cli.command("servers")
@click.pass_context
def list_servers(ctx: click.Context):
    """Lists every server and its session name."""
    servers = ctx.obj["app_context"].repository.get_all_servers()
    if not servers:
        click.echo(f"{_INFO_PREFIX}No servers configured.")
        return
    for server in servers:
        click.echo(format_server_line(server))


@cli.command("events")
@click.option("--server", "sid", type=int, help="Only show this server's events.")
@click.pass_context
def list_events(ctx: click.Context, sid):
    """Lists stored events with the delay until each next fires."""
    repository = ctx.obj["app_context"].repository
    if sid is not None:
        server = repository.get_server(sid)
        if server is None:
            raise click.ClickException(f"No server with id {sid}.")
        servers = [server]
    else:
        servers = repository.get_all_servers()

    now = datetime.datetime.now().time()
    for server in servers:
        click.secho(f"{server.session_name} (id {server.sid})", bold=True)
        rows = repository.get_event_rows(server)
        if not rows:
            click.echo("  no events")
        for row in rows:
            try:
                label = EventType(row.event_type).name
            except ValueError:
                label = f"UNKNOWN({row.event_type})"
            delay = calculate_delay(row.time, now)
            click.echo(f"  {row.time}  {label:<13} in {delay}  {row.args}")


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Creates the database tables and the event type rows."""
    ctx.obj["app_context"].repository.seed_event_types()
    click.echo(f"{_OK_PREFIX}Database initialized.")


def main():
    """Main execution function wrapped for final, fatal exception handling."""
    try:
        cli()
    except Exception as e:
        # Last-resort catch-all for errors not handled by Click.
        logger = logging.getLogger("server_scheduler_critical_fatal")
        logger.critical("A fatal, unhandled error occurred.", exc_info=True)
        click.secho(
            f"\nFATAL UNHANDLED ERROR: {type(e).__name__}: {e}", fg="red", bold=True
        )
        click.secho("Please check the logs for more details.", fg="yellow")
        sys.exit(1)


if __name__ == "__main__":
    main()
