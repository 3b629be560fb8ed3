"""
Watchdog management commands.

Every command exits with an explicit code (see ExitCode): 0 on success,
4 when the watchdog was already in the requested state, 1 on failure.
"""

import json
import logging

import click

from accelwatch.config.app import AppConfig
from accelwatch.errors import (
    ContainerAbsent,
    ContainerCommandError,
    ContainerEngineError,
    DuplicateInstance,
    WatchdogStartError,
    WatchdogStopError,
)
from accelwatch.models import ExitCode
from accelwatch.utils.status import format_status_message
from accelwatch.watchdog import run_watchdog

from .utils import finish, get_lifecycle, setup_logging

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output in the watchdog log",
)
@click.pass_context
def start(ctx: click.Context, verbose: bool) -> None:
    """Start the accelerator watchdog in the background."""
    setup_logging(verbose)
    lifecycle = get_lifecycle(ctx)

    try:
        pid = lifecycle.start(verbose=verbose)
    except DuplicateInstance as e:
        finish(ExitCode.ALREADY, f"Watchdog is already running (PID: {e.pid})", err=True)
    except ContainerAbsent as e:
        finish(ExitCode.FAILURE, f"Error: {e}, nothing to supervise", err=True)
    except (WatchdogStartError, ContainerEngineError) as e:
        finish(ExitCode.FAILURE, f"Error starting watchdog: {e}", err=True)

    click.echo(f"✓ Watchdog started (PID: {pid})")
    click.echo(f"  Logs: {lifecycle.config.log_file}")
    finish(ExitCode.OK)


@click.command()
@click.option(
    "--with-container",
    is_flag=True,
    help="Also stop the supervised container",
)
@click.pass_context
def stop(ctx: click.Context, with_container: bool) -> None:
    """Stop the accelerator watchdog."""
    lifecycle = get_lifecycle(ctx)
    name = lifecycle.target.container_name

    try:
        was_running = lifecycle.stop()
    except WatchdogStopError as e:
        finish(ExitCode.FAILURE, f"Error: {e}", err=True)

    if was_running:
        click.echo("✓ Watchdog stopped")
    else:
        click.echo("Watchdog is not running")

    container_stopped = False
    if with_container:
        try:
            container_stopped = lifecycle.containers.stop(name)
        except ContainerAbsent:
            click.echo(f"Container {name} does not exist")
        except (ContainerCommandError, ContainerEngineError) as e:
            finish(ExitCode.FAILURE, f"Error stopping container: {e}", err=True)
        else:
            if container_stopped:
                click.echo(f"✓ Container {name} stopped")
            else:
                click.echo(f"Container {name} is not running")

    if was_running or container_stopped:
        finish(ExitCode.OK)
    finish(ExitCode.ALREADY)


@click.command()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output in the watchdog log",
)
@click.pass_context
def restart(ctx: click.Context, verbose: bool) -> None:
    """Restart the container and the watchdog."""
    setup_logging(verbose)
    lifecycle = get_lifecycle(ctx)
    click.echo("Restarting accelerator environment...")

    try:
        pid = lifecycle.restart(verbose=verbose)
    except ContainerAbsent as e:
        finish(ExitCode.FAILURE, f"Error: {e}", err=True)
    except DuplicateInstance as e:
        finish(ExitCode.FAILURE, f"Error: another watchdog started concurrently (PID {e.pid})", err=True)
    except (
        WatchdogStartError,
        WatchdogStopError,
        ContainerCommandError,
        ContainerEngineError,
    ) as e:
        finish(ExitCode.FAILURE, f"Error restarting: {e}", err=True)

    click.echo(f"✓ Restarted (watchdog PID: {pid})")
    finish(ExitCode.OK)


@click.command()
@click.option(
    "--no-probe",
    is_flag=True,
    help="Skip the accelerator responsiveness check",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Output status as JSON",
)
@click.pass_context
def status(ctx: click.Context, no_probe: bool, as_json: bool) -> None:
    """Show container, watchdog and accelerator status."""
    lifecycle = get_lifecycle(ctx)
    report = lifecycle.status(probe=not no_probe)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        click.echo(format_status_message(report))

    finish(ExitCode.OK if report.watchdog_alive else ExitCode.NOT_RUNNING)


@click.command()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output",
)
@click.option(
    "--max-cycles",
    type=int,
    default=None,
    help="Stop after this many poll cycles",
)
@click.pass_context
def run(ctx: click.Context, verbose: bool, max_cycles: int | None) -> None:
    """Run the watchdog in the foreground."""
    config: AppConfig = ctx.obj["config"]
    code = run_watchdog(config, verbose=verbose, foreground=True, max_cycles=max_cycles)

    if code is ExitCode.ALREADY:
        finish(code, "Watchdog is already running for this workspace", err=True)
    if code is ExitCode.TARGET_ABSENT:
        finish(code, "Container does not exist, watchdog exited")
    finish(code)
