"""
Shared helpers for CLI commands.
"""

import logging
import sys
from typing import NoReturn

import click

from accelwatch.config.app import AppConfig
from accelwatch.lifecycle import WatchdogLifecycle
from accelwatch.models import ExitCode


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for CLI.

    Args:
        verbose: If True, enable DEBUG level logging
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_lifecycle(ctx: click.Context) -> WatchdogLifecycle:
    """Build the lifecycle manager from the config stored on the context."""
    config: AppConfig = ctx.obj["config"]
    return WatchdogLifecycle(config, config_file=ctx.obj.get("config_file"))


def finish(code: ExitCode, message: str | None = None, err: bool = False) -> NoReturn:
    """Print an optional message and exit with an explicit code."""
    if message:
        click.echo(message, err=err)
    sys.exit(int(code))
