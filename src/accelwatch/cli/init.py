"""
Workspace initialization command.
"""

from pathlib import Path

import click

from accelwatch.config.app import default_config_file, generate_default_config
from accelwatch.models import ExitCode

from .utils import finish


@click.command()
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Where to write the config file (default: <workspace>/config.yaml)",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def init(config_path: str | None, force: bool) -> None:
    """Write a default configuration file."""
    path = Path(config_path).expanduser() if config_path else default_config_file()

    if path.exists() and not force:
        finish(ExitCode.ALREADY, f"Config already exists: {path} (use --force to overwrite)")

    try:
        written = generate_default_config(path)
    except OSError as e:
        finish(ExitCode.FAILURE, f"Failed to write config: {e}", err=True)

    click.echo(f"✓ Wrote default config to {written}")
    finish(ExitCode.OK)
