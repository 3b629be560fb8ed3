"""
accelwatch CLI entry point.
"""

import click

from accelwatch.config.app import load_config

from .daemon import restart, run, start, status, stop
from .init import init


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to custom configuration file",
)
@click.option(
    "--container",
    help="Override the supervised container name",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, container: str | None) -> None:
    """accelwatch - watchdog and auto-recovery for a containerized accelerator."""
    ctx.ensure_object(dict)
    if ctx.invoked_subcommand == "init":
        return
    try:
        ctx.obj["config"] = load_config(
            config, cli_overrides={"watchdog.container_name": container}
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["config_file"] = config


cli.add_command(start)
cli.add_command(stop)
cli.add_command(restart)
cli.add_command(status)
cli.add_command(run)
cli.add_command(init)
