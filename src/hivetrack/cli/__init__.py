"""
Hivetrack CLI entry point.
"""

import click

from hivetrack.config.app import load_config
from hivetrack.utils.logging import setup_cli_logging

from .agents import agents
from .config import config
from .daemon import start, status
from .events import events


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True),
    help="Path to custom configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_file: str | None, verbose: bool) -> None:
    """Hivetrack - lifecycle tracking for coding agents."""
    setup_cli_logging(verbose)
    # Store config in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    try:
        ctx.obj["config"] = load_config(config_file)
    except ValueError as e:
        raise click.ClickException(str(e)) from e


# Register commands
cli.add_command(start)
cli.add_command(status)
cli.add_command(agents)
cli.add_command(events)
cli.add_command(config)
