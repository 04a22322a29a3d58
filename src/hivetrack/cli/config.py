"""
Configuration commands.
"""

from pathlib import Path

import click
import yaml

from hivetrack.config.app import DEFAULT_CONFIG_FILE, generate_default_config

from .utils import get_config


@click.group()
def config() -> None:
    """Manage the hivetrack configuration file."""
    pass


@config.command("init")
@click.option(
    "--path",
    "config_file",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Where to write the config file",
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config(config_file: str, force: bool) -> None:
    """Write a config file populated with defaults."""
    config_path = Path(config_file).expanduser()
    if config_path.exists() and not force:
        click.echo(f"Config file already exists: {config_path} (use --force to overwrite)", err=True)
        raise SystemExit(1)

    generate_default_config(config_file)
    click.echo(f"Wrote default configuration to {config_path}")


@config.command("show")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration."""
    effective = get_config(ctx).model_dump(mode="python", exclude_none=True)
    click.echo(yaml.safe_dump(effective, default_flow_style=False, sort_keys=False).rstrip())
