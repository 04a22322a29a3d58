"""
Daemon commands: run the hook server in the foreground and check its health.
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
import httpx

from hivetrack.runner import run_hivetrack
from hivetrack.servers.http import HookServerStartError

from .utils import get_config

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output",
)
@click.option("--port", type=int, help="Override the hook server port")
@click.pass_context
def start(ctx: click.Context, verbose: bool, port: int | None) -> None:
    """Run the hivetrack daemon in the foreground."""
    config = get_config(ctx)
    config_file = ctx.obj.get("config_file")
    cli_overrides = {"hook_server.port": port} if port else None

    click.echo(
        f"Starting hivetrack on http://{config.hook_server.host}:"
        f"{port or config.hook_server.port} (Ctrl+C to stop)"
    )
    try:
        asyncio.run(
            run_hivetrack(
                config_path=Path(config_file) if config_file else None,
                verbose=verbose,
                cli_overrides=cli_overrides,
            )
        )
    except HookServerStartError as e:
        click.echo(f"Failed to start hook server: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        click.echo(f"Fatal error: {e}", err=True)
        sys.exit(1)


@click.command()
@click.option("--timeout", default=2.0, help="Probe timeout in seconds")
@click.pass_context
def status(ctx: click.Context, timeout: float) -> None:
    """Check whether the hook server is accepting requests."""
    config = get_config(ctx)
    url = f"http://{config.hook_server.host}:{config.hook_server.port}/"

    try:
        response = httpx.options(url, timeout=timeout)
    except httpx.HTTPError as e:
        click.echo(f"Hivetrack is not running ({url}): {e}")
        sys.exit(1)

    if response.status_code != 200:
        click.echo(f"Unexpected response from {url}: HTTP {response.status_code}", err=True)
        sys.exit(1)

    click.echo(f"Hivetrack is running at {url}")
    if config.websocket.enabled:
        click.echo(f"UI notifications: ws://{config.websocket.host}:{config.websocket.port}")
