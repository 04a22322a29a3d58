"""
Shared utilities for CLI commands.
"""

from datetime import UTC, datetime

import click

from hivetrack.agents.registry import AgentRegistry
from hivetrack.config.app import DaemonConfig
from hivetrack.storage.agents import LocalAgentManager
from hivetrack.storage.database import LocalDatabase
from hivetrack.storage.hook_events import LocalHookEventManager
from hivetrack.storage.migrations import run_migrations

STATUS_ICONS = {
    "spawning": "○",
    "ready": "◔",
    "active": "◐",
    "idle": "◑",
    "completed": "✓",
    "error": "✗",
    "terminated": "⊘",
}


def get_config(ctx: click.Context) -> DaemonConfig:
    config: DaemonConfig = ctx.obj["config"]
    return config


def get_database(config: DaemonConfig) -> LocalDatabase:
    """Open the configured database, applying pending migrations."""
    db = LocalDatabase(config.database_path)
    run_migrations(db)
    return db


def get_agent_registry(config: DaemonConfig) -> AgentRegistry:
    """Offline registry over the configured database (no hook server, no timers)."""
    return AgentRegistry(
        LocalAgentManager(get_database(config)),
        config=config.agent_registry,
    )


def get_hook_event_manager(config: DaemonConfig) -> LocalHookEventManager:
    return LocalHookEventManager(get_database(config))


def format_age(timestamp: str) -> str:
    """Format an ISO timestamp as a short relative age, e.g. ``5m``."""
    then = datetime.fromisoformat(timestamp)
    if then.tzinfo is None:
        then = then.replace(tzinfo=UTC)
    seconds = max(0, int((datetime.now(UTC) - then).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"
