"""
Agent registry CLI commands.

Commands for inspecting and cleaning the agent registry:
- list: List agents
- tree: Show the agent hierarchy
- stats: Show counts by status
- gc: Remove misdetected agents (tool names, orphans)
- prune: Remove old completed/error/terminated records
- clear: Delete every agent record
"""

import json

import click

from hivetrack.agents.registry import AgentTreeNode
from hivetrack.storage.agents import AgentRecord, AgentStatus

from .utils import STATUS_ICONS, format_age, get_agent_registry, get_config


def _format_agent(agent: AgentRecord) -> str:
    icon = STATUS_ICONS.get(agent.status.value, "?")
    pid = f" pid={agent.pid}" if agent.pid else ""
    age = format_age(agent.last_activity)
    return f"{icon} {agent.id[:8]}  {agent.status.value:<10} {agent.name}{pid}  ({age} ago)"


@click.group()
def agents() -> None:
    """Inspect and clean up tracked agents."""
    pass


@agents.command("list")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include finished agents")
@click.option(
    "--status",
    type=click.Choice([s.value for s in AgentStatus]),
    help="Filter by status",
)
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def list_agents(ctx: click.Context, show_all: bool, status: str | None, json_format: bool) -> None:
    """List agents (live ones by default)."""
    registry = get_agent_registry(get_config(ctx))

    if status:
        records = registry.get_agents_by_status(status)
    elif show_all:
        records = registry.get_all_agents()
    else:
        records = registry.get_active_agents()

    if json_format:
        click.echo(json.dumps([a.to_dict() for a in records], indent=2, default=str))
        return

    if not records:
        click.echo("No agents found.")
        return

    click.echo(f"Found {len(records)} agent(s):\n")
    for agent in records:
        click.echo(_format_agent(agent))


def _echo_tree(node: AgentTreeNode, prefix: str = "", last: bool = True, root: bool = True) -> None:
    connector = "" if root else ("└── " if last else "├── ")
    click.echo(f"{prefix}{connector}{_format_agent(node.agent)}")
    child_prefix = prefix if root else prefix + ("    " if last else "│   ")
    for i, child in enumerate(node.children):
        _echo_tree(child, child_prefix, i == len(node.children) - 1, root=False)


@agents.command("tree")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def agent_tree(ctx: click.Context, json_format: bool) -> None:
    """Show the agent hierarchy."""
    forest = get_agent_registry(get_config(ctx)).get_agent_tree()

    if json_format:
        click.echo(json.dumps([n.to_dict() for n in forest], indent=2, default=str))
        return

    if not forest:
        click.echo("No agents found.")
        return

    for node in forest:
        _echo_tree(node)


@agents.command("stats")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def agent_stats(ctx: click.Context, json_format: bool) -> None:
    """Show agent counts."""
    stats = get_agent_registry(get_config(ctx)).get_stats()

    if json_format:
        click.echo(json.dumps(stats.to_dict(), indent=2))
        return

    click.echo(f"Total:     {stats.total}")
    click.echo(f"Active:    {stats.active}")
    click.echo(f"Idle:      {stats.idle}")
    click.echo(f"Completed: {stats.completed}")
    click.echo(f"Error:     {stats.error}")
    if stats.by_status:
        click.echo("\nBy status:")
        for status_name, count in sorted(stats.by_status.items()):
            click.echo(f"  {status_name:<10} {count}")


@agents.command("gc")
@click.pass_context
def garbage_collect(ctx: click.Context) -> None:
    """Remove agents that were tool calls or orphaned detections."""
    removed = get_agent_registry(get_config(ctx)).run_garbage_cleanup()
    click.echo(f"Removed {removed} garbage agent(s)")


@agents.command("prune")
@click.option(
    "--max-age-hours",
    type=float,
    default=24.0,
    show_default=True,
    help="Delete finished agents completed longer ago than this",
)
@click.pass_context
def prune_agents(ctx: click.Context, max_age_hours: float) -> None:
    """Delete old completed, error and terminated agents."""
    if max_age_hours <= 0:
        raise click.BadParameter("must be positive", param_hint="--max-age-hours")
    removed = get_agent_registry(get_config(ctx)).cleanup_stale_agents(max_age_hours * 3600)
    click.echo(f"Pruned {removed} finished agent(s)")


@agents.command("clear")
@click.confirmation_option(prompt="Delete every agent record?")
@click.pass_context
def clear_agents(ctx: click.Context) -> None:
    """Delete every agent record."""
    removed = get_agent_registry(get_config(ctx)).clear_all_agents()
    click.echo(f"Deleted {removed} agent(s)")
