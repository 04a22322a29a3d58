"""
Hook event audit log commands.
"""

import json

import click

from .utils import format_age, get_config, get_hook_event_manager


@click.group()
def events() -> None:
    """Inspect the hook event audit log."""
    pass


@events.command("recent")
@click.option("--session", "-s", "session_id", help="Only events for this session")
@click.option("--type", "-t", "event_type", help="Only events of this type")
@click.option("--limit", "-n", default=20, help="Max events to show")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def recent_events(
    ctx: click.Context,
    session_id: str | None,
    event_type: str | None,
    limit: int,
    json_format: bool,
) -> None:
    """Show the most recent hook events."""
    manager = get_hook_event_manager(get_config(ctx))

    if session_id:
        records = manager.list_by_session(session_id, limit=limit)
    elif event_type:
        records = manager.list_by_type(event_type, limit=limit)
    else:
        records = manager.list_recent(limit=limit)

    if json_format:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2, default=str))
        return

    if not records:
        click.echo("No hook events found.")
        return

    for record in records:
        blocked = " BLOCKED" if record.blocked else ""
        tool = f" {record.tool_name}" if record.tool_name else ""
        session = (record.session_id or "-")[:12]
        click.echo(
            f"{format_age(record.timestamp):>4} ago  {record.event_type:<18} "
            f"{session:<12}{tool} {record.duration_ms}ms{blocked}"
        )


@events.command("stats")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def event_stats(ctx: click.Context, json_format: bool) -> None:
    """Show hook event counts."""
    stats = get_hook_event_manager(get_config(ctx)).stats()

    if json_format:
        click.echo(json.dumps(stats.to_dict(), indent=2))
        return

    click.echo(f"Total events:   {stats.total_events}")
    click.echo(f"Blocked:        {stats.blocked_count}")
    click.echo(f"Avg duration:   {stats.avg_duration_ms:.1f}ms")
    for event_type, count in sorted(stats.events_by_type.items()):
        click.echo(f"  {event_type:<18} {count}")


@events.command("prune")
@click.option(
    "--max-age-hours",
    type=float,
    help="Delete events older than this (default: hook_events.max_age_hours)",
)
@click.pass_context
def prune_events(ctx: click.Context, max_age_hours: float | None) -> None:
    """Delete old hook events."""
    config = get_config(ctx)
    if max_age_hours is None:
        max_age_hours = config.hook_events.max_age_hours
    if max_age_hours <= 0:
        raise click.BadParameter("must be positive", param_hint="--max-age-hours")
    removed = get_hook_event_manager(config).cleanup_old(max_age_hours)
    click.echo(f"Pruned {removed} hook event(s)")
