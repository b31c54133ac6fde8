"""CLI command: netsentry connections — one-shot classified connection list."""

from __future__ import annotations

import click
from rich.console import Console

from netsentry.cli.display import connection_table
from netsentry.monitor.controller import MonitorController
from netsentry.rules.store import RuleStore

console = Console()


@click.command()
@click.pass_context
def connections(ctx: click.Context) -> None:
    """List established connections, classified by your rules."""
    config = ctx.obj["config"]
    # Single cycle: no alerts, no bandwidth sample.
    config.show_notifications = False
    controller = MonitorController(RuleStore(config.rules_path), config=config)
    controller.run_cycle()

    snapshot = controller.snapshot()
    console.print(connection_table(snapshot))
    if snapshot.suspicious_count:
        console.print(
            f"[yellow]⚠ {snapshot.suspicious_count} suspicious connection(s)[/yellow]"
        )
