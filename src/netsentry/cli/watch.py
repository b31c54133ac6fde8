"""CLI command: netsentry watch — continuous monitoring loop."""

from __future__ import annotations

import signal

import click
from rich.console import Console
from rich.table import Table

from netsentry.cli.display import bandwidth_line, connection_table
from netsentry.format import format_bytes
from netsentry.monitor.controller import MonitorController, MonitorSnapshot
from netsentry.monitor.models import Alert, AlertType
from netsentry.rules.store import RuleStore

console = Console()


@click.command()
@click.option(
    "--interval",
    "-i",
    type=float,
    default=None,
    help="Seconds between cycles (minimum 5).",
)
@click.option(
    "--bandwidth-threshold",
    "-b",
    type=click.IntRange(min=1),
    default=None,
    help="Alert when a process moves more than this many MB in one sample.",
)
@click.option(
    "--cycles",
    "-c",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many cycles (default: run until interrupted).",
)
@click.pass_context
def watch(
    ctx: click.Context,
    interval: float | None,
    bandwidth_threshold: int | None,
    cycles: int | None,
) -> None:
    """Monitor connections and bandwidth until interrupted."""
    config = ctx.obj["config"]
    if interval is not None:
        config.refresh_interval = interval
    if bandwidth_threshold is not None:
        config.high_bandwidth_threshold_mb = bandwidth_threshold
        config.notify_on_high_bandwidth = True

    store = RuleStore(config.rules_path)

    def on_cycle(snapshot: MonitorSnapshot) -> None:
        console.print(connection_table(snapshot))
        console.print(bandwidth_line(snapshot))

    def on_alert(alert: Alert) -> None:
        color = "red" if alert.type is AlertType.SUSPICIOUS else "yellow"
        console.print(f"  [{color}]⚠ {alert.title}[/{color}] {alert.body}")

    controller = MonitorController(
        store,
        config=config,
        on_alert=on_alert,
        on_cycle=on_cycle,
    )

    console.print(
        f"[bold]NetSentry[/bold] watching every {controller.interval:.0f}s "
        f"with {len(store)} rule(s)"
    )
    console.print("  Press Ctrl+C to stop.\n")

    def _signal_handler(signum: int, frame: object) -> None:
        console.print("\n[dim]Stopping...[/dim]")
        controller.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        controller.monitor_loop(max_cycles=cycles)
    except KeyboardInterrupt:
        controller.stop()

    _print_summary(controller)


def _print_summary(controller: MonitorController) -> None:
    snapshot = controller.snapshot()

    console.print("\n[bold]Session Summary[/bold]")
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    table.add_row("Cycles", str(snapshot.cycle_count))
    table.add_row("Connections", str(len(snapshot.connections)))
    table.add_row("Suspicious", str(snapshot.suspicious_count))
    table.add_row("Downloaded", format_bytes(snapshot.session_total_in))
    table.add_row("Uploaded", format_bytes(snapshot.session_total_out))
    table.add_row("Alerts", str(len(controller.alert_log)))
    console.print(table)

    top_apps = snapshot.top_session_apps(limit=5)
    if top_apps:
        console.print("\n[bold]Top data consumers[/bold]")
        for usage in top_apps:
            console.print(f"  {usage.name}: {format_bytes(usage.total_bytes)}")
