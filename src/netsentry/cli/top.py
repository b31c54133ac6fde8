"""CLI command: netsentry top — top CPU-consuming processes."""

from __future__ import annotations

import click
from rich.console import Console

from netsentry.capture.ps import get_top_processes
from netsentry.cli.display import process_table

console = Console()


@click.command()
@click.option("--limit", "-n", type=click.IntRange(min=1), default=5, show_default=True)
def top(limit: int) -> None:
    """Show the processes using the most CPU."""
    processes = get_top_processes(limit=limit)
    if not processes:
        console.print("[dim]No busy processes found.[/dim]")
        return
    console.print(process_table(processes))
