"""CLI command: netsentry kill <PID> — guarded process termination."""

from __future__ import annotations

import sys

import click
from rich.console import Console

from netsentry.actions.kill import terminate_process

console = Console(stderr=True)


@click.command()
@click.argument("pid", type=int)
def kill(pid: int) -> None:
    """Terminate a user-owned process.

    System processes, root-owned processes, and PIDs 0 and 1 are refused.
    """
    if terminate_process(pid):
        console.print(f"Sent SIGTERM to PID {pid}.")
        return
    console.print(f"[red]Refused or failed to terminate PID {pid}.[/red]")
    sys.exit(1)
