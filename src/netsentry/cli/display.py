"""Rich renderers shared by the CLI commands."""

from __future__ import annotations

import time

from rich.table import Table

from netsentry.format import format_bytes, format_rate
from netsentry.monitor.controller import MonitorSnapshot
from netsentry.monitor.models import AppProcess, Classification, Connection
from netsentry.rules.models import ConnectionRule, RuleType

_CLASS_STYLE = {
    Classification.BLOCKED: "red",
    Classification.ALLOWED: "green",
}


def _status_cell(conn: Connection) -> str:
    if conn.classification is Classification.BLOCKED:
        return "[red]blocked[/red]"
    if conn.classification is Classification.ALLOWED:
        return "[green]trusted[/green]"
    if conn.heuristic_suspicious:
        return "[yellow]suspicious[/yellow]"
    return "[dim]-[/dim]"


def connection_table(snapshot: MonitorSnapshot) -> Table:
    table = Table(title=f"{len(snapshot.connections)} connection(s)", expand=False)
    table.add_column("Process")
    table.add_column("PID", justify="right")
    table.add_column("Remote")
    table.add_column("Service", style="dim")
    table.add_column("Proto")
    table.add_column("State", style="dim")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Status")

    for conn in snapshot.sorted_connections:
        bytes_in = format_bytes(conn.bytes_in) if conn.bytes_in is not None else ""
        bytes_out = format_bytes(conn.bytes_out) if conn.bytes_out is not None else ""
        table.add_row(
            conn.process_name or "?",
            str(conn.pid),
            f"{conn.remote_address}:{conn.remote_port}",
            conn.service_label,
            conn.protocol,
            conn.state,
            bytes_in,
            bytes_out,
            _status_cell(conn),
            style=_CLASS_STYLE.get(conn.classification),
        )
    return table


def bandwidth_line(snapshot: MonitorSnapshot) -> str:
    current = snapshot.current_bandwidth
    if current.is_empty:
        return "Bandwidth: [dim]--[/dim]"
    return (
        f"Bandwidth: ↓ {format_rate(current.rate_in)}  ↑ {format_rate(current.rate_out)}"
        f"  [dim](session {format_bytes(snapshot.session_total)})[/dim]"
    )


def rules_table(rules: list[ConnectionRule]) -> Table:
    table = Table(title=f"{len(rules)} rule(s)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Type")
    table.add_column("Field")
    table.add_column("Value")
    table.add_column("Note")
    table.add_column("Created", style="dim")

    for index, rule in enumerate(rules, start=1):
        color = "green" if rule.rule_type is RuleType.ALLOWED else "red"
        table.add_row(
            str(index),
            rule.id,
            f"[{color}]{rule.rule_type.value}[/{color}]",
            rule.match_field.label,
            rule.match_value,
            rule.note or "",
            time.strftime("%Y-%m-%d %H:%M", time.localtime(rule.created_at)),
        )
    return table


def process_table(processes: list[AppProcess]) -> Table:
    table = Table(title="Top processes by CPU")
    table.add_column("PID", justify="right")
    table.add_column("Name")
    table.add_column("CPU %", justify="right")
    for proc in processes:
        table.add_row(str(proc.pid), proc.name, f"{proc.cpu_usage:.1f}")
    return table
