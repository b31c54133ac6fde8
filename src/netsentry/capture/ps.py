"""Top CPU process ranking via ``ps``."""

from __future__ import annotations

import logging
import platform

from netsentry.capture import shell
from netsentry.monitor.models import AppProcess

logger = logging.getLogger(__name__)


def ps_args() -> tuple[str, ...]:
    """ps invocation sorted by CPU descending for the current platform."""
    if platform.system() == "Darwin":
        return ("ps", "-Ao", "pid,comm,%cpu", "-r")
    return ("ps", "-Ao", "pid,comm,%cpu", "--sort=-%cpu")


def get_top_processes(limit: int = 5) -> list[AppProcess]:
    output = shell.run(ps_args())
    lines = output.splitlines()[: limit + 1]  # header + rows
    return parse_ps_output("\n".join(lines))


def parse_ps_output(output: str) -> list[AppProcess]:
    """Parse ``PID COMM %CPU`` rows. Idle processes are skipped."""
    processes: list[AppProcess] = []
    for line in output.splitlines()[1:]:  # skip header
        parts = line.strip().split()
        if len(parts) < 3:
            continue

        try:
            pid = int(parts[0])
        except ValueError:
            pid = 0
        try:
            cpu = float(parts[-1])
        except ValueError:
            cpu = 0.0
        if cpu <= 0:
            continue

        # comm may contain spaces; everything between PID and %CPU is the path
        command = " ".join(parts[1:-1])
        segments = [s for s in command.split("/") if s]
        name = segments[-1] if segments else command

        processes.append(AppProcess(name=name, pid=pid, cpu_usage=cpu))
    return processes
