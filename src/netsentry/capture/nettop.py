"""Per-process bandwidth sampling via macOS ``nettop``.

nettop is asked for two samples. The first block is cumulative since boot
and is discarded; the second block is the delta over the sampling window.
"""

from __future__ import annotations

import logging
import time

from netsentry.capture import shell
from netsentry.monitor.models import BandwidthSnapshot, ProcessBandwidth

logger = logging.getLogger(__name__)

NETTOP_ARGS = (
    "nettop", "-P", "-d", "-L", "2", "-J", "bytes_in,bytes_out", "-t", "external", "-c",
)
NETTOP_TIMEOUT = 15.0


class BandwidthSampler:
    """Takes one-shot bandwidth measurements and times them."""

    def __init__(self, timeout: float = NETTOP_TIMEOUT) -> None:
        self._timeout = timeout

    def measure(self) -> BandwidthSnapshot:
        start = time.monotonic()
        output = shell.run(NETTOP_ARGS, timeout=self._timeout)
        duration = time.monotonic() - start
        if not output:
            return BandwidthSnapshot.empty()
        return parse_bandwidth_output(output, duration=duration)


def parse_bandwidth_output(
    output: str,
    duration: float = 2.0,
    timestamp: float | None = None,
) -> BandwidthSnapshot:
    """Parse ``name.pid,bytes_in,bytes_out`` rows into a snapshot.

    Uses the second blank-line-separated block when there is one, otherwise
    the only block. Rows for the same process name are summed and rows with
    no traffic are skipped.
    """
    blocks = output.split("\n\n")
    target = blocks[1] if len(blocks) >= 2 else blocks[0]

    # name -> [pid, bytes_in, bytes_out]
    aggregated: dict[str, list[int]] = {}
    for line in target.split("\n"):
        if not line:
            continue
        columns = line.split(",")
        if len(columns) < 3:
            continue

        process_field = columns[0].strip()
        if not process_field or "time" in process_field.lower():
            continue  # header

        name, pid = parse_process_field(process_field)
        if not name:
            continue

        bytes_in = _parse_bytes(columns[1])
        bytes_out = _parse_bytes(columns[2])
        if bytes_in == 0 and bytes_out == 0:
            continue

        entry = aggregated.get(name)
        if entry is None:
            aggregated[name] = [pid, bytes_in, bytes_out]
        else:
            entry[1] += bytes_in
            entry[2] += bytes_out

    processes = tuple(
        ProcessBandwidth(process_name=name, pid=pid, bytes_in=b_in, bytes_out=b_out)
        for name, (pid, b_in, b_out) in aggregated.items()
    )
    return BandwidthSnapshot(
        timestamp=timestamp if timestamp is not None else time.time(),
        duration=duration,
        processes=processes,
    )


def parse_process_field(value: str) -> tuple[str, int]:
    """Split ``name.pid`` from the right; names may contain dots."""
    name, sep, pid_str = value.rpartition(".")
    if not sep:
        return value, 0
    try:
        pid = int(pid_str)
    except ValueError:
        return value, 0
    if pid < 0:
        return value, 0
    return name, pid


def _parse_bytes(value: str) -> int:
    try:
        count = int(value.strip())
    except ValueError:
        return 0
    return count if count > 0 else 0
