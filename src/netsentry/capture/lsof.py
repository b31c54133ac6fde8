"""Connection enumeration via ``lsof`` and parsing of its column output.

All column-position heuristics for lsof output live in this module.
"""

from __future__ import annotations

import logging
import re

from netsentry.capture import shell
from netsentry.monitor.models import Connection
from netsentry.rules.heuristics import can_kill, evaluate_suspicion

logger = logging.getLogger(__name__)

LSOF_ARGS = ("lsof", "-i", "-n", "-P")

# COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME [(STATE)]
_MIN_COLUMNS = 9
_PROTOCOL_COLUMN = 7
_ADDRESS_COLUMN = 8

_HEX_ESCAPE = re.compile(r"\\x([0-9A-Fa-f]{2})")


class ConnectionScanner:
    """Fetches established connections from lsof."""

    def __init__(self, timeout: float = shell.DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout

    def get_connections(self) -> list[Connection]:
        output = shell.run(LSOF_ARGS, timeout=self._timeout)
        established = [line for line in output.splitlines() if "ESTABLISHED" in line]
        return parse_lsof_output("\n".join(established))


def parse_lsof_output(output: str) -> list[Connection]:
    """Parse lsof lines into Connections. Malformed lines are dropped."""
    connections: list[Connection] = []
    for line in output.splitlines():
        if not line:
            continue
        conn = _parse_line(line)
        if conn is not None:
            connections.append(conn)
    return connections


def _parse_line(line: str) -> Connection | None:
    parts = line.split()
    if len(parts) < _MIN_COLUMNS:
        return None

    process_name = unescape_lsof(parts[0])
    pid = _parse_pid(parts[1])
    protocol = "TCP" if "TCP" in parts[_PROTOCOL_COLUMN].upper() else "UDP"

    last = parts[-1]
    if last.startswith("(") and last.endswith(")"):
        state = last[1:-1]
    else:
        state = "UNKNOWN"

    # Address is second-to-last when a state suffix is present.
    if len(parts) >= 10 and last.startswith("("):
        address_field = parts[-2]
    else:
        address_field = parts[_ADDRESS_COLUMN]

    remote_address, remote_port = parse_connection_string(address_field)

    return Connection(
        process_name=process_name,
        pid=pid,
        remote_address=remote_address,
        remote_port=remote_port,
        protocol=protocol,
        state=state,
        heuristic_suspicious=evaluate_suspicion(
            process_name, remote_port, remote_address
        ),
        can_kill=can_kill(process_name),
    )


def _parse_pid(value: str) -> int:
    try:
        pid = int(value)
    except ValueError:
        return 0
    return pid if pid > 0 else 0


def parse_connection_string(value: str) -> tuple[str, str]:
    """Split ``local->remote`` or ``addr:port`` into the remote address and port.

    Splits on the last colon so IPv6 literals survive; brackets are stripped.
    Returns ``"?"`` as the port when there is no colon.
    """
    remote = value.split("->")[-1] if "->" in value else value

    address, sep, port = remote.rpartition(":")
    if not sep:
        return remote, "?"

    if address.startswith("[") and address.endswith("]"):
        address = address[1:-1]
    return address, port


def unescape_lsof(value: str) -> str:
    r"""Replace lsof ``\xHH`` escapes with the characters they encode."""
    if "\\x" not in value:
        return value
    return _HEX_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)
