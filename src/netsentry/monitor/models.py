"""Monitoring data models — connections, bandwidth samples, and alerts."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field

from netsentry.rules.heuristics import EPHEMERAL_PORT_THRESHOLD, port_number
from netsentry.rules.models import RuleType


class Classification(enum.Enum):
    """User classification of a connection, derived from the matching rule."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"
    UNCLASSIFIED = "unclassified"

    @classmethod
    def from_rule_type(cls, rule_type: RuleType | None) -> Classification:
        if rule_type is RuleType.ALLOWED:
            return cls.ALLOWED
        if rule_type is RuleType.BLOCKED:
            return cls.BLOCKED
        return cls.UNCLASSIFIED


_SERVICE_LABELS = {
    "443": "Secure web (HTTPS)",
    "80": "Web (HTTP)",
    "53": "DNS lookup",
    "993": "Email (IMAP)",
    "143": "Email (IMAP)",
    "587": "Email (SMTP)",
    "465": "Email (SMTP)",
    "25": "Email (SMTP)",
    "22": "SSH",
    "5228": "Push notifications",
    "5223": "Push notifications",
    "3478": "Video/voice call",
    "3479": "Video/voice call",
    "8443": "Secure web (alt)",
    "8080": "Web proxy",
    "123": "Time sync (NTP)",
    "*": "Listening",
}


@dataclass(frozen=True)
class Connection:
    """One observed network socket from a single sampling cycle.

    Instances are never mutated; re-classification produces a copy.
    """

    process_name: str
    pid: int
    remote_address: str
    remote_port: str
    protocol: str = "TCP"
    state: str = "UNKNOWN"
    heuristic_suspicious: bool = False
    can_kill: bool = True
    classification: Classification = Classification.UNCLASSIFIED
    bytes_in: int | None = None
    bytes_out: int | None = None

    @property
    def is_suspicious(self) -> bool:
        """Heuristic result, overridden by the user classification."""
        if self.classification is Classification.BLOCKED:
            return True
        if self.classification is Classification.ALLOWED:
            return False
        return self.heuristic_suspicious

    @property
    def service_label(self) -> str:
        label = _SERVICE_LABELS.get(self.remote_port)
        if label is not None:
            return label
        port = port_number(self.remote_port)
        if port is not None and port > EPHEMERAL_PORT_THRESHOLD:
            return f"High port {self.remote_port}"
        return f"Port {self.remote_port}"


@dataclass(frozen=True)
class AppProcess:
    """A running process with its CPU usage."""

    name: str
    pid: int
    cpu_usage: float


def rate(num_bytes: int, duration: float) -> float:
    """Bytes per second over ``duration``; 0 when the duration is not positive."""
    if duration <= 0:
        return 0.0
    return num_bytes / duration


@dataclass(frozen=True)
class ProcessBandwidth:
    """Bytes attributed to one process over one sampling window."""

    process_name: str
    pid: int
    bytes_in: int
    bytes_out: int

    @property
    def total_bytes(self) -> int:
        return self.bytes_in + self.bytes_out

    def rate_in(self, duration: float) -> float:
        return rate(self.bytes_in, duration)

    def rate_out(self, duration: float) -> float:
        return rate(self.bytes_out, duration)


@dataclass(frozen=True)
class BandwidthSnapshot:
    """One completed bandwidth sampling window.

    ``duration`` is the measured wall-clock time of the sampling tool.
    """

    timestamp: float
    duration: float
    processes: tuple[ProcessBandwidth, ...] = ()

    @classmethod
    def empty(cls) -> BandwidthSnapshot:
        return cls(timestamp=time.time(), duration=0.0)

    @property
    def is_empty(self) -> bool:
        return not self.processes

    @property
    def total_bytes_in(self) -> int:
        return sum(p.bytes_in for p in self.processes)

    @property
    def total_bytes_out(self) -> int:
        return sum(p.bytes_out for p in self.processes)

    @property
    def rate_in(self) -> float:
        return rate(self.total_bytes_in, self.duration)

    @property
    def rate_out(self) -> float:
        return rate(self.total_bytes_out, self.duration)

    def top_consumers(self, limit: int = 5) -> list[ProcessBandwidth]:
        """Processes sorted by total bytes, largest first."""
        ranked = sorted(self.processes, key=lambda p: p.total_bytes, reverse=True)
        return ranked[:limit]


@dataclass(frozen=True)
class AppUsage:
    """Cumulative session bytes for one process name."""

    name: str
    bytes_in: int = 0
    bytes_out: int = 0

    @property
    def total_bytes(self) -> int:
        return self.bytes_in + self.bytes_out


class AlertType(enum.Enum):
    SUSPICIOUS = "suspicious"
    BANDWIDTH = "bandwidth"


@dataclass(frozen=True)
class Alert:
    """A user-facing alert raised by the monitor."""

    type: AlertType
    title: str
    body: str
    subject: str = ""
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
