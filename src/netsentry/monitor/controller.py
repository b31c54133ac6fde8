"""Monitor controller — orchestrates sampling, classification, and alerts.

One cycle fetches the connection list (and, on measurement cycles, a
bandwidth sample concurrently), classifies connections against the rule
store, merges bandwidth by process, updates rolling history and session
totals, and raises de-duplicated alerts. All aggregation state is written
under a single lock; readers get an immutable MonitorSnapshot.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace

from netsentry.actions.kill import terminate_process
from netsentry.capture.lsof import ConnectionScanner
from netsentry.capture.nettop import BandwidthSampler
from netsentry.config import (
    BANDWIDTH_HISTORY_LIMIT,
    FAST_INTERVAL_THRESHOLD,
    NetSentryConfig,
    clamp_interval,
)
from netsentry.format import format_bytes, format_rate
from netsentry.monitor.alerts import AlertDispatcher, AlertLog
from netsentry.monitor.models import (
    Alert,
    AlertType,
    AppUsage,
    BandwidthSnapshot,
    Classification,
    Connection,
    ProcessBandwidth,
)
from netsentry.rules.models import ConnectionRule, MatchField, RuleType
from netsentry.rules.store import RuleStore

logger = logging.getLogger(__name__)

_SORT_PRIORITY = {
    Classification.BLOCKED: 0,
    Classification.UNCLASSIFIED: 2,
    Classification.ALLOWED: 3,
}


def _sort_priority(conn: Connection) -> int:
    if conn.classification is Classification.UNCLASSIFIED and conn.heuristic_suspicious:
        return 1
    return _SORT_PRIORITY[conn.classification]


@dataclass(frozen=True)
class MonitorSnapshot:
    """Consistent, read-only view of the controller's published state."""

    connections: tuple[Connection, ...] = ()
    current_bandwidth: BandwidthSnapshot = field(default_factory=BandwidthSnapshot.empty)
    bandwidth_history: tuple[BandwidthSnapshot, ...] = ()
    session_total_in: int = 0
    session_total_out: int = 0
    session_app_usage: tuple[AppUsage, ...] = ()
    cycle_count: int = 0

    @property
    def session_total(self) -> int:
        return self.session_total_in + self.session_total_out

    @property
    def suspicious_count(self) -> int:
        return sum(1 for c in self.connections if c.is_suspicious)

    @property
    def trusted_count(self) -> int:
        return sum(
            1 for c in self.connections if c.classification is Classification.ALLOWED
        )

    @property
    def sorted_connections(self) -> list[Connection]:
        """Blocked first, then suspicious, then unclassified, then trusted."""
        return sorted(self.connections, key=_sort_priority)

    @property
    def upload_rate_history(self) -> list[float]:
        return [s.rate_out for s in self.bandwidth_history]

    @property
    def download_rate_history(self) -> list[float]:
        return [s.rate_in for s in self.bandwidth_history]

    def top_session_apps(self, limit: int | None = None) -> list[AppUsage]:
        ranked = sorted(self.session_app_usage, key=lambda u: u.total_bytes, reverse=True)
        return ranked if limit is None else ranked[:limit]


class MonitorController:
    """Owns the sampling loop and all aggregation state."""

    def __init__(
        self,
        rule_store: RuleStore,
        config: NetSentryConfig | None = None,
        on_alert: Callable[[Alert], None] | None = None,
        on_cycle: Callable[[MonitorSnapshot], None] | None = None,
        alert_log: AlertLog | None = None,
    ) -> None:
        self._config = config or NetSentryConfig()
        self._rules = rule_store
        self._scanner = ConnectionScanner()
        self._sampler = BandwidthSampler()
        self._alerts = AlertDispatcher(log=alert_log, callback=on_alert)
        self._on_cycle = on_cycle
        self._interval = clamp_interval(self._config.refresh_interval)

        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycle_lock = threading.Lock()

        # --- Guarded by _lock ---
        self._lock = threading.RLock()
        self._connections: tuple[Connection, ...] = ()
        self._current_bandwidth = BandwidthSnapshot.empty()
        self._history: deque[BandwidthSnapshot] = deque(maxlen=BANDWIDTH_HISTORY_LIMIT)
        self._session_in = 0
        self._session_out = 0
        self._app_usage: dict[str, AppUsage] = {}
        self._previous_pids: set[int] = set()
        self._bandwidth_alerted: set[str] = set()
        self._cycle_count = 0
        self._measuring = False

    # --- Accessors ---

    @property
    def rule_store(self) -> RuleStore:
        return self._rules

    @property
    def alert_log(self) -> AlertLog:
        return self._alerts.log

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_measuring_bandwidth(self) -> bool:
        with self._lock:
            return self._measuring

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def snapshot(self) -> MonitorSnapshot:
        with self._lock:
            return MonitorSnapshot(
                connections=self._connections,
                current_bandwidth=self._current_bandwidth,
                bandwidth_history=tuple(self._history),
                session_total_in=self._session_in,
                session_total_out=self._session_out,
                session_app_usage=tuple(self._app_usage.values()),
                cycle_count=self._cycle_count,
            )

    # --- Scheduling ---

    def set_interval(self, seconds: float) -> None:
        """Change the refresh interval; the timer restarts before its next fire."""
        interval = clamp_interval(seconds)
        if interval == self._interval:
            return
        logger.info("Refresh interval changed to %.1fs", interval)
        self._interval = interval
        self._config.refresh_interval = interval
        self._wake_event.set()

    def monitor_loop(self, max_cycles: int | None = None) -> None:
        """Blocking cycle→wait loop until stop() or ``max_cycles`` is reached."""
        # start() has already cleared the event for the background thread.
        if threading.current_thread() is not self._thread:
            self._stop_event.clear()
        cycles = 0

        while not self._stop_event.is_set():
            self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._wait_for_tick()

        logger.info("Monitor loop stopped after %d cycle(s)", cycles)

    def start(self) -> None:
        """Run monitor_loop on a background thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.monitor_loop, name="netsentry-monitor", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for the background thread, if any."""
        self._stop_event.set()
        self._wake_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if not thread.is_alive():
                self._thread = None

    def _wait_for_tick(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.clear()
            if not self._wake_event.wait(timeout=self._interval):
                return
            # Woken early by stop() or set_interval(): restart the timer.

    # --- Cycle ---

    def run_cycle(self) -> bool:
        """Run one fetch → classify → aggregate cycle.

        Returns False without doing anything if another cycle is in flight.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Cycle already in flight; skipping")
            return False

        try:
            with self._lock:
                self._cycle_count += 1
                measure = self._should_measure()
                if measure:
                    self._measuring = True
                previous_bandwidth = self._current_bandwidth

            try:
                connections, bandwidth = self._fetch(measure, previous_bandwidth)
            finally:
                if measure:
                    with self._lock:
                        self._measuring = False

            with self._lock:
                self._apply_cycle(connections, bandwidth, measure)
            snapshot = self.snapshot()
        finally:
            self._cycle_lock.release()

        if self._on_cycle:
            try:
                self._on_cycle(snapshot)
            except Exception:
                logger.exception("Cycle callback failed")
        return True

    def _should_measure(self) -> bool:
        if self._measuring:
            return False
        return self._interval >= FAST_INTERVAL_THRESHOLD or self._cycle_count % 2 == 0

    def _fetch(
        self,
        measure: bool,
        previous_bandwidth: BandwidthSnapshot,
    ) -> tuple[list[Connection], BandwidthSnapshot]:
        if not measure:
            return self._scanner.get_connections(), previous_bandwidth

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="netsentry-fetch") as pool:
            bandwidth_future = pool.submit(self._sampler.measure)
            connections_future = pool.submit(self._scanner.get_connections)
            return connections_future.result(), bandwidth_future.result()

    def _apply_cycle(
        self,
        connections: list[Connection],
        bandwidth: BandwidthSnapshot,
        measured: bool,
    ) -> None:
        by_pid, by_name = _bandwidth_lookup(bandwidth.processes)
        classified = [
            self._merge_bandwidth(self._classify(conn), by_pid, by_name)
            for conn in connections
        ]

        self._check_connection_alerts(classified)

        if measured:
            self._current_bandwidth = bandwidth
            self._history.append(bandwidth)
            self._accumulate_session(bandwidth)
            self._check_bandwidth_alerts(bandwidth)

        self._connections = tuple(classified)
        logger.debug(
            "Cycle %d: %d connection(s), bandwidth %s",
            self._cycle_count,
            len(classified),
            "measured" if measured else "reused",
        )

    def _classify(self, conn: Connection) -> Connection:
        rule = self._rules.match(conn)
        classification = Classification.from_rule_type(rule.rule_type if rule else None)
        return replace(conn, classification=classification)

    @staticmethod
    def _merge_bandwidth(
        conn: Connection,
        by_pid: dict[int, ProcessBandwidth],
        by_name: dict[str, ProcessBandwidth],
    ) -> Connection:
        usage = by_pid.get(conn.pid) if conn.pid else None
        if usage is None:
            usage = by_name.get(conn.process_name)
        if usage is None:
            return conn
        return replace(conn, bytes_in=usage.bytes_in, bytes_out=usage.bytes_out)

    def _accumulate_session(self, snapshot: BandwidthSnapshot) -> None:
        self._session_in += snapshot.total_bytes_in
        self._session_out += snapshot.total_bytes_out
        for process in snapshot.processes:
            existing = self._app_usage.get(process.process_name)
            if existing is None:
                existing = AppUsage(name=process.process_name)
            self._app_usage[process.process_name] = AppUsage(
                name=process.process_name,
                bytes_in=existing.bytes_in + process.bytes_in,
                bytes_out=existing.bytes_out + process.bytes_out,
            )

    # --- Alerts ---

    def _check_connection_alerts(self, connections: list[Connection]) -> None:
        previous = self._previous_pids

        # One alert per newly seen pid, not per socket.
        alerted_pids: set[int] = set()
        for conn in connections:
            if conn.classification is not Classification.BLOCKED:
                continue
            if conn.pid in previous or conn.pid in alerted_pids:
                continue
            alerted_pids.add(conn.pid)
            rule = self._rules.match(conn)
            self._send_blocked_alert(conn, rule.note if rule else None)

        new_suspicious = [
            c
            for c in connections
            if c.classification is Classification.UNCLASSIFIED
            and c.heuristic_suspicious
            and c.pid not in previous
        ]
        if new_suspicious:
            self._send_suspicious_alert(new_suspicious)

        self._previous_pids = {c.pid for c in connections}

    def _check_bandwidth_alerts(self, snapshot: BandwidthSnapshot) -> None:
        config = self._config
        if not (config.show_notifications and config.notify_on_high_bandwidth):
            return
        threshold = config.high_bandwidth_threshold_bytes

        above: set[str] = set()
        for process in snapshot.processes:
            if process.total_bytes <= threshold:
                continue
            above.add(process.process_name)
            if process.process_name not in self._bandwidth_alerted:
                self._send_bandwidth_alert(process, snapshot.duration)

        # Idle processes are absent from the sample; they re-arm too.
        self._bandwidth_alerted = above

    def _suspicious_alerts_enabled(self) -> bool:
        return self._config.show_notifications and self._config.notify_on_suspicious

    def _send_blocked_alert(self, conn: Connection, note: str | None) -> None:
        if not self._suspicious_alerts_enabled():
            return
        if note:
            body = f"Blocked connection from {conn.process_name}: {note}"
        else:
            body = f"Blocked connection detected from {conn.process_name}."
        self._alerts.dispatch(
            Alert(
                type=AlertType.SUSPICIOUS,
                title="NetSentry: Suspicious Connections",
                body=body,
                subject=conn.process_name,
            )
        )

    def _send_suspicious_alert(self, connections: list[Connection]) -> None:
        if not self._suspicious_alerts_enabled():
            return
        names = sorted({c.process_name for c in connections if c.process_name})
        self._alerts.dispatch(
            Alert(
                type=AlertType.SUSPICIOUS,
                title="NetSentry: Suspicious Connections",
                body=(
                    f"{len(connections)} suspicious outbound connection(s) "
                    "detected. Review them with `netsentry connections`."
                ),
                subject=", ".join(names),
            )
        )

    def _send_bandwidth_alert(self, process: ProcessBandwidth, duration: float) -> None:
        if duration > 0:
            usage = format_rate(process.total_bytes / duration)
        else:
            usage = format_bytes(process.total_bytes)
        self._alerts.dispatch(
            Alert(
                type=AlertType.BANDWIDTH,
                title="NetSentry: High Bandwidth",
                body=f"{process.process_name} is using {usage}.",
                subject=process.process_name,
            )
        )

    # --- Rule mutations ---

    def add_rule(self, rule: ConnectionRule) -> None:
        with self._lock:
            self._rules.add(rule)
            self._reapply_rules()

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            removed = self._rules.remove(rule_id)
            self._reapply_rules()
            return removed

    def clear_rules(self) -> None:
        with self._lock:
            self._rules.clear()
            self._reapply_rules()

    def trust_process(self, process_name: str) -> ConnectionRule:
        return self._add(RuleType.ALLOWED, MatchField.PROCESS_NAME, process_name)

    def trust_address(self, address: str) -> ConnectionRule:
        return self._add(RuleType.ALLOWED, MatchField.REMOTE_ADDRESS, address)

    def block_process(self, process_name: str) -> ConnectionRule:
        return self._add(RuleType.BLOCKED, MatchField.PROCESS_NAME, process_name)

    def block_address(self, address: str) -> ConnectionRule:
        return self._add(RuleType.BLOCKED, MatchField.REMOTE_ADDRESS, address)

    def reapply_rules(self) -> None:
        """Re-classify the current connection list against the rule store."""
        with self._lock:
            self._reapply_rules()

    def _add(self, rule_type: RuleType, match_field: MatchField, value: str) -> ConnectionRule:
        rule = ConnectionRule(rule_type=rule_type, match_field=match_field, match_value=value)
        self.add_rule(rule)
        return rule

    def _reapply_rules(self) -> None:
        self._connections = tuple(self._classify(conn) for conn in self._connections)

    # --- Process control ---

    def kill_process(self, pid: int) -> bool:
        """Terminate ``pid`` and drop its connections from the published list."""
        if not terminate_process(pid):
            return False
        with self._lock:
            self._connections = tuple(c for c in self._connections if c.pid != pid)
        return True


def _bandwidth_lookup(
    processes: Iterable[ProcessBandwidth],
) -> tuple[dict[int, ProcessBandwidth], dict[str, ProcessBandwidth]]:
    by_pid: dict[int, ProcessBandwidth] = {}
    by_name: dict[str, ProcessBandwidth] = {}
    for process in processes:
        if process.pid:
            by_pid.setdefault(process.pid, process)
        by_name.setdefault(process.process_name, process)
    return by_pid, by_name
