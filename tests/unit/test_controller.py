"""Tests for the monitor controller — cycles, merging, history, and alerts."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from netsentry.config import NetSentryConfig
from netsentry.monitor.controller import MonitorController
from netsentry.monitor.models import (
    Alert,
    AlertType,
    BandwidthSnapshot,
    Classification,
    Connection,
    ProcessBandwidth,
)
from netsentry.rules.heuristics import can_kill, evaluate_suspicion
from netsentry.rules.models import ConnectionRule, MatchField, RuleType
from netsentry.rules.store import RuleStore

MB = 1024 * 1024


def _make_conn(
    process_name: str = "Safari",
    pid: int = 1234,
    remote_address: str = "142.250.80.46",
    remote_port: str = "443",
) -> Connection:
    return Connection(
        process_name=process_name,
        pid=pid,
        remote_address=remote_address,
        remote_port=remote_port,
        state="ESTABLISHED",
        heuristic_suspicious=evaluate_suspicion(process_name, remote_port, remote_address),
        can_kill=can_kill(process_name),
    )


def _snapshot(*processes: ProcessBandwidth, duration: float = 2.0, timestamp: float = 0.0):
    return BandwidthSnapshot(timestamp=timestamp, duration=duration, processes=processes)


@pytest.fixture
def scanner():
    with patch("netsentry.monitor.controller.ConnectionScanner") as cls:
        instance = MagicMock()
        instance.get_connections.return_value = []
        cls.return_value = instance
        yield instance


@pytest.fixture
def sampler():
    with patch("netsentry.monitor.controller.BandwidthSampler") as cls:
        instance = MagicMock()
        instance.measure.return_value = BandwidthSnapshot.empty()
        cls.return_value = instance
        yield instance


def _make_controller(
    rules_path: Path,
    alerts: list[Alert] | None = None,
    **config_kwargs,
) -> MonitorController:
    config = NetSentryConfig(data_dir=rules_path.parent, **config_kwargs)
    return MonitorController(
        RuleStore(rules_path),
        config=config,
        on_alert=alerts.append if alerts is not None else None,
    )


class TestMeasurementThrottle:
    def test_fast_interval_measures_every_other_cycle(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=5)

        for _ in range(4):
            controller.run_cycle()

        assert scanner.get_connections.call_count == 4
        assert sampler.measure.call_count == 2

    def test_slow_interval_measures_every_cycle(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)

        for _ in range(3):
            controller.run_cycle()

        assert sampler.measure.call_count == 3

    def test_no_measurement_while_one_is_in_flight(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)
        controller._measuring = True

        controller.run_cycle()

        sampler.measure.assert_not_called()
        scanner.get_connections.assert_called_once()

    def test_measuring_flag_cleared_after_cycle(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)
        seen: list[bool] = []

        def measure():
            seen.append(controller.is_measuring_bandwidth)
            return BandwidthSnapshot.empty()

        sampler.measure.side_effect = measure
        controller.run_cycle()

        assert seen == [True]
        assert not controller.is_measuring_bandwidth

    def test_interval_floor(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=1)
        assert controller.interval == 5.0

        controller.set_interval(2)
        assert controller.interval == 5.0

        controller.set_interval(30)
        assert controller.interval == 30.0


class TestClassificationAndMerge:
    def test_rules_override_heuristic(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        controller.rule_store.add(
            ConnectionRule(
                rule_type=RuleType.ALLOWED,
                match_field=MatchField.REMOTE_PORT,
                match_value="4444",
            )
        )
        scanner.get_connections.return_value = [
            _make_conn("evil", 99, remote_port="4444"),
            _make_conn("mystery", 100, remote_port="55555"),
        ]

        controller.run_cycle()
        evil, mystery = controller.snapshot().connections

        assert evil.heuristic_suspicious
        assert evil.classification is Classification.ALLOWED
        assert not evil.is_suspicious
        assert mystery.classification is Classification.UNCLASSIFIED
        assert mystery.is_suspicious

    def test_bandwidth_merged_by_pid_then_name(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)
        scanner.get_connections.return_value = [
            _make_conn("Safari", 1234),
            _make_conn("Slack", 0),
            _make_conn("Foo", 42),
            _make_conn("Nobody", 77),
        ]
        sampler.measure.return_value = _snapshot(
            ProcessBandwidth("Safari", 1234, 5000, 2000),
            ProcessBandwidth("Slack", 5678, 300, 30),
            ProcessBandwidth("Bar", 42, 1, 2),
            ProcessBandwidth("Foo", 7, 9, 9),
        )

        controller.run_cycle()
        safari, slack, foo, nobody = controller.snapshot().connections

        assert (safari.bytes_in, safari.bytes_out) == (5000, 2000)
        assert (slack.bytes_in, slack.bytes_out) == (300, 30)
        assert (foo.bytes_in, foo.bytes_out) == (1, 2)
        assert nobody.bytes_in is None and nobody.bytes_out is None

    def test_non_measurement_cycle_reuses_previous_snapshot(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=5)
        scanner.get_connections.return_value = [_make_conn("Safari", 1234)]
        sampler.measure.return_value = _snapshot(ProcessBandwidth("Safari", 1234, 10, 20))

        controller.run_cycle()  # cycle 1: no measurement
        assert controller.snapshot().connections[0].bytes_in is None

        controller.run_cycle()  # cycle 2: measured
        controller.run_cycle()  # cycle 3: reuses cycle 2's snapshot
        snapshot = controller.snapshot()

        assert snapshot.connections[0].bytes_in == 10
        assert len(snapshot.bandwidth_history) == 1
        assert snapshot.session_total_in == 10

    def test_each_cycle_replaces_connections(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        scanner.get_connections.return_value = [_make_conn("Safari", 1)]
        controller.run_cycle()
        first = controller.snapshot().connections

        scanner.get_connections.return_value = []
        controller.run_cycle()

        assert controller.snapshot().connections == ()
        assert len(first) == 1

    def test_failed_fetch_is_no_data(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)

        assert controller.run_cycle()
        snapshot = controller.snapshot()
        assert snapshot.connections == ()
        assert snapshot.current_bandwidth.is_empty

    def test_sorted_connections_and_counts(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        controller.block_process("bad")
        controller.trust_process("good")
        scanner.get_connections.return_value = [
            _make_conn("good", 1),
            _make_conn("plain", 2),
            _make_conn("mystery", 3, remote_port="4444"),
            _make_conn("bad", 4),
        ]

        controller.run_cycle()
        snapshot = controller.snapshot()

        assert [c.process_name for c in snapshot.sorted_connections] == [
            "bad",
            "mystery",
            "plain",
            "good",
        ]
        assert snapshot.suspicious_count == 2
        assert snapshot.trusted_count == 1


class TestHistoryAndSessionTotals:
    def test_history_bounded_to_ten(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)
        sampler.measure.side_effect = [
            _snapshot(ProcessBandwidth("a", 1, 1, 1), timestamp=float(i)) for i in range(12)
        ]

        for _ in range(12):
            controller.run_cycle()

        history = controller.snapshot().bandwidth_history
        assert len(history) == 10
        assert [s.timestamp for s in history] == [float(i) for i in range(2, 12)]

    def test_session_totals_accumulate(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)
        sampler.measure.side_effect = [
            _snapshot(ProcessBandwidth("Safari", 1, 100, 10), ProcessBandwidth("Slack", 2, 5, 5)),
            _snapshot(ProcessBandwidth("Safari", 1, 200, 20)),
        ]

        controller.run_cycle()
        controller.run_cycle()
        snapshot = controller.snapshot()

        assert snapshot.session_total_in == 305
        assert snapshot.session_total_out == 35
        top = snapshot.top_session_apps()
        assert [u.name for u in top] == ["Safari", "Slack"]
        assert (top[0].bytes_in, top[0].bytes_out) == (300, 30)

    def test_rate_history(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path, refresh_interval=10)
        sampler.measure.return_value = _snapshot(
            ProcessBandwidth("a", 1, 2048, 1024), duration=2.0
        )

        controller.run_cycle()
        snapshot = controller.snapshot()

        assert snapshot.download_rate_history == [1024.0]
        assert snapshot.upload_rate_history == [512.0]


class TestConnectionAlerts:
    def test_blocked_alert_fires_once_per_appearance(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(rules_path, alerts)
        controller.rule_store.add(
            ConnectionRule(
                rule_type=RuleType.BLOCKED,
                match_field=MatchField.PROCESS_NAME,
                match_value="evil",
                note="exfiltration",
            )
        )
        evil = _make_conn("evil", 99)

        scanner.get_connections.return_value = [evil, evil]
        controller.run_cycle()
        controller.run_cycle()
        assert len(alerts) == 1
        assert alerts[0].type is AlertType.SUSPICIOUS
        assert alerts[0].subject == "evil"
        assert alerts[0].body == "Blocked connection from evil: exfiltration"

        scanner.get_connections.return_value = []
        controller.run_cycle()
        scanner.get_connections.return_value = [evil]
        controller.run_cycle()
        assert len(alerts) == 2

    def test_blocked_alert_without_note(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(rules_path, alerts)
        controller.block_address("6.6.6.6")
        scanner.get_connections.return_value = [_make_conn("curl", 5, remote_address="6.6.6.6")]

        controller.run_cycle()

        assert alerts[0].body == "Blocked connection detected from curl."

    def test_unclassified_suspicious_summarized(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(rules_path, alerts)
        scanner.get_connections.return_value = [
            _make_conn("mystery", 10, remote_port="4444"),
            _make_conn("other", 11, remote_port="55555"),
            _make_conn("Safari", 12),
        ]

        controller.run_cycle()
        controller.run_cycle()

        assert len(alerts) == 1
        assert alerts[0].body.startswith("2 suspicious outbound connection(s)")
        assert alerts[0].subject == "mystery, other"

    def test_allowed_suppresses_heuristic_alert(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(rules_path, alerts)
        controller.trust_process("mystery")
        scanner.get_connections.return_value = [_make_conn("mystery", 10, remote_port="4444")]

        controller.run_cycle()

        assert alerts == []

    def test_notifications_disabled(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(rules_path, alerts, notify_on_suspicious=False)
        scanner.get_connections.return_value = [_make_conn("mystery", 10, remote_port="4444")]

        controller.run_cycle()

        assert alerts == []
        assert len(controller.alert_log) == 0

    def test_alerts_recorded_in_log(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        scanner.get_connections.return_value = [_make_conn("mystery", 10, remote_port="4444")]

        controller.run_cycle()

        assert len(controller.alert_log) == 1
        assert controller.alert_log.entries[0].type is AlertType.SUSPICIOUS


class TestBandwidthAlerts:
    def test_hysteresis(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(
            rules_path,
            alerts,
            refresh_interval=10,
            notify_on_high_bandwidth=True,
            high_bandwidth_threshold_mb=1,
        )
        big = _snapshot(ProcessBandwidth("hog", 1, 2 * MB, 0))
        small = _snapshot(ProcessBandwidth("hog", 1, 1000, 0))
        at_threshold = _snapshot(ProcessBandwidth("hog", 1, MB, 0))
        sampler.measure.side_effect = [big, big, small, big, at_threshold, big]

        for _ in range(3):
            controller.run_cycle()
        assert len(alerts) == 1
        assert alerts[0].type is AlertType.BANDWIDTH
        assert alerts[0].body == "hog is using 1.0 MB/s."

        for _ in range(3):
            controller.run_cycle()
        assert len(alerts) == 3

    def test_idle_process_rearms(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(
            rules_path,
            alerts,
            refresh_interval=10,
            notify_on_high_bandwidth=True,
            high_bandwidth_threshold_mb=1,
        )
        big = _snapshot(ProcessBandwidth("hog", 1, 2 * MB, 0))
        hog_idle = _snapshot(ProcessBandwidth("other", 2, 10, 0))
        sampler.measure.side_effect = [big, hog_idle, big]

        for _ in range(3):
            controller.run_cycle()

        assert [a.subject for a in alerts] == ["hog", "hog"]

    def test_zero_duration_reports_bytes(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(
            rules_path,
            alerts,
            refresh_interval=10,
            notify_on_high_bandwidth=True,
            high_bandwidth_threshold_mb=1,
        )
        sampler.measure.return_value = _snapshot(
            ProcessBandwidth("hog", 1, 3 * MB, 0), duration=0.0
        )

        controller.run_cycle()

        assert alerts[0].body == "hog is using 3.0 MB."

    def test_disabled_by_default(self, rules_path, scanner, sampler):
        alerts: list[Alert] = []
        controller = _make_controller(rules_path, alerts, refresh_interval=10)
        sampler.measure.return_value = _snapshot(ProcessBandwidth("hog", 1, 500 * MB, 0))

        controller.run_cycle()

        assert alerts == []


class TestRuleMutations:
    def test_trust_reclassifies_current_connections(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        scanner.get_connections.return_value = [_make_conn("mystery", 10, remote_port="4444")]
        controller.run_cycle()
        assert controller.snapshot().suspicious_count == 1

        rule = controller.trust_process("mystery")

        conn = controller.snapshot().connections[0]
        assert conn.classification is Classification.ALLOWED
        assert not conn.is_suspicious
        assert RuleStore(rules_path).rules == [rule]

    def test_remove_rule_reverts_classification(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        scanner.get_connections.return_value = [_make_conn("Safari", 1)]
        controller.run_cycle()
        rule = controller.block_process("Safari")
        assert controller.snapshot().connections[0].classification is Classification.BLOCKED

        assert controller.remove_rule(rule.id)

        conn = controller.snapshot().connections[0]
        assert conn.classification is Classification.UNCLASSIFIED

    def test_clear_rules(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        controller.trust_address("1.1.1.1")
        controller.block_address("6.6.6.6")

        controller.clear_rules()

        assert controller.rule_store.rules == []


class TestKill:
    @patch("netsentry.monitor.controller.terminate_process", return_value=True)
    def test_successful_kill_drops_connections(self, mock_kill, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        scanner.get_connections.return_value = [_make_conn("a", 10), _make_conn("b", 11)]
        controller.run_cycle()

        assert controller.kill_process(10)

        mock_kill.assert_called_once_with(10)
        assert [c.pid for c in controller.snapshot().connections] == [11]

    @patch("netsentry.monitor.controller.terminate_process", return_value=False)
    def test_refused_kill_keeps_connections(self, mock_kill, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        scanner.get_connections.return_value = [_make_conn("a", 10)]
        controller.run_cycle()

        assert not controller.kill_process(10)
        assert len(controller.snapshot().connections) == 1


class TestScheduling:
    def test_at_most_one_cycle_in_flight(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        controller._cycle_lock.acquire()
        try:
            assert not controller.run_cycle()
        finally:
            controller._cycle_lock.release()

        scanner.get_connections.assert_not_called()
        assert controller.run_cycle()

    def test_on_cycle_receives_snapshot(self, rules_path, scanner, sampler):
        seen = []
        controller = MonitorController(
            RuleStore(rules_path),
            config=NetSentryConfig(data_dir=rules_path.parent),
            on_cycle=seen.append,
        )
        scanner.get_connections.return_value = [_make_conn()]

        controller.run_cycle()

        assert len(seen) == 1
        assert seen[0].cycle_count == 1
        assert len(seen[0].connections) == 1

    def test_monitor_loop_max_cycles(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        controller.monitor_loop(max_cycles=1)
        assert controller.snapshot().cycle_count == 1

    def test_stop_interrupts_wait(self, rules_path, scanner, sampler):
        first_cycle = threading.Event()
        controller = MonitorController(
            RuleStore(rules_path),
            config=NetSentryConfig(data_dir=rules_path.parent, refresh_interval=60),
            on_cycle=lambda _snapshot: first_cycle.set(),
        )

        controller.start()
        assert first_cycle.wait(timeout=5)
        assert controller.is_running

        controller.stop(timeout=5)

        assert not controller.is_running
        assert controller.snapshot().cycle_count == 1

    def test_stop_before_thread_runs(self, rules_path, scanner, sampler):
        class SlowStartController(MonitorController):
            def monitor_loop(self, max_cycles=None):
                threading.Event().wait(0.2)
                super().monitor_loop(max_cycles=max_cycles)

        controller = SlowStartController(
            RuleStore(rules_path),
            config=NetSentryConfig(data_dir=rules_path.parent, refresh_interval=60),
        )

        controller.start()
        controller.stop(timeout=5)

        assert not controller.is_running
        assert controller.snapshot().cycle_count == 0

    def test_foreground_loop_runs_after_stop(self, rules_path, scanner, sampler):
        controller = _make_controller(rules_path)
        controller.stop()

        controller.monitor_loop(max_cycles=1)

        assert controller.snapshot().cycle_count == 1

    def test_cycle_callback_error_does_not_end_loop(self, rules_path, scanner, sampler):
        def broken(_snapshot):
            raise RuntimeError("display failed")

        controller = MonitorController(
            RuleStore(rules_path),
            config=NetSentryConfig(data_dir=rules_path.parent),
            on_cycle=broken,
        )

        assert controller.run_cycle()
        with patch.object(controller, "_wait_for_tick"):
            controller.monitor_loop(max_cycles=2)

        assert controller.snapshot().cycle_count == 3

    def test_interval_change_does_not_trigger_extra_cycle(self, rules_path, scanner, sampler):
        first_cycle = threading.Event()
        controller = MonitorController(
            RuleStore(rules_path),
            config=NetSentryConfig(data_dir=rules_path.parent, refresh_interval=60),
            on_cycle=lambda _snapshot: first_cycle.set(),
        )

        controller.start()
        assert first_cycle.wait(timeout=5)
        controller.set_interval(30)
        threading.Event().wait(0.1)

        assert controller.snapshot().cycle_count == 1
        controller.stop(timeout=5)
