"""Global configuration — XDG paths, env vars, defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

MIN_REFRESH_INTERVAL = 5.0
# Below this interval bandwidth is only measured on alternating cycles.
FAST_INTERVAL_THRESHOLD = 10.0
BANDWIDTH_HISTORY_LIMIT = 10
ALERT_LOG_LIMIT = 50


def _default_data_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "netsentry"
    return Path.home() / ".local" / "share" / "netsentry"


def clamp_interval(seconds: float) -> float:
    """Apply the refresh-interval floor."""
    return max(MIN_REFRESH_INTERVAL, float(seconds))


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class NetSentryConfig:
    """Application-wide configuration."""

    data_dir: Path = field(default_factory=_default_data_dir)
    rules_file: Path | None = None
    refresh_interval: float = MIN_REFRESH_INTERVAL
    show_notifications: bool = True
    notify_on_suspicious: bool = True
    notify_on_high_bandwidth: bool = False
    high_bandwidth_threshold_mb: int = 50
    verbose: bool = False

    def __post_init__(self) -> None:
        self.refresh_interval = clamp_interval(self.refresh_interval)

    @property
    def rules_path(self) -> Path:
        if self.rules_file is not None:
            return self.rules_file
        return self.data_dir / "rules.yaml"

    @property
    def high_bandwidth_threshold_bytes(self) -> int:
        return self.high_bandwidth_threshold_mb * 1024 * 1024

    @classmethod
    def load(cls) -> NetSentryConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_interval = os.environ.get("NETSENTRY_REFRESH_INTERVAL")
        if env_interval:
            try:
                config.refresh_interval = clamp_interval(float(env_interval))
            except ValueError:
                logger.warning(
                    "Ignoring invalid NETSENTRY_REFRESH_INTERVAL: %r", env_interval
                )

        env_threshold = os.environ.get("NETSENTRY_BANDWIDTH_THRESHOLD_MB")
        if env_threshold:
            try:
                config.high_bandwidth_threshold_mb = max(0, int(env_threshold))
            except ValueError:
                logger.warning(
                    "Ignoring invalid NETSENTRY_BANDWIDTH_THRESHOLD_MB: %r",
                    env_threshold,
                )

        env_notify_bw = os.environ.get("NETSENTRY_NOTIFY_BANDWIDTH")
        if env_notify_bw:
            config.notify_on_high_bandwidth = _env_bool(env_notify_bw)

        env_notify_sus = os.environ.get("NETSENTRY_NOTIFY_SUSPICIOUS")
        if env_notify_sus:
            config.notify_on_suspicious = _env_bool(env_notify_sus)

        env_notify = os.environ.get("NETSENTRY_NOTIFICATIONS")
        if env_notify:
            config.show_notifications = _env_bool(env_notify)

        env_rules = os.environ.get("NETSENTRY_RULES_FILE")
        if env_rules:
            config.rules_file = Path(env_rules).expanduser()

        return config
