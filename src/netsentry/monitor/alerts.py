"""Alert dispatch and the bounded in-memory alert log."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable

from netsentry.config import ALERT_LOG_LIMIT
from netsentry.monitor.models import Alert

logger = logging.getLogger(__name__)


class AlertLog:
    """Newest-first log of recent alerts, capped at ``max_entries``."""

    def __init__(self, max_entries: int = ALERT_LOG_LIMIT) -> None:
        self._entries: deque[Alert] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def add(self, alert: Alert) -> None:
        with self._lock:
            self._entries.appendleft(alert)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def entries(self) -> list[Alert]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AlertDispatcher:
    """Logs alerts, records them, and forwards them to an optional callback."""

    def __init__(
        self,
        log: AlertLog | None = None,
        callback: Callable[[Alert], None] | None = None,
    ) -> None:
        self.log = log if log is not None else AlertLog()
        self._callback = callback

    def dispatch(self, alert: Alert) -> None:
        logger.warning("ALERT [%s] %s: %s", alert.type.value, alert.title, alert.body)
        self.log.add(alert)
        if self._callback:
            self._callback(alert)
