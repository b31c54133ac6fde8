"""Persistent rule store with first-match-wins evaluation.

Rules are kept in insertion order and the whole list is rewritten to a
YAML file (mode 0600) after every mutation. A missing or corrupt file loads
as an empty rule set; a failed write is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

import yaml

from netsentry.monitor.models import Connection
from netsentry.rules.models import ConnectionRule, MatchField, RuleType

logger = logging.getLogger(__name__)

_FILE_MODE = 0o600


class RuleStore:
    """Ordered list of ConnectionRules backed by a YAML file."""

    def __init__(self, path: str | Path, autoload: bool = True) -> None:
        self._path = Path(path)
        self._rules: list[ConnectionRule] = []
        self._lock = threading.RLock()
        if autoload:
            self.load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def rules(self) -> list[ConnectionRule]:
        with self._lock:
            return list(self._rules)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    # --- Persistence ---

    def load(self) -> None:
        """Replace the in-memory rules with the file's contents."""
        with self._lock:
            self._rules = _read_rules(self._path)

    def save(self) -> bool:
        """Write all rules to disk. Returns False if the write failed."""
        with self._lock:
            data = [rule.to_dict() for rule in self._rules]
            try:
                _write_rules(self._path, data)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning("Could not save rules to %s: %s", self._path, exc)
                return False
            return True

    # --- Mutation ---

    def add(self, rule: ConnectionRule) -> None:
        with self._lock:
            self._rules.append(rule)
            self.save()

    def remove(self, rule_id: str) -> bool:
        """Delete a rule by id. Returns True if one was removed."""
        with self._lock:
            kept = [r for r in self._rules if r.id != rule_id]
            removed = len(kept) != len(self._rules)
            self._rules = kept
            self.save()
            return removed

    def clear(self) -> None:
        with self._lock:
            self._rules.clear()
            self.save()

    # --- Evaluation ---

    def match(self, connection: Connection) -> ConnectionRule | None:
        """Return the first rule, in list order, matching the connection."""
        with self._lock:
            for rule in self._rules:
                if _matches(rule, connection):
                    return rule
        return None

    def is_allowed(self, connection: Connection) -> bool:
        rule = self.match(connection)
        return rule is not None and rule.rule_type is RuleType.ALLOWED

    def is_blocked(self, connection: Connection) -> bool:
        rule = self.match(connection)
        return rule is not None and rule.rule_type is RuleType.BLOCKED

    @property
    def allowed_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._rules if r.rule_type is RuleType.ALLOWED)

    @property
    def blocked_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._rules if r.rule_type is RuleType.BLOCKED)


def _matches(rule: ConnectionRule, connection: Connection) -> bool:
    if rule.match_field is MatchField.PROCESS_NAME:
        return connection.process_name == rule.match_value
    if rule.match_field is MatchField.REMOTE_ADDRESS:
        return connection.remote_address == rule.match_value
    if rule.match_field is MatchField.REMOTE_PORT:
        return connection.remote_port == rule.match_value
    return False


def _read_rules(path: Path) -> list[ConnectionRule]:
    if not path.exists():
        return []
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError("rules file must contain a list")
        return [ConnectionRule.from_dict(item) for item in data]
    except (
        OSError,
        yaml.YAMLError,
        ValueError,
        KeyError,
        TypeError,
        AttributeError,
    ) as exc:
        logger.warning("Ignoring unreadable rules file %s: %s", path, exc)
        return []


def _write_rules(path: Path, data: list[dict]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)

    tmp_path = path.with_name(path.name + ".tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(text)
    os.replace(tmp_path, path)
    os.chmod(path, _FILE_MODE)
