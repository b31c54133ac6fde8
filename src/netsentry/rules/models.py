"""Rule data models — immutable dataclasses for user connection policy."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field


class RuleType(enum.Enum):
    """Whether a rule trusts or blocks what it matches."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"


class MatchField(enum.Enum):
    """Which connection attribute a rule compares against."""

    PROCESS_NAME = "processName"
    REMOTE_ADDRESS = "remoteAddress"
    REMOTE_PORT = "remotePort"

    @property
    def label(self) -> str:
        return _FIELD_LABELS[self]


_FIELD_LABELS = {
    MatchField.PROCESS_NAME: "Process Name",
    MatchField.REMOTE_ADDRESS: "Remote Address",
    MatchField.REMOTE_PORT: "Port",
}


@dataclass(frozen=True)
class ConnectionRule:
    """A single user rule. Matching is exact string equality."""

    rule_type: RuleType
    match_field: MatchField
    match_value: str
    note: str | None = None
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_type": self.rule_type.value,
            "match_field": self.match_field.value,
            "match_value": self.match_value,
            "note": self.note,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConnectionRule:
        """Build a rule from its serialized form. Raises on malformed input."""
        note = data.get("note")
        return cls(
            id=str(data["id"]),
            rule_type=RuleType(data["rule_type"]),
            match_field=MatchField(data["match_field"]),
            match_value=str(data["match_value"]),
            note=str(note) if note is not None else None,
            created_at=float(data["created_at"]),
        )
