"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from netsentry.rules.models import ConnectionRule, MatchField, RuleType
from netsentry.rules.store import RuleStore


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def lsof_output(fixtures_dir: Path) -> str:
    return (fixtures_dir / "lsof_established.txt").read_text(encoding="utf-8")


@pytest.fixture
def nettop_output(fixtures_dir: Path) -> str:
    return (fixtures_dir / "nettop_two_samples.txt").read_text(encoding="utf-8")


@pytest.fixture
def rules_path(tmp_path: Path) -> Path:
    return tmp_path / "netsentry" / "rules.yaml"


@pytest.fixture
def rule_store(rules_path: Path) -> RuleStore:
    return RuleStore(rules_path)


@pytest.fixture
def safari_rules() -> list[ConnectionRule]:
    return [
        ConnectionRule(
            rule_type=RuleType.ALLOWED,
            match_field=MatchField.PROCESS_NAME,
            match_value="Safari",
            note="Browser",
        ),
        ConnectionRule(
            rule_type=RuleType.BLOCKED,
            match_field=MatchField.PROCESS_NAME,
            match_value="Safari",
            note="Never reached",
        ),
    ]
