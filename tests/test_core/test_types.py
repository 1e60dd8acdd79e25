"""Tests for domain types — severity parsing, violation validation, filters."""

from __future__ import annotations

import pydantic
import pytest

from complywatch.core.types import (
    AgentInfo,
    Alert,
    AlertFilter,
    AlertStatus,
    Severity,
    SuppressionRule,
    Violation,
    new_id,
)


def _violation(**kw: object) -> Violation:
    defaults: dict[str, object] = {
        "type": "variableCountExceeded",
        "severity": "critical",
        "message": "too many variables",
        "agent_id": "agent-1",
    }
    defaults.update(kw)
    return Violation(**defaults)  # type: ignore[arg-type]


class TestSeverity:
    def test_ordering(self) -> None:
        assert Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("critical", Severity.CRITICAL),
            ("HIGH", Severity.HIGH),
            (" Medium ", Severity.MEDIUM),
            (2, Severity.HIGH),
            ("catastrophic", Severity.LOW),
            (42, Severity.LOW),
            (None, Severity.LOW),
            (True, Severity.LOW),
        ],
    )
    def test_parse(self, raw: object, expected: Severity) -> None:
        assert Severity.parse(raw) is expected

    def test_label(self) -> None:
        assert Severity.CRITICAL.label == "critical"


class TestViolation:
    def test_severity_parsed_from_string(self) -> None:
        assert _violation(severity="high").severity is Severity.HIGH

    def test_unknown_severity_is_low(self) -> None:
        assert _violation(severity="bogus").severity is Severity.LOW

    def test_signature(self) -> None:
        assert _violation().signature == ("variableCountExceeded", "agent-1")

    def test_blank_type_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            _violation(type="  ")

    def test_missing_message_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Violation(type="x")  # type: ignore[call-arg]

    def test_frozen(self) -> None:
        v = _violation()
        with pytest.raises(pydantic.ValidationError):
            v.message = "changed"  # type: ignore[misc]

    def test_ids_are_unique(self) -> None:
        assert _violation().id != _violation().id
        assert new_id("alert").startswith("alert_")


class TestAlert:
    def test_defaults(self) -> None:
        alert = Alert(violation=_violation())
        assert alert.id.startswith("alert_")
        assert alert.status == AlertStatus.ACTIVE
        assert alert.escalation_level == 0
        assert alert.occurrences == 1
        assert alert.version == 0
        assert alert.is_open is True

    def test_resolved_is_not_open(self) -> None:
        alert = Alert(violation=_violation(), status=AlertStatus.RESOLVED)
        assert alert.is_open is False

    def test_negative_level_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Alert(violation=_violation(), escalation_level=-1)


class TestSuppressionRule:
    def test_active_window_is_half_open(self) -> None:
        rule = SuppressionRule(violation_type="x", agent_id="a", until=100.0)
        assert rule.active(99.9) is True
        assert rule.active(100.0) is False
        assert rule.key == ("x", "a")


class TestAlertFilter:
    def test_matches_all_criteria(self) -> None:
        alert = Alert(violation=_violation(severity="high"))
        assert AlertFilter().matches(alert)
        assert AlertFilter(severity="high").matches(alert)
        assert AlertFilter(agent_id="agent-1", status="active").matches(alert)
        assert not AlertFilter(severity=Severity.CRITICAL).matches(alert)
        assert not AlertFilter(violation_type="other").matches(alert)


class TestAgentInfo:
    def test_blank_id_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            AgentInfo(id=" ")

    def test_score_bounds(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            AgentInfo(id="a", validation_score=101)
