"""Tests for resolve_policy — per-type rules, fallback and critical overrides."""

from __future__ import annotations

from complywatch.alerts.rules import resolve_policy
from complywatch.core.config import AlertsConfig
from complywatch.core.types import Violation


def _v(vtype: str, severity: str) -> Violation:
    return Violation(type=vtype, severity=severity, message="m", agent_id="a1")


class TestResolvePolicy:
    def test_known_high_rule(self) -> None:
        policy = resolve_policy(AlertsConfig(), _v("performanceConcern", "high"))
        assert policy.immediate is False
        assert policy.channels == ("console", "agent_message")
        assert policy.escalate is True
        assert policy.escalation_secs == 900
        assert policy.suppression_secs == 300
        assert policy.known_type is True

    def test_unknown_type_uses_fallback(self) -> None:
        policy = resolve_policy(AlertsConfig(), _v("somethingNew", "medium"))
        assert policy.channels == ("console",)
        assert policy.escalate is False
        assert policy.suppression_secs == 7200
        assert policy.known_type is False

    def test_critical_forces_immediate_and_no_suppression(self) -> None:
        policy = resolve_policy(AlertsConfig(), _v("performanceConcern", "critical"))
        assert policy.immediate is True
        assert policy.escalate is True
        assert policy.suppression_secs == 0
        assert policy.channels == ("email", "console", "agent_message")

    def test_critical_merges_rule_channels_in_order(self) -> None:
        policy = resolve_policy(AlertsConfig(), _v("securityViolation", "critical"))
        assert policy.channels == ("email", "console", "agent_message", "security_team")

    def test_critical_unknown_type_still_gets_critical_channels(self) -> None:
        policy = resolve_policy(AlertsConfig(), _v("brandNew", "critical"))
        assert policy.channels == ("email", "console", "agent_message")
        assert policy.escalate is True
        assert policy.known_type is False
