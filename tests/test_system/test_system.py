"""Tests for ComplianceSystem facade, compliance_score and create_system wiring."""

from __future__ import annotations

import pytest

from complywatch.core.config import Settings, SummaryConfig
from complywatch.core.exceptions import ValidationError
from complywatch.core.types import AlertStatus, Notification, TaskStatus
from complywatch.factory import create_system
from complywatch.notify.channels import NotificationChannel
from complywatch.system import ComplianceSystem, compliance_score

# ── Helpers ─────────────────────────────────────────────────────

CHANNELS = ("email", "console", "agent_message", "security_team", "chat")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakeChannel(NotificationChannel):
    def __init__(self) -> None:
        self.sent: list[Notification] = []
        self.closed = False

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True

    async def close(self) -> None:
        self.closed = True


def _system(
    settings: Settings | None = None,
) -> tuple[ComplianceSystem, dict[str, FakeChannel], FakeClock]:
    clock = FakeClock()
    channels = {name: FakeChannel() for name in CHANNELS}
    system = create_system(settings or Settings(), clock=clock, channels=channels)
    return system, channels, clock


def _critical(agent: str = "agent_1") -> dict:
    return {
        "type": "variableCountExceeded",
        "severity": "critical",
        "message": "Catalog item has 120 variables",
        "actual": 120,
        "limit": 100,
        "agentId": agent,
    }


# ── compliance_score ────────────────────────────────────────────


class TestComplianceScore:
    def test_perfect(self) -> None:
        assert compliance_score(0, 0, 0, 0) == 100.0

    def test_alert_penalty_capped(self) -> None:
        assert compliance_score(3, 0, 0, 0) == 85.0
        assert compliance_score(40, 0, 0, 0) == 50.0

    def test_unhealthy_penalty(self) -> None:
        assert compliance_score(0, 2, 0, 0) == 80.0

    def test_resolution_bonus_clamped(self) -> None:
        assert compliance_score(0, 0, 10, 9) == 100.0
        assert compliance_score(2, 0, 10, 9) == 95.0
        assert compliance_score(2, 0, 10, 8) == 90.0

    def test_floor_at_zero(self) -> None:
        assert compliance_score(20, 10, 0, 0) == 0.0


# ── Operations ──────────────────────────────────────────────────


class TestSubmitViolation:
    async def test_returns_alert_id(self) -> None:
        system, _, _ = _system()
        alert_id = await system.submit_violation(_critical())
        alert = await system.manager.get(alert_id)
        assert alert.agent_id == "agent_1"
        assert alert.violation.actual == 120

    async def test_context_fills_agent(self) -> None:
        system, _, _ = _system()
        payload = _critical()
        del payload["agentId"]
        alert_id = await system.submit_violation(payload, {"agent_id": "ctx_agent"})
        alert = await system.manager.get(alert_id)
        assert alert.agent_id == "ctx_agent"

    async def test_malformed_rejected(self) -> None:
        system, _, _ = _system()
        with pytest.raises(ValidationError):
            await system.submit_violation({"severity": "high"})
        assert await system.list_active_alerts() == []


class TestRegisterAgent:
    async def test_ack(self) -> None:
        system, _, _ = _system()
        ack = await system.register_agent({"id": "a1", "capabilities": ["security"]})
        assert ack.ok is True
        assert ack.agent_id == "a1"
        assert system.coordinator.agent_count == 1

    async def test_rejected(self) -> None:
        system, _, _ = _system()
        ack = await system.register_agent({"capabilities": ["security"]})
        assert ack.ok is False
        assert ack.error


class TestResolveAlert:
    async def test_resolve(self) -> None:
        system, channels, _ = _system()
        alert_id = await system.submit_violation(_critical())
        result = await system.resolve_alert(alert_id, {"description": "fixed"})
        assert result.ok is True

        alert = await system.manager.get(alert_id)
        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolution is not None
        assert alert.resolution.description == "fixed"
        assert channels["console"].sent[-1].subject.startswith("RESOLVED")

    async def test_unknown_id(self) -> None:
        system, _, _ = _system()
        result = await system.resolve_alert("alert_missing")
        assert result.ok is False
        assert result.error == "not_found"

    async def test_malformed_resolution_is_an_error_result(self) -> None:
        system, _, _ = _system()
        alert_id = await system.submit_violation(_critical())
        for bad in ("fixed", 42):
            result = await system.resolve_alert(alert_id, bad)  # type: ignore[arg-type]
            assert result.ok is False
            assert result.error
        alert = await system.manager.get(alert_id)
        assert alert.status == AlertStatus.ACTIVE

    async def test_resolution_completes_tasks(self) -> None:
        system, _, _ = _system()
        alert_id = await system.submit_violation(_critical())
        assert system.coordinator.tasks(TaskStatus.UNASSIGNED)
        await system.resolve_alert(alert_id)
        assert all(t.status == TaskStatus.COMPLETED for t in system.coordinator.tasks())


class TestListActive:
    async def test_filter_mapping(self) -> None:
        system, _, _ = _system()
        await system.submit_violation(_critical("a1"))
        await system.submit_violation({
            "type": "performanceConcern", "severity": "high", "message": "slow", "agentId": "a2",
        })
        critical = await system.list_active_alerts({"severity": "critical"})
        assert [a.agent_id for a in critical] == ["a1"]
        by_agent = await system.list_active_alerts({"agent_id": "a2"})
        assert [a.violation.type for a in by_agent] == ["performanceConcern"]

    async def test_resolved_excluded(self) -> None:
        system, _, _ = _system()
        alert_id = await system.submit_violation(_critical())
        await system.resolve_alert(alert_id)
        assert await system.list_active_alerts() == []


# ── Status ──────────────────────────────────────────────────────


class TestStatus:
    async def test_status_while_running(self) -> None:
        system, _, _ = _system()
        await system.start()
        try:
            await system.register_agent({"id": "a1"})
            await system.submit_violation(_critical())
            status = await system.get_status()
        finally:
            await system.stop()
        assert status.active_alerts == 1
        assert status.agents_coordinated == 1
        assert status.compliance_score == 95.0
        assert all(status.subsystems.values())
        assert status.degraded is False

    async def test_unhealthy_subsystems_lower_score(self) -> None:
        system, _, _ = _system()
        status = await system.get_status()
        assert status.subsystems["alert_manager"] is False
        assert status.compliance_score < 100.0

    async def test_degraded_falls_back_to_last_snapshot(self, monkeypatch) -> None:
        system, _, _ = _system()
        await system.submit_violation(_critical())
        good = await system.get_status()

        async def broken(*args, **kwargs):  # type: ignore[no-untyped-def]
            raise RuntimeError("store offline")

        monkeypatch.setattr(system.manager, "list_active", broken)
        status = await system.get_status()
        assert status.degraded is True
        assert status.active_alerts == good.active_alerts

    async def test_degraded_without_snapshot(self, monkeypatch) -> None:
        system, _, _ = _system()

        async def broken(*args, **kwargs):  # type: ignore[no-untyped-def]
            raise RuntimeError("store offline")

        monkeypatch.setattr(system.manager, "list_active", broken)
        status = await system.get_status()
        assert status.degraded is True
        assert status.active_alerts == 0


# ── Lifecycle / wiring ──────────────────────────────────────────


class TestLifecycle:
    async def test_start_stop(self) -> None:
        system, channels, clock = _system()
        await system.start()
        assert system.running is True
        assert system.supervisor.healthy is True
        assert system.manager.healthy is True
        assert system.scheduler.healthy is True
        assert system.coordinator.healthy is True

        clock.advance(30)
        status = await system.get_status()
        assert status.uptime_secs == 30

        await system.stop()
        assert system.running is False
        assert system.manager.healthy is False
        assert all(ch.closed for ch in channels.values())

    async def test_start_twice_is_noop(self) -> None:
        system, _, _ = _system()
        await system.start()
        await system.start()
        await system.stop()
        assert system.running is False

    def test_supervisor_watches_workers(self) -> None:
        system, _, _ = _system()
        assert set(system.supervisor.names) == {
            "alert_manager", "scheduler", "router", "coordinator",
        }

    def test_summary_attached_when_enabled(self) -> None:
        system, _, _ = _system(Settings(summary=SummaryConfig(enabled=True)))
        assert system.summary is not None
        assert "summary" in system.supervisor.names

    async def test_summary_reports_status(self) -> None:
        system, channels, clock = _system(Settings(summary=SummaryConfig(enabled=True)))
        await system.submit_violation(_critical())
        clock.advance(1)
        assert system.summary is not None
        status = await system.summary.emit_now()
        assert status.active_alerts == 1
        assert channels["console"].sent[-1].subject.startswith("Compliance summary")
        assert channels["console"].sent[-1].fields["total_alerts"] == "1"
        assert channels["console"].sent[-1].fields["critical_alerts"] == "1"

    def test_channels_built_from_settings(self) -> None:
        system = create_system(Settings())
        assert set(system.router.channel_names) == {"console", "agent_message"}

    async def test_agent_message_channel_reaches_mailbox(self) -> None:
        system = create_system(Settings())
        await system.register_agent({"id": "agent_1"})
        await system.submit_violation(_critical())
        kinds = [m.kind for m in system.coordinator.pending_messages("agent_1")]
        assert "compliance_alert" in kinds
        assert "immediate_halt" in kinds
