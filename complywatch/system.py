"""ComplianceSystem — the programmatic surface over all subsystems."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

import pydantic
import structlog

from complywatch.agents.coordinator import AgentCoordinator
from complywatch.alerts.manager import AlertManager
from complywatch.core.exceptions import ComplianceError, NotFoundError, ValidationError
from complywatch.core.types import (
    AgentInfo,
    Alert,
    AlertFilter,
    Clock,
    OperationResult,
    RegistrationAck,
    Resolution,
    SystemStatus,
    Violation,
)
from complywatch.escalation.scheduler import EscalationScheduler
from complywatch.health.supervisor import HealthSupervisor, Subsystem
from complywatch.notify.router import NotificationRouter
from complywatch.notify.summary import ComplianceSummaryScheduler

logger = structlog.get_logger(__name__)


def compliance_score(
    active_alerts: int,
    unhealthy_subsystems: int,
    violations_detected: int,
    alerts_resolved: int,
) -> float:
    """Overall score in 0..100.

    Each open alert costs 5 points (capped at 50), each unhealthy
    subsystem 10, and a resolution rate above 80% earns a 5 point bonus.
    """
    score = 100.0
    score -= min(50, 5 * active_alerts)
    score -= 10 * unhealthy_subsystems
    if violations_detected > 0 and alerts_resolved / violations_detected > 0.8:
        score += 5
    return max(0.0, min(100.0, score))


class ComplianceSystem:
    """Facade wiring intake, escalation, routing, coordination and health.

    Mutations return explicit results (``RegistrationAck``,
    ``OperationResult``); :meth:`get_status` never raises.
    """

    def __init__(
        self,
        manager: AlertManager,
        scheduler: EscalationScheduler,
        router: NotificationRouter,
        coordinator: AgentCoordinator,
        supervisor: HealthSupervisor,
        clock: Clock = time.time,
    ) -> None:
        self._manager = manager
        self._scheduler = scheduler
        self._router = router
        self._coordinator = coordinator
        self._supervisor = supervisor
        self._summary: ComplianceSummaryScheduler | None = None
        self._clock = clock
        self._started_at: float | None = None
        self._last_status: SystemStatus | None = None

        supervisor.attach(manager)
        supervisor.register("alert_manager", manager)
        supervisor.register("scheduler", scheduler)
        supervisor.register("router", router)
        supervisor.register("coordinator", coordinator)

    # ── Components ───────────────────────────────────────────────

    @property
    def manager(self) -> AlertManager:
        return self._manager

    @property
    def scheduler(self) -> EscalationScheduler:
        return self._scheduler

    @property
    def router(self) -> NotificationRouter:
        return self._router

    @property
    def coordinator(self) -> AgentCoordinator:
        return self._coordinator

    @property
    def supervisor(self) -> HealthSupervisor:
        return self._supervisor

    @property
    def summary(self) -> ComplianceSummaryScheduler | None:
        return self._summary

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def attach_summary(self, summary: ComplianceSummaryScheduler) -> None:
        self._summary = summary
        self._supervisor.register("summary", summary)

    def _workers(self) -> list[tuple[str, Subsystem]]:
        workers: list[tuple[str, Subsystem]] = [
            ("router", self._router),
            ("alert_manager", self._manager),
            ("scheduler", self._scheduler),
            ("coordinator", self._coordinator),
        ]
        if self._summary is not None:
            workers.append(("summary", self._summary))
        return workers

    # ── Operations ───────────────────────────────────────────────

    async def submit_violation(
        self,
        violation: Violation | Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> str:
        """Process a violation synchronously and return the alert id.

        Raises:
            ValidationError: malformed violation payload.
        """
        alert = await self._manager.trigger(violation, context)
        return alert.id

    async def register_agent(self, info: AgentInfo | Mapping[str, Any]) -> RegistrationAck:
        try:
            agent = await self._coordinator.register(info)
        except ValidationError as exc:
            logger.warning("agent_registration_rejected", error=str(exc))
            return RegistrationAck(ok=False, error=str(exc))
        return RegistrationAck(ok=True, agent_id=agent.id)

    async def resolve_alert(
        self,
        alert_id: str,
        resolution: Resolution | Mapping[str, Any] | None = None,
    ) -> OperationResult:
        try:
            await self._manager.resolve(alert_id, resolution)
        except NotFoundError:
            return OperationResult(ok=False, error="not_found")
        except ComplianceError as exc:
            logger.warning("alert_resolution_failed", alert_id=alert_id, error=str(exc))
            return OperationResult(ok=False, error=str(exc))
        return OperationResult(ok=True)

    async def list_active_alerts(
        self, alert_filter: AlertFilter | Mapping[str, Any] | None = None,
    ) -> list[Alert]:
        if alert_filter is not None and not isinstance(alert_filter, AlertFilter):
            try:
                alert_filter = AlertFilter.model_validate(dict(alert_filter))
            except pydantic.ValidationError as exc:
                raise ValidationError(str(exc)) from exc
        return await self._manager.list_active(alert_filter)

    async def get_status(self) -> SystemStatus:
        """Current status; falls back to the last good snapshot on error."""
        now = self._clock()
        try:
            active = await self._manager.list_active()
            subsystems = self._supervisor.health()
            stats = self._manager.stats()
            status = SystemStatus(
                active_alerts=len(active),
                compliance_score=compliance_score(
                    active_alerts=len(active),
                    unhealthy_subsystems=sum(not ok for ok in subsystems.values()),
                    violations_detected=stats["violations_detected"],
                    alerts_resolved=stats["resolved"],
                ),
                agents_coordinated=self._coordinator.agent_count,
                uptime_secs=self._uptime(now),
                subsystems=subsystems,
                timestamp=now,
            )
        except Exception:
            logger.exception("status_snapshot_error")
            if self._last_status is not None:
                return self._last_status.model_copy(update={"degraded": True})
            return SystemStatus(
                uptime_secs=self._uptime(now), degraded=True, timestamp=now,
            )
        self._last_status = status
        return status

    def _uptime(self, now: float) -> float:
        return 0.0 if self._started_at is None else max(0.0, now - self._started_at)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started_at is not None:
            return
        for _, worker in self._workers():
            await worker.start()
        await self._supervisor.start()
        self._started_at = self._clock()
        logger.info(
            "compliance_system_started",
            subsystems=[name for name, _ in self._workers()],
        )

    async def stop(self) -> None:
        await self._supervisor.stop()
        for name, worker in reversed(self._workers()):
            try:
                await worker.stop()
            except Exception:
                logger.exception("subsystem_stop_error", subsystem=name)
        uptime = self._uptime(self._clock())
        self._started_at = None
        logger.info("compliance_system_stopped", uptime_secs=round(uptime, 1))
