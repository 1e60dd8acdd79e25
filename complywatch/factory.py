"""Convenience factory for wiring the full compliance stack."""

from __future__ import annotations

import functools
import time
from collections.abc import Mapping

from complywatch.agents.coordinator import AgentCoordinator
from complywatch.alerts.manager import AlertManager
from complywatch.core.config import Settings, get_settings
from complywatch.core.types import Clock
from complywatch.escalation.scheduler import EscalationScheduler
from complywatch.health.supervisor import HealthSupervisor
from complywatch.notify.channels import NotificationChannel
from complywatch.notify.factory import build_channels
from complywatch.notify.router import NotificationRouter
from complywatch.notify.summary import ComplianceSummaryScheduler
from complywatch.system import ComplianceSystem


def create_system(
    settings: Settings | None = None,
    clock: Clock = time.time,
    channels: Mapping[str, NotificationChannel] | None = None,
) -> ComplianceSystem:
    """Build a ComplianceSystem from settings.

    Args:
        settings: Settings tree. Defaults to the cached global settings.
        clock: Time source shared by every component.
        channels: Explicit channel map; replaces the channels built from
            ``settings.notify``.
    """
    settings = settings or get_settings()

    coordinator = AgentCoordinator(settings.coordinator, clock=clock)

    if channels is None:
        channels = build_channels(settings.notify, messenger=coordinator)
    router = NotificationRouter(
        channels=channels,
        send_timeout_secs=settings.notify.send_timeout_secs,
        clock=clock,
    )

    manager = AlertManager(router, settings.alerts, clock=clock)
    manager.on_alert(coordinator.on_alert)
    manager.on_upgraded(coordinator.on_alert_upgraded)
    manager.on_resolved(coordinator.notify_resolution)

    scheduler = EscalationScheduler(manager, settings.escalation, clock=clock)
    supervisor = HealthSupervisor(manager, settings.health, clock=clock)

    system = ComplianceSystem(
        manager=manager,
        scheduler=scheduler,
        router=router,
        coordinator=coordinator,
        supervisor=supervisor,
        clock=clock,
    )

    if settings.summary.enabled:
        system.attach_summary(ComplianceSummaryScheduler(
            router=router,
            snapshot_fn=system.get_status,
            interval_secs=settings.summary.interval_secs,
            channels=settings.summary.channels,
            clock=clock,
            history_fn=functools.partial(manager.store.list_alerts, open_only=False),
        ))

    return system
