"""EscalationScheduler — promotes unacknowledged alerts one level per pass."""

from __future__ import annotations

import asyncio
import time

import structlog

from complywatch.alerts.manager import AlertManager
from complywatch.core.config import EscalationConfig, EscalationLevelConfig
from complywatch.core.exceptions import ConcurrencyConflictError, NotFoundError
from complywatch.core.types import Alert, AlertStatus, Clock
from complywatch.notify.templates import escalation_notification

logger = structlog.get_logger(__name__)


class EscalationScheduler:
    """Periodically scans scheduled alerts and promotes the overdue ones.

    Every promotion is a compare-and-swap against the alert version read
    at the start of the pass, so a concurrent resolution always wins:
    the conflicting alert is skipped and, being resolved, is never
    picked up again.

    Usage::

        scheduler = EscalationScheduler(manager, config.escalation)
        await scheduler.start()
        # ...
        await scheduler.stop()
    """

    def __init__(
        self,
        manager: AlertManager,
        config: EscalationConfig | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._manager = manager
        self._config = config or EscalationConfig()
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._escalations = 0
        self._conflicts = 0

    @property
    def levels(self) -> list[EscalationLevelConfig]:
        return self._config.levels

    def policy_for(self, level: int) -> EscalationLevelConfig | None:
        """Return the 1-indexed escalation level, or None past the end."""
        if 1 <= level <= len(self._config.levels):
            return self._config.levels[level - 1]
        return None

    @property
    def healthy(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def stats(self) -> dict[str, int]:
        return {"escalations": self._escalations, "conflicts": self._conflicts}

    # ── Scan ────────────────────────────────────────────────────

    async def scan_once(self) -> list[Alert]:
        """Run a single pass; returns the alerts promoted in this pass."""
        now = self._clock()
        promoted: list[Alert] = []
        for alert in await self._manager.store.list_scheduled():
            if alert.status == AlertStatus.RESOLVED:
                await self._clear(alert.id)
                continue
            if alert.max_escalated or alert.escalation_scheduled is None:
                continue
            if alert.escalation_scheduled > now:
                continue

            try:
                result = await self._promote(alert, now)
            except ConcurrencyConflictError as exc:
                self._conflicts += 1
                logger.info(
                    "escalation_conflict",
                    alert_id=alert.id,
                    expected=exc.expected,
                    actual=exc.actual,
                )
                continue
            except NotFoundError:
                continue
            except Exception:
                logger.exception("escalation_error", alert_id=alert.id)
                continue

            if result is not None:
                promoted.append(result)
        return promoted

    async def _clear(self, alert_id: str) -> None:
        try:
            await self._manager.clear_escalation(alert_id)
        except NotFoundError:
            pass

    async def _promote(self, alert: Alert, now: float) -> Alert | None:
        level = alert.escalation_level + 1
        policy = self.policy_for(level)
        if policy is None:
            await self._manager.mark_max_escalated(alert.id, alert.version)
            return None

        promoted = await self._manager.escalate(
            alert.id,
            expected_version=alert.version,
            level=level,
            next_due=now + policy.timeout_secs,
        )
        self._escalations += 1

        current = await self._manager.store.get(alert.id)
        if current is None or current.status == AlertStatus.RESOLVED:
            logger.info("escalation_notification_skipped", alert_id=alert.id, level=level)
            return promoted

        notification = escalation_notification(current, level, policy.targets, now)
        return await self._manager.deliver(
            alert.id, notification, policy.channels, level=level,
        )

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("escalation_scheduler_started", levels=len(self._config.levels))

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("escalation_scheduler_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.scan_once()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("escalation_loop_error")
            await asyncio.sleep(self._config.scan_interval_secs)
