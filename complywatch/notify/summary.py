"""Scheduled compliance summary."""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Sequence

import structlog

from complywatch.core.types import Alert, Clock, PeriodTotals, Severity, SystemStatus
from complywatch.notify.router import NotificationRouter
from complywatch.notify.templates import summary_notification

logger = structlog.get_logger(__name__)

# Type alias for the status callable (e.g. ComplianceSystem.get_status).
SnapshotFn = Callable[[], Awaitable[SystemStatus]]
# Every stored alert, open or resolved (e.g. the alert store's list_alerts).
HistoryFn = Callable[[], Awaitable[Sequence[Alert]]]

_TOP_VIOLATIONS = 5


def _period_label(interval_secs: float) -> str:
    if interval_secs >= 86400:
        return "daily"
    if interval_secs >= 3600:
        return "hourly"
    return f"every {interval_secs:.0f}s"


def period_totals(alerts: Iterable[Alert], start: float, end: float) -> PeriodTotals:
    """Count alerts created, and alerts resolved, within ``[start, end)``."""
    alerts = list(alerts)
    created = [a for a in alerts if start <= a.created_at < end]
    resolved = [
        a for a in alerts
        if a.resolved_at is not None and start <= a.resolved_at < end
    ]
    top = Counter(a.violation.type for a in created).most_common(_TOP_VIOLATIONS)
    return PeriodTotals(
        start=start,
        end=end,
        total_alerts=len(created),
        critical_alerts=sum(a.severity == Severity.CRITICAL for a in created),
        high_alerts=sum(a.severity == Severity.HIGH for a in created),
        resolved_alerts=len(resolved),
        top_violations=dict(top),
    )


class ComplianceSummaryScheduler:
    """Background task that emits a compliance summary every *interval_secs*.

    Usage::

        scheduler = ComplianceSummaryScheduler(
            router=router,
            snapshot_fn=system.get_status,
            interval_secs=3600,
        )
        await scheduler.start()
        # ...
        await scheduler.stop()
    """

    def __init__(
        self,
        router: NotificationRouter,
        snapshot_fn: SnapshotFn,
        interval_secs: float = 3600.0,
        channels: Sequence[str] = ("console",),
        clock: Clock = time.time,
        history_fn: HistoryFn | None = None,
    ) -> None:
        self._router = router
        self._snapshot_fn = snapshot_fn
        self._history_fn = history_fn
        self._last_totals: PeriodTotals | None = None
        self._interval_secs = interval_secs
        self._channels = list(channels)
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._last_sent: float | None = None

    @property
    def last_sent(self) -> float | None:
        return self._last_sent

    @property
    def last_totals(self) -> PeriodTotals | None:
        return self._last_totals

    @property
    def healthy(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def emit_now(self) -> SystemStatus:
        """Build and send the summary immediately (useful for testing)."""
        status = await self._snapshot_fn()
        now = self._clock()
        totals: PeriodTotals | None = None
        if self._history_fn is not None:
            totals = period_totals(
                await self._history_fn(), now - self._interval_secs, now,
            )
        notification = summary_notification(
            status, _period_label(self._interval_secs), totals,
        )
        await self._router.route(None, notification, self._channels)
        self._last_sent = now
        self._last_totals = totals
        return status

    # ── Internal loop ───────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval_secs)
                await self.emit_now()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("compliance_summary_loop_error")
