"""AlertManager — turns violations into tracked alerts.

Owns every alert write: creation, deduplication, suppression,
resolution, and the escalation transitions requested by the scheduler.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import pydantic
import structlog

from complywatch.alerts.rules import EffectivePolicy, resolve_policy
from complywatch.alerts.store import (
    AlertRepository,
    InMemoryAlertStore,
    InMemorySuppressionStore,
    SuppressionRepository,
)
from complywatch.core.config import AlertsConfig
from complywatch.core.exceptions import NotFoundError, ValidationError
from complywatch.core.locks import KeyedLock
from complywatch.core.logging import ALERT_LOG
from complywatch.core.types import (
    Alert,
    AlertFilter,
    AlertStatus,
    Clock,
    Notification,
    NotificationOutcome,
    NotificationRecord,
    Resolution,
    Severity,
    SuppressionRule,
    Violation,
)
from complywatch.notify.router import NotificationRouter
from complywatch.notify.templates import alert_notification, resolution_notification

# Dedicated structured logger for alert state transitions.
alert_logger = structlog.get_logger(ALERT_LOG)

logger = structlog.get_logger(__name__)

AlertCallback = Callable[[Alert], Awaitable[None] | None]


class AlertManager:
    """Ingests violations and maintains the alert lifecycle.

    Usage::

        manager = AlertManager(router, config)
        manager.on_alert(coordinator.on_alert)

        alert = await manager.trigger(violation)
        await manager.resolve(alert.id, {"description": "fixed"})

    Violations can also be queued with :meth:`enqueue`; the intake worker
    started by :meth:`start` drains the queue and flushes notifications
    that were queued for non-immediate rules.
    """

    def __init__(
        self,
        router: NotificationRouter,
        config: AlertsConfig | None = None,
        store: AlertRepository | None = None,
        suppressions: SuppressionRepository | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._router = router
        self._config = config or AlertsConfig()
        self._store = store or InMemoryAlertStore()
        self._suppressions = suppressions or InMemorySuppressionStore()
        self._clock = clock
        self._signature_locks = KeyedLock()
        self._queue: asyncio.Queue[Violation] = asyncio.Queue(
            maxsize=self._config.queue_maxsize,
        )
        self._pending: deque[tuple[str, Notification, tuple[str, ...]]] = deque()
        self._created_callbacks: list[AlertCallback] = []
        self._resolved_callbacks: list[AlertCallback] = []
        self._upgraded_callbacks: list[AlertCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._running = False

        self._violations_detected = 0
        self._alerts_created = 0
        self._deduplicated = 0
        self._upgraded = 0
        self._suppressed = 0
        self._resolved = 0

    # ── Properties ───────────────────────────────────────────────

    @property
    def store(self) -> AlertRepository:
        return self._store

    @property
    def suppressions(self) -> SuppressionRepository:
        return self._suppressions

    @property
    def config(self) -> AlertsConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    @property
    def healthy(self) -> bool:
        """True while the intake worker is alive."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def pending_notifications(self) -> int:
        return len(self._pending)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    def stats(self) -> dict[str, int]:
        return {
            "violations_detected": self._violations_detected,
            "alerts_created": self._alerts_created,
            "deduplicated": self._deduplicated,
            "upgraded": self._upgraded,
            "suppressed": self._suppressed,
            "resolved": self._resolved,
            "pending_notifications": len(self._pending),
            "queued_violations": self._queue.qsize(),
        }

    # ── Subscriptions ────────────────────────────────────────────

    def on_alert(self, callback: AlertCallback) -> None:
        """Register a callback for newly created alerts."""
        self._created_callbacks.append(callback)

    def on_resolved(self, callback: AlertCallback) -> None:
        """Register a callback for resolved alerts."""
        self._resolved_callbacks.append(callback)

    def on_upgraded(self, callback: AlertCallback) -> None:
        """Register a callback for open alerts re-graded to a higher severity."""
        self._upgraded_callbacks.append(callback)

    async def _emit(self, callbacks: list[AlertCallback], alert: Alert) -> None:
        for cb in callbacks:
            try:
                result = cb(alert)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("alert_callback_error", alert_id=alert.id)

    # ── Intake ───────────────────────────────────────────────────

    @staticmethod
    def coerce(
        violation: Violation | Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> Violation:
        """Validate a payload into a Violation, filling ids from *context*.

        Raises:
            ValidationError: the payload is malformed.
        """
        ctx = dict(context or {})
        fill = {
            key: ctx[key]
            for key in ("agent_id", "solution_id")
            if ctx.get(key) is not None
        }

        if isinstance(violation, Violation):
            missing = {k: v for k, v in fill.items() if getattr(violation, k) is None}
            return violation.model_copy(update=missing) if missing else violation

        if not isinstance(violation, Mapping):
            raise ValidationError(
                f"violation must be a mapping, got {type(violation).__name__}",
            )
        payload = dict(violation)
        # Accept camelCase keys from JavaScript-style rule evaluators.
        for camel, snake in (("agentId", "agent_id"), ("solutionId", "solution_id")):
            if camel in payload and snake not in payload:
                payload[snake] = payload.pop(camel)
        for key, value in fill.items():
            if payload.get(key) is None:
                payload[key] = value
        try:
            return Violation.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(str(exc)) from exc

    async def enqueue(self, violation: Violation | Mapping[str, Any]) -> None:
        """Queue a violation for the intake worker.

        Malformed payloads are rejected here.  When the queue is full the
        violation is processed inline so it is never dropped.
        """
        v = self.coerce(violation)
        try:
            self._queue.put_nowait(v)
        except asyncio.QueueFull:
            logger.warning("intake_queue_full", violation_type=v.type)
            await self.trigger(v)

    async def process_queue(self) -> int:
        """Trigger every queued violation and flush queued notifications."""
        processed = 0
        while not self._queue.empty():
            v = self._queue.get_nowait()
            try:
                await self.trigger(v)
                processed += 1
            except Exception:
                logger.exception("violation_processing_error", violation_type=v.type)
            finally:
                self._queue.task_done()
        await self.flush_pending()
        return processed

    # ── Trigger ──────────────────────────────────────────────────

    async def trigger(
        self,
        violation: Violation | Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> Alert:
        """Create, deduplicate or suppress an alert for *violation*.

        Returns the existing open alert (occurrence count bumped), a
        SUPPRESSED placeholder, or the newly created ACTIVE alert.  A more
        severe violation than the open alert's re-grades that alert and
        notifies again under the new severity's policy.
        """
        v = self.coerce(violation, context)
        self._violations_detected += 1
        now = self._clock()

        async with self._signature_locks.hold(v.signature):
            existing = await self._store.find_open(v.signature)
            if existing is not None and v.severity <= existing.severity:
                return await self._record_occurrence(existing, now)

            policy = resolve_policy(self._config, v)
            if existing is not None:
                alert = await self._upgrade(existing, v, policy, now)
            else:
                suppression = await self._suppressions.get(v.signature)
                if suppression is not None:
                    if not suppression.active(now):
                        await self._suppressions.remove(v.signature)
                    elif v.severity != Severity.CRITICAL:
                        return self._suppressed_placeholder(v, suppression, now)
                alert = await self._create(v, policy, now)

        notification = alert_notification(alert)
        if policy.immediate:
            alert = await self.deliver(alert.id, notification, policy.channels)
        else:
            self._pending.append((alert.id, notification, policy.channels))
            logger.debug("notification_queued", alert_id=alert.id)

        if existing is None:
            await self._emit(self._created_callbacks, alert)
        else:
            await self._emit(self._upgraded_callbacks, alert)
        return alert

    async def _record_occurrence(self, existing: Alert, now: float) -> Alert:
        def _bump(a: Alert) -> None:
            a.occurrences += 1
            a.updated_at = now

        updated = await self._store.update(existing.id, _bump)
        self._deduplicated += 1
        alert_logger.info(
            "alert_deduplicated",
            alert_id=updated.id,
            violation_type=updated.violation.type,
            agent_id=updated.agent_id,
            occurrences=updated.occurrences,
        )
        return updated

    async def _upgrade(
        self, existing: Alert, v: Violation, policy: EffectivePolicy, now: float,
    ) -> Alert:
        """Re-grade an open alert when a more severe violation arrives.

        The alert takes the new violation and that violation's suppression
        and escalation terms; an earlier escalation deadline is kept.
        """
        suppress_until = now + policy.suppression_secs if policy.suppression_secs > 0 else None

        def _raise(a: Alert) -> None:
            a.violation = v
            a.occurrences += 1
            a.updated_at = now
            a.suppress_until = suppress_until
            if policy.escalate and not a.max_escalated:
                due = now + policy.escalation_secs
                if a.escalation_scheduled is None or due < a.escalation_scheduled:
                    a.escalation_scheduled = due

        updated = await self._store.update(existing.id, _raise)
        # Queued notifications for the old grade are superseded.
        self._pending = deque(p for p in self._pending if p[0] != updated.id)
        if suppress_until is None:
            await self._suppressions.remove(v.signature)
        else:
            await self._suppressions.put(SuppressionRule(
                violation_type=v.type,
                agent_id=v.agent_id,
                until=suppress_until,
                alert_id=updated.id,
            ))

        self._upgraded += 1
        alert_logger.warning(
            "alert_upgraded",
            alert_id=updated.id,
            violation_type=v.type,
            agent_id=v.agent_id,
            previous_severity=existing.severity,
            severity=v.severity,
            escalation_scheduled=updated.escalation_scheduled,
        )
        return updated

    def _suppressed_placeholder(
        self, v: Violation, rule: SuppressionRule, now: float,
    ) -> Alert:
        self._suppressed += 1
        alert_logger.info(
            "alert_suppressed",
            violation_type=v.type,
            agent_id=v.agent_id,
            suppressed_until=rule.until,
        )
        return Alert(
            violation=v,
            status=AlertStatus.SUPPRESSED,
            created_at=now,
            updated_at=now,
            suppress_until=rule.until,
        )

    async def _create(self, v: Violation, policy: EffectivePolicy, now: float) -> Alert:
        alert = Alert(
            violation=v,
            created_at=now,
            updated_at=now,
            escalation_scheduled=(
                now + policy.escalation_secs if policy.escalate else None
            ),
        )
        if policy.suppression_secs > 0:
            until = now + policy.suppression_secs
            alert.suppress_until = until
            await self._suppressions.put(SuppressionRule(
                violation_type=v.type,
                agent_id=v.agent_id,
                until=until,
                alert_id=alert.id,
            ))

        stored = await self._store.add(alert)
        self._alerts_created += 1
        if not policy.known_type:
            logger.warning("unknown_violation_type", violation_type=v.type)
        alert_logger.info(
            "alert_created",
            alert_id=stored.id,
            violation_type=v.type,
            severity=v.severity,
            agent_id=v.agent_id,
            channels=list(policy.channels),
            immediate=policy.immediate,
            escalation_scheduled=stored.escalation_scheduled,
            suppress_until=stored.suppress_until,
        )
        return stored

    # ── Delivery ─────────────────────────────────────────────────

    async def deliver(
        self,
        alert_id: str,
        notification: Notification,
        channels: Sequence[str],
        level: int = 0,
    ) -> Alert:
        """Route *notification* and append the outcomes to the alert."""
        alert = await self._store.get(alert_id)
        records = await self._router.route(alert, notification, channels, level=level)
        return await self.record_notifications(alert_id, records)

    async def record_notifications(
        self, alert_id: str, records: Sequence[NotificationRecord],
    ) -> Alert:
        def _append(a: Alert) -> None:
            a.notifications_sent.extend(records)

        return await self._store.update(alert_id, _append)

    async def flush_pending(self) -> int:
        """Deliver notifications queued for non-immediate rules."""
        sent = 0
        while self._pending:
            alert_id, notification, channels = self._pending.popleft()
            current = await self._store.get(alert_id)
            if current is None or not current.is_open:
                continue
            try:
                await self.deliver(alert_id, notification, channels)
                sent += 1
            except NotFoundError:
                continue
        return sent

    # ── Resolution ───────────────────────────────────────────────

    async def resolve(
        self,
        alert_id: str,
        resolution: Resolution | Mapping[str, Any] | None = None,
    ) -> Alert:
        """Resolve an alert and cancel any pending escalation.

        Bumping the version defeats any escalation compare-and-swap that
        read the alert before this call.

        Raises:
            NotFoundError: unknown alert id.
        """
        if resolution is None:
            res = Resolution()
        elif isinstance(resolution, Resolution):
            res = resolution
        elif not isinstance(resolution, Mapping):
            raise ValidationError(
                f"resolution must be a mapping, got {type(resolution).__name__}",
            )
        else:
            try:
                res = Resolution.model_validate(dict(resolution))
            except pydantic.ValidationError as exc:
                raise ValidationError(str(exc)) from exc

        current = await self._store.get(alert_id)
        if current is None:
            raise NotFoundError(f"alert {alert_id}")
        if not current.is_open:
            return current

        now = self._clock()

        def _resolve(a: Alert) -> None:
            if a.status == AlertStatus.RESOLVED:
                return
            a.status = AlertStatus.RESOLVED
            a.resolved_at = now
            a.resolution = res
            a.escalation_scheduled = None
            a.updated_at = now

        alert = await self._store.update(alert_id, _resolve)
        self._resolved += 1
        alert_logger.info(
            "alert_resolved",
            alert_id=alert.id,
            violation_type=alert.violation.type,
            escalation_level=alert.escalation_level,
            resolved_by=res.resolved_by,
        )

        delivered = [
            r.channel for r in alert.notifications_sent
            if r.outcome == NotificationOutcome.SENT
        ]
        channels = list(dict.fromkeys(delivered))
        if channels:
            records = await self._router.route(alert, resolution_notification(alert), channels)
            alert = await self.record_notifications(alert.id, records)

        await self._emit(self._resolved_callbacks, alert)
        return alert

    # ── Escalation transitions (called by the scheduler) ─────────

    async def escalate(
        self,
        alert_id: str,
        expected_version: int,
        level: int,
        next_due: float | None,
    ) -> Alert:
        """Promote an alert to *level* if nobody wrote it since it was read.

        Raises:
            ConcurrencyConflictError: the alert changed (e.g. was resolved).
        """
        now = self._clock()

        def _promote(a: Alert) -> None:
            a.status = AlertStatus.ESCALATING
            a.escalation_level = level
            a.escalation_scheduled = next_due
            a.updated_at = now

        alert = await self._store.update(alert_id, _promote, expected_version)
        alert_logger.info(
            "alert_escalated",
            alert_id=alert.id,
            level=level,
            next_due=next_due,
        )
        return alert

    async def mark_max_escalated(self, alert_id: str, expected_version: int) -> Alert:
        """Stop scheduling promotions once the policy list is exhausted."""
        now = self._clock()

        def _cap(a: Alert) -> None:
            a.max_escalated = True
            a.escalation_scheduled = None
            a.updated_at = now

        alert = await self._store.update(alert_id, _cap, expected_version)
        alert_logger.info(
            "alert_max_escalated",
            alert_id=alert.id,
            level=alert.escalation_level,
        )
        return alert

    async def clear_escalation(self, alert_id: str) -> Alert:
        def _clear(a: Alert) -> None:
            a.escalation_scheduled = None

        return await self._store.update(alert_id, _clear)

    # ── Queries ──────────────────────────────────────────────────

    async def get(self, alert_id: str) -> Alert:
        alert = await self._store.get(alert_id)
        if alert is None:
            raise NotFoundError(f"alert {alert_id}")
        return alert

    async def list_active(self, alert_filter: AlertFilter | None = None) -> list[Alert]:
        alerts = await self._store.list_alerts(open_only=True)
        if alert_filter is None:
            return alerts
        return [a for a in alerts if alert_filter.matches(a)]

    async def housekeeping(self) -> None:
        """Drop expired suppression rules and long-resolved alerts."""
        now = self._clock()
        expired = await self._suppressions.purge_expired(now)
        purged = await self._store.purge_resolved(
            now - self._config.resolved_retention_secs,
        )
        if expired or purged:
            logger.debug("alert_housekeeping", expired_rules=expired, purged_alerts=purged)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("alert_manager_started")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("alert_manager_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                try:
                    first = await asyncio.wait_for(
                        self._queue.get(),
                        timeout=self._config.intake_interval_secs,
                    )
                except TimeoutError:
                    pass
                else:
                    self._queue.task_done()
                    await self.trigger(first)
                await self.process_queue()
                await self.housekeeping()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("alert_intake_loop_error")
                await asyncio.sleep(self._config.intake_interval_secs)
