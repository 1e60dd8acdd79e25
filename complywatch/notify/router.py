"""Notification router — ordered fan-out with per-channel outcome tracking."""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Mapping, Sequence

import structlog

from complywatch.core.exceptions import ChannelDeliveryError
from complywatch.core.types import (
    Alert,
    Clock,
    Notification,
    NotificationOutcome,
    NotificationRecord,
)
from complywatch.notify.channels import NotificationChannel

logger = structlog.get_logger(__name__)


class NotificationRouter:
    """Fans a notification out to a named channel list.

    - Channels are attempted in the given order, one at a time.
    - Each ``send`` is bounded by *send_timeout_secs*; a hung channel
      yields a TIMEOUT record and the next channel is tried.
    - ``False``, an exception or a timeout on one channel never blocks
      the remaining channels.
    - Unknown channel names are recorded as UNAVAILABLE.
    - No retry: failed deliveries surface again on the next escalation.
    """

    def __init__(
        self,
        channels: Mapping[str, NotificationChannel] | None = None,
        send_timeout_secs: float = 10.0,
        clock: Clock = time.time,
    ) -> None:
        self._channels: dict[str, NotificationChannel] = dict(channels or {})
        self._send_timeout_secs = send_timeout_secs
        self._clock = clock
        self._open = True
        self._outcomes: Counter[tuple[str, NotificationOutcome]] = Counter()

    # ── Registry ────────────────────────────────────────────────

    def register(self, name: str, channel: NotificationChannel) -> None:
        self._channels[name] = channel

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    def get(self, name: str) -> NotificationChannel | None:
        return self._channels.get(name)

    # ── Delivery ────────────────────────────────────────────────

    async def route(
        self,
        alert: Alert | None,
        notification: Notification,
        channels: Sequence[str],
        level: int = 0,
    ) -> list[NotificationRecord]:
        """Deliver *notification* to every channel in *channels*, in order."""
        records: list[NotificationRecord] = []
        for name in channels:
            record = await self._deliver_one(name, notification, level)
            self._outcomes[(name, record.outcome)] += 1
            records.append(record)

        logger.info(
            "notification_routed",
            alert_id=alert.id if alert is not None else notification.alert_id,
            subject=notification.subject,
            level=level,
            outcomes={r.channel: r.outcome.value for r in records},
        )
        return records

    async def _deliver_one(
        self, name: str, notification: Notification, level: int,
    ) -> NotificationRecord:
        channel = self._channels.get(name)
        if not self._open or channel is None:
            return NotificationRecord(
                channel=name,
                timestamp=self._clock(),
                outcome=NotificationOutcome.UNAVAILABLE,
                level=level,
                error="router closed" if not self._open else "channel not configured",
            )

        outcome = NotificationOutcome.SENT
        error = ""
        try:
            ok = await asyncio.wait_for(
                channel.send(notification), timeout=self._send_timeout_secs,
            )
            if not ok:
                raise ChannelDeliveryError(name, "channel reported failure")
        except TimeoutError:
            outcome = NotificationOutcome.TIMEOUT
            error = f"timed out after {self._send_timeout_secs}s"
            logger.warning(
                "channel_send_timeout",
                channel=name,
                alert_id=notification.alert_id,
            )
        except ChannelDeliveryError as exc:
            outcome = NotificationOutcome.FAILED
            error = exc.reason or str(exc)
            logger.warning(
                "channel_delivery_failed",
                channel=name,
                alert_id=notification.alert_id,
                error=error,
            )
        except Exception as exc:
            outcome = NotificationOutcome.FAILED
            error = str(exc) or type(exc).__name__
            logger.exception(
                "channel_dispatch_error",
                channel=name,
                alert_id=notification.alert_id,
            )

        return NotificationRecord(
            channel=name,
            timestamp=self._clock(),
            outcome=outcome,
            level=level,
            error=error,
        )

    def delivery_stats(self) -> dict[str, dict[str, int]]:
        """Per-channel counts of each outcome since start."""
        stats: dict[str, dict[str, int]] = {}
        for (name, outcome), count in self._outcomes.items():
            stats.setdefault(name, {})[outcome.value] = count
        return stats

    # ── Lifecycle ───────────────────────────────────────────────

    @property
    def healthy(self) -> bool:
        return self._open

    async def start(self) -> None:
        self._open = True

    async def stop(self) -> None:
        await self.close()

    async def close(self) -> None:
        self._open = False
        for name, ch in self._channels.items():
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=name)
