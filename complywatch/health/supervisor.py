"""HealthSupervisor — liveness checks with a single restart attempt."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

import structlog

from complywatch.alerts.manager import AlertManager
from complywatch.core.config import HealthConfig
from complywatch.core.exceptions import SubsystemFailure
from complywatch.core.types import Clock, Severity, Violation

logger = structlog.get_logger(__name__)

SYSTEM_FAILURE = "system_failure"


class Subsystem(Protocol):
    """Anything the supervisor can observe and restart."""

    @property
    def healthy(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class HealthSupervisor:
    """Watches registered subsystems and reports the ones it cannot recover.

    An unhealthy subsystem gets exactly one ``stop()`` + ``start()``.  If
    it is still unhealthy afterwards (or the restart raised), a
    :class:`SubsystemFailure` is recorded and a critical
    ``system_failure`` violation is raised through the alert manager.
    The subsystem is then left alone until it is seen healthy again or
    :meth:`reset` is called, so a broken subsystem cannot produce a
    restart/alert loop.
    """

    def __init__(
        self,
        alert_manager: AlertManager | None = None,
        config: HealthConfig | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._alert_manager = alert_manager
        self._config = config or HealthConfig()
        self._clock = clock
        self._subsystems: dict[str, Subsystem] = {}
        self._failed: set[str] = set()
        self._failures: list[SubsystemFailure] = []
        self._restarts = 0
        self._task: asyncio.Task[None] | None = None
        self._running = False

    def attach(self, alert_manager: AlertManager) -> None:
        self._alert_manager = alert_manager

    def register(self, name: str, subsystem: Subsystem) -> None:
        self._subsystems[name] = subsystem

    def unregister(self, name: str) -> None:
        self._subsystems.pop(name, None)
        self._failed.discard(name)

    # ── Queries ─────────────────────────────────────────────────

    @property
    def names(self) -> list[str]:
        return list(self._subsystems)

    @property
    def failed(self) -> set[str]:
        return set(self._failed)

    @property
    def failures(self) -> list[SubsystemFailure]:
        return list(self._failures)

    @property
    def restarts(self) -> int:
        return self._restarts

    @property
    def healthy(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def health(self) -> dict[str, bool]:
        """Current liveness of every registered subsystem."""
        return {name: _is_healthy(sub) for name, sub in self._subsystems.items()}

    # ── Checks ──────────────────────────────────────────────────

    async def check_once(self) -> dict[str, bool]:
        """Run one supervision pass; returns liveness after recovery attempts."""
        result: dict[str, bool] = {}
        for name, sub in list(self._subsystems.items()):
            if _is_healthy(sub):
                if name in self._failed:
                    self._failed.discard(name)
                    logger.info("subsystem_recovered", subsystem=name)
                result[name] = True
                continue

            if name in self._failed:
                result[name] = False
                continue

            logger.warning("subsystem_unhealthy", subsystem=name)
            reason = await self._recover(name, sub)
            if reason is None:
                result[name] = True
                continue

            await self._report_failure(name, reason)
            result[name] = False
        return result

    async def _recover(self, name: str, sub: Subsystem) -> str | None:
        """Restart once; returns None on success, else the failure reason."""
        self._restarts += 1
        try:
            await sub.stop()
            await sub.start()
        except Exception as exc:
            logger.exception("subsystem_restart_error", subsystem=name)
            return f"restart raised {type(exc).__name__}: {exc}"

        if _is_healthy(sub):
            logger.info("subsystem_restarted", subsystem=name)
            return None
        return "still unhealthy after restart"

    async def _report_failure(self, name: str, reason: str) -> None:
        failure = SubsystemFailure(name, reason)
        self._failures.append(failure)
        self._failed.add(name)
        logger.error("subsystem_failure", subsystem=name, reason=reason)

        if self._alert_manager is None:
            return
        violation = Violation(
            type=SYSTEM_FAILURE,
            severity=Severity.CRITICAL,
            message=f"Subsystem {name} failed: {reason}",
            timestamp=self._clock(),
            source="health_supervisor",
            details={"subsystem": name, "error": reason},
        )
        try:
            await self._alert_manager.trigger(violation)
        except Exception:
            logger.exception("system_failure_alert_error", subsystem=name)

    def reset(self, name: str | None = None) -> None:
        """Allow a failed subsystem (or all of them) to be restarted again."""
        if name is None:
            self._failed.clear()
        else:
            self._failed.discard(name)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("health_supervisor_started", subsystems=self.names)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("health_supervisor_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._config.check_interval_secs)
                await self.check_once()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("health_check_loop_error")


def _is_healthy(sub: Subsystem) -> bool:
    try:
        return bool(sub.healthy)
    except Exception:
        logger.exception("health_probe_error")
        return False
