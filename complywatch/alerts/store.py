"""Alert and suppression repositories.

Every write to a stored alert goes through :meth:`AlertRepository.update`,
which holds a per-alert lock, optionally checks the caller's expected
``version`` (compare-and-swap) and bumps ``version`` on success.
"""

from __future__ import annotations

import abc
from collections.abc import Callable

from complywatch.core.exceptions import ConcurrencyConflictError, NotFoundError
from complywatch.core.locks import KeyedLock
from complywatch.core.types import Alert, SuppressionRule

Signature = tuple[str, str | None]
AlertMutation = Callable[[Alert], None]


class AlertRepository(abc.ABC):
    """Storage contract for alerts; implementations return copies."""

    @abc.abstractmethod
    async def add(self, alert: Alert) -> Alert:
        """Insert a new alert."""

    @abc.abstractmethod
    async def get(self, alert_id: str) -> Alert | None:
        """Return the alert or None."""

    @abc.abstractmethod
    async def update(
        self,
        alert_id: str,
        mutate: AlertMutation,
        expected_version: int | None = None,
    ) -> Alert:
        """Apply *mutate* to the stored alert and bump its version.

        Raises:
            NotFoundError: unknown alert id.
            ConcurrencyConflictError: *expected_version* is stale.
        """

    @abc.abstractmethod
    async def find_open(self, signature: Signature) -> Alert | None:
        """Return the non-resolved alert for *signature*, if any."""

    @abc.abstractmethod
    async def list_alerts(self, open_only: bool = True) -> list[Alert]:
        """Return alerts ordered by creation time."""

    @abc.abstractmethod
    async def list_scheduled(self) -> list[Alert]:
        """Return every alert that still has an escalation time set."""

    @abc.abstractmethod
    async def purge_resolved(self, before: float) -> int:
        """Drop alerts resolved before *before*; returns the count removed."""


class SuppressionRepository(abc.ABC):
    """Storage contract for suppression rules, at most one per key."""

    @abc.abstractmethod
    async def get(self, key: Signature) -> SuppressionRule | None: ...

    @abc.abstractmethod
    async def put(self, rule: SuppressionRule) -> None: ...

    @abc.abstractmethod
    async def remove(self, key: Signature) -> None: ...

    @abc.abstractmethod
    async def purge_expired(self, now: float) -> int: ...


class InMemoryAlertStore(AlertRepository):
    """Dict-backed alert repository with a signature index of open alerts."""

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._open_by_signature: dict[Signature, str] = {}
        self._locks = KeyedLock()

    def __len__(self) -> int:
        return len(self._alerts)

    async def add(self, alert: Alert) -> Alert:
        async with self._locks.hold(alert.id):
            if alert.id in self._alerts:
                raise ValueError(f"duplicate alert id {alert.id}")
            stored = alert.model_copy(deep=True)
            self._alerts[alert.id] = stored
            if stored.is_open:
                self._open_by_signature[stored.signature] = stored.id
            return stored.model_copy(deep=True)

    async def get(self, alert_id: str) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert is not None else None

    async def update(
        self,
        alert_id: str,
        mutate: AlertMutation,
        expected_version: int | None = None,
    ) -> Alert:
        async with self._locks.hold(alert_id):
            current = self._alerts.get(alert_id)
            if current is None:
                raise NotFoundError(f"alert {alert_id}")
            if expected_version is not None and current.version != expected_version:
                raise ConcurrencyConflictError(
                    alert_id, expected_version, current.version,
                )

            updated = current.model_copy(deep=True)
            mutate(updated)
            updated.version = current.version + 1
            self._alerts[alert_id] = updated

            if not updated.is_open and (
                self._open_by_signature.get(updated.signature) == alert_id
            ):
                del self._open_by_signature[updated.signature]
            return updated.model_copy(deep=True)

    async def find_open(self, signature: Signature) -> Alert | None:
        alert_id = self._open_by_signature.get(signature)
        if alert_id is None:
            return None
        return await self.get(alert_id)

    async def list_alerts(self, open_only: bool = True) -> list[Alert]:
        alerts = [
            a.model_copy(deep=True)
            for a in self._alerts.values()
            if a.is_open or not open_only
        ]
        alerts.sort(key=lambda a: a.created_at)
        return alerts

    async def list_scheduled(self) -> list[Alert]:
        return [
            a.model_copy(deep=True)
            for a in self._alerts.values()
            if a.escalation_scheduled is not None
        ]

    async def purge_resolved(self, before: float) -> int:
        stale = [
            alert_id
            for alert_id, a in self._alerts.items()
            if a.resolved_at is not None and a.resolved_at < before
        ]
        for alert_id in stale:
            del self._alerts[alert_id]
        return len(stale)


class InMemorySuppressionStore(SuppressionRepository):
    """Dict-backed suppression rules keyed by signature."""

    def __init__(self) -> None:
        self._rules: dict[Signature, SuppressionRule] = {}

    def __len__(self) -> int:
        return len(self._rules)

    async def get(self, key: Signature) -> SuppressionRule | None:
        return self._rules.get(key)

    async def put(self, rule: SuppressionRule) -> None:
        self._rules[rule.key] = rule

    async def remove(self, key: Signature) -> None:
        self._rules.pop(key, None)

    async def purge_expired(self, now: float) -> int:
        expired = [key for key, rule in self._rules.items() if not rule.active(now)]
        for key in expired:
            del self._rules[key]
        return len(expired)
