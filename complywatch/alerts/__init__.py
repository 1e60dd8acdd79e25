"""Alert lifecycle — creation, deduplication, suppression and resolution."""

from complywatch.alerts.manager import AlertCallback, AlertManager
from complywatch.alerts.rules import EffectivePolicy, resolve_policy
from complywatch.alerts.store import (
    AlertRepository,
    InMemoryAlertStore,
    InMemorySuppressionStore,
    SuppressionRepository,
)

__all__ = [
    "AlertCallback",
    "AlertManager",
    "AlertRepository",
    "EffectivePolicy",
    "InMemoryAlertStore",
    "InMemorySuppressionStore",
    "SuppressionRepository",
    "resolve_policy",
]
