"""Resolve the effective delivery policy for a violation."""

from __future__ import annotations

from dataclasses import dataclass

from complywatch.core.config import AlertsConfig
from complywatch.core.types import Severity, Violation


@dataclass(frozen=True)
class EffectivePolicy:
    """What the alert manager does with one new alert."""

    immediate: bool
    channels: tuple[str, ...]
    escalate: bool
    escalation_secs: float
    suppression_secs: float
    known_type: bool


def _ordered_unique(*groups: list[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for group in groups:
        for name in group:
            seen.setdefault(name, None)
    return tuple(seen)


def resolve_policy(config: AlertsConfig, violation: Violation) -> EffectivePolicy:
    """Look up the per-type rule, falling back for unknown types.

    Critical violations are always immediate, always escalate, go to
    every configured critical channel and are never suppressed.
    """
    rule = config.rules.get(violation.type)
    known = rule is not None
    if rule is None:
        rule = config.fallback

    if violation.severity == Severity.CRITICAL:
        return EffectivePolicy(
            immediate=True,
            channels=_ordered_unique(config.critical_channels, rule.channels),
            escalate=True,
            escalation_secs=rule.escalation_secs,
            suppression_secs=0.0,
            known_type=known,
        )

    return EffectivePolicy(
        immediate=rule.immediate,
        channels=_ordered_unique(rule.channels),
        escalate=rule.escalate,
        escalation_secs=rule.escalation_secs,
        suppression_secs=max(rule.suppression_secs, 0.0),
        known_type=known,
    )
