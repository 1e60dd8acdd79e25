"""Time-based escalation of unacknowledged alerts."""

from complywatch.escalation.scheduler import EscalationScheduler

__all__ = ["EscalationScheduler"]
