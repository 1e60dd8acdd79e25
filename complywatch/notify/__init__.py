"""Notification routing, channels and message templates."""

from complywatch.notify.channels import (
    AgentMessageChannel,
    AgentMessenger,
    ChatChannel,
    ConsoleChannel,
    EmailChannel,
    NotificationChannel,
    SecurityTeamChannel,
)
from complywatch.notify.factory import build_channels, create_router
from complywatch.notify.router import NotificationRouter
from complywatch.notify.summary import ComplianceSummaryScheduler, period_totals
from complywatch.notify.templates import (
    alert_notification,
    escalation_notification,
    resolution_notification,
    summary_notification,
)

__all__ = [
    "AgentMessageChannel",
    "AgentMessenger",
    "ChatChannel",
    "ComplianceSummaryScheduler",
    "ConsoleChannel",
    "EmailChannel",
    "NotificationChannel",
    "NotificationRouter",
    "SecurityTeamChannel",
    "alert_notification",
    "build_channels",
    "create_router",
    "escalation_notification",
    "period_totals",
    "resolution_notification",
    "summary_notification",
]
