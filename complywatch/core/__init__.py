"""Core module — config, types, errors, logging."""

from complywatch.core.config import Settings, get_settings, load_settings, reset_settings
from complywatch.core.exceptions import (
    ChannelDeliveryError,
    ComplianceError,
    ConcurrencyConflictError,
    NotFoundError,
    SubsystemFailure,
    ValidationError,
)
from complywatch.core.locks import KeyedLock
from complywatch.core.logging import setup_logging
from complywatch.core.types import (
    Agent,
    AgentInfo,
    AgentMessage,
    AgentStatus,
    Alert,
    AlertFilter,
    AlertStatus,
    Clock,
    CorrectionTask,
    MessagePriority,
    Notification,
    NotificationOutcome,
    NotificationRecord,
    OperationResult,
    PeriodTotals,
    RegistrationAck,
    Resolution,
    Severity,
    SuppressionRule,
    SystemStatus,
    TaskStatus,
    Violation,
    new_id,
)

__all__ = [
    "Agent",
    "AgentInfo",
    "AgentMessage",
    "AgentStatus",
    "Alert",
    "AlertFilter",
    "AlertStatus",
    "ChannelDeliveryError",
    "Clock",
    "ComplianceError",
    "ConcurrencyConflictError",
    "CorrectionTask",
    "KeyedLock",
    "MessagePriority",
    "NotFoundError",
    "Notification",
    "NotificationOutcome",
    "NotificationRecord",
    "OperationResult",
    "PeriodTotals",
    "RegistrationAck",
    "Resolution",
    "Settings",
    "Severity",
    "SubsystemFailure",
    "SuppressionRule",
    "SystemStatus",
    "TaskStatus",
    "ValidationError",
    "Violation",
    "get_settings",
    "load_settings",
    "new_id",
    "reset_settings",
    "setup_logging",
]
