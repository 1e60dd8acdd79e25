"""Domain types for compliance alerting and agent coordination."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Wall-clock source (epoch seconds); injectable so timers are testable.
Clock = Callable[[], float]


def new_id(prefix: str) -> str:
    """Return a short unique id such as ``alert_3f9c2a1b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ── Violations ───────────────────────────────────────────────────


class Severity(IntEnum):
    """Violation severity — ordered so comparisons work naturally."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: object) -> Severity:
        """Parse a severity leniently; anything unrecognised is LOW."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                return cls.LOW
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper(), cls.LOW)
        return cls.LOW


class Violation(BaseModel):
    """A single non-compliance event reported by a rule evaluator.

    Violations are immutable.  ``signature`` — ``(type, agent_id)`` —
    identifies the alert a violation belongs to.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("vio"))
    type: str
    severity: Severity = Severity.LOW
    message: str
    agent_id: str | None = None
    solution_id: str | None = None
    actual: float | None = None
    limit: float | None = None
    timestamp: float = Field(default_factory=time.time)
    source: str = "rule_evaluator"
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: object) -> Severity:
        return Severity.parse(value)

    @field_validator("type", "message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @property
    def signature(self) -> tuple[str, str | None]:
        return (self.type, self.agent_id)


# ── Alerts ───────────────────────────────────────────────────────


class AlertStatus(StrEnum):
    """Alert lifecycle state."""

    ACTIVE = "active"
    SUPPRESSED = "suppressed"
    ESCALATING = "escalating"
    RESOLVED = "resolved"


class NotificationOutcome(StrEnum):
    """Result of one delivery attempt on one channel."""

    SENT = "sent"
    FAILED = "failed"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


class NotificationRecord(BaseModel):
    """Delivery outcome recorded on an alert."""

    channel: str
    timestamp: float
    outcome: NotificationOutcome
    level: int = 0
    error: str = ""


class Resolution(BaseModel):
    """How an alert was resolved."""

    description: str = ""
    resolved_by: str = "system"


class Alert(BaseModel):
    """Tracked, stateful record produced from violations sharing a signature."""

    id: str = Field(default_factory=lambda: new_id("alert"))
    violation: Violation
    status: AlertStatus = AlertStatus.ACTIVE
    escalation_level: int = Field(default=0, ge=0)
    max_escalated: bool = False
    occurrences: int = 1
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    resolved_at: float | None = None
    resolution: Resolution | None = None
    notifications_sent: list[NotificationRecord] = Field(default_factory=list)
    suppress_until: float | None = None
    escalation_scheduled: float | None = None
    version: int = 0

    @property
    def signature(self) -> tuple[str, str | None]:
        return self.violation.signature

    @property
    def severity(self) -> Severity:
        return self.violation.severity

    @property
    def agent_id(self) -> str | None:
        return self.violation.agent_id

    @property
    def is_open(self) -> bool:
        """True for every non-terminal state."""
        return self.status != AlertStatus.RESOLVED


class SuppressionRule(BaseModel):
    """Time-bounded rule preventing new alerts for one signature."""

    violation_type: str
    agent_id: str | None = None
    until: float
    alert_id: str = ""

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.violation_type, self.agent_id)

    def active(self, now: float) -> bool:
        return now < self.until


class AlertFilter(BaseModel):
    """Optional criteria for listing active alerts."""

    severity: Severity | None = None
    violation_type: str | None = None
    agent_id: str | None = None
    status: AlertStatus | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: object) -> Severity | None:
        return None if value is None else Severity.parse(value)

    def matches(self, alert: Alert) -> bool:
        if self.severity is not None and alert.severity != self.severity:
            return False
        if self.violation_type is not None and alert.violation.type != self.violation_type:
            return False
        if self.agent_id is not None and alert.agent_id != self.agent_id:
            return False
        if self.status is not None and alert.status != self.status:
            return False
        return True


# ── Notifications ────────────────────────────────────────────────


class Notification(BaseModel):
    """Channel-neutral notification handed to every channel's ``send``."""

    subject: str
    body: str = ""
    priority: str = "medium"
    alert_id: str = ""
    severity: Severity = Severity.LOW
    agent_id: str | None = None
    level: int = 0
    targets: list[str] = Field(default_factory=list)
    fields: dict[str, str] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


# ── Agents ───────────────────────────────────────────────────────


class AgentStatus(StrEnum):
    """Liveness of a registered worker agent."""

    ACTIVE = "active"
    STALE = "stale"
    OFFLINE = "offline"


class AgentInfo(BaseModel):
    """Registration payload sent by a worker agent."""

    id: str
    type: str = ""
    capabilities: set[str] = Field(default_factory=set)
    validation_score: float | None = Field(default=None, ge=0, le=100)

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class Agent(BaseModel):
    """A registered worker agent."""

    id: str
    type: str = ""
    capabilities: set[str] = Field(default_factory=set)
    status: AgentStatus = AgentStatus.ACTIVE
    validation_score: float = Field(default=100.0, ge=0, le=100)
    violation_count: int = 0
    last_seen: float = 0.0
    registered_at: float = 0.0
    registration_seq: int = 0


class TaskStatus(StrEnum):
    """Correction task lifecycle."""

    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class CorrectionTask(BaseModel):
    """Unit of remediation work derived from an agent's violation."""

    id: str = Field(default_factory=lambda: new_id("task"))
    violation_ref: str
    violation_type: str
    alert_id: str | None = None
    source_agent: str | None = None
    required_capabilities: set[str] = Field(default_factory=set)
    assigned_agent: str | None = None
    priority: int = 1
    status: TaskStatus = TaskStatus.UNASSIGNED
    created_at: float = 0.0
    assigned_at: float | None = None
    completed_at: float | None = None


class MessagePriority(StrEnum):
    """Mailbox partition for agent messages."""

    URGENT = "urgent"
    NORMAL = "normal"


class AgentMessage(BaseModel):
    """Message queued for delivery to one agent."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    kind: str
    priority: MessagePriority = MessagePriority.NORMAL
    body: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


# ── Facade results ───────────────────────────────────────────────


class OperationResult(BaseModel):
    """Explicit success/error result of a mutation."""

    ok: bool
    error: str = ""


class RegistrationAck(BaseModel):
    """Acknowledgement returned to a registering agent."""

    ok: bool
    agent_id: str = ""
    error: str = ""


class SystemStatus(BaseModel):
    """Point-in-time status of the whole compliance system."""

    active_alerts: int = 0
    compliance_score: float = 100.0
    agents_coordinated: int = 0
    uptime_secs: float = 0.0
    subsystems: dict[str, bool] = Field(default_factory=dict)
    degraded: bool = False
    timestamp: float = Field(default_factory=time.time)


class PeriodTotals(BaseModel):
    """Alert counts over one summary period ``[start, end)``."""

    start: float
    end: float
    total_alerts: int = 0
    critical_alerts: int = 0
    high_alerts: int = 0
    resolved_alerts: int = 0
    top_violations: dict[str, int] = Field(default_factory=dict)
