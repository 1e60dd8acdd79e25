"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    alert_log_path: str = ""


# ── Alerting ─────────────────────────────────────────────────────


class AlertRuleConfig(BaseModel):
    """Delivery, escalation and suppression policy for one violation type.

    Critical violations always notify immediately, include the
    configured critical channels and are never suppressed, whatever the
    rule says.
    """

    immediate: bool = False
    channels: list[str] = ["console"]
    escalate: bool = False
    escalation_secs: float = Field(default=300.0, gt=0)
    suppression_secs: float = Field(default=0.0, ge=0)


def _default_alert_rules() -> dict[str, AlertRuleConfig]:
    return {
        "variableCountExceeded": AlertRuleConfig(
            immediate=True,
            channels=["email", "console", "agent_message"],
            escalate=True,
            escalation_secs=300,
        ),
        "securityViolation": AlertRuleConfig(
            immediate=True,
            channels=["email", "console", "agent_message", "security_team"],
            escalate=True,
            escalation_secs=180,
        ),
        "invalidUserCriteria": AlertRuleConfig(
            immediate=True,
            channels=["email", "console", "agent_message"],
            escalate=True,
            escalation_secs=600,
        ),
        "system_failure": AlertRuleConfig(
            immediate=True,
            channels=["console", "email", "security_team"],
            escalate=True,
            escalation_secs=300,
        ),
        "performanceConcern": AlertRuleConfig(
            channels=["console", "agent_message"],
            escalate=True,
            escalation_secs=900,
            suppression_secs=300,
        ),
        "itemDesignerLimitation": AlertRuleConfig(
            channels=["console", "agent_message"],
            suppression_secs=600,
        ),
        "integrationError": AlertRuleConfig(
            immediate=True,
            channels=["email", "console", "agent_message"],
            escalate=True,
            escalation_secs=600,
            suppression_secs=120,
        ),
        "complianceScoreLow": AlertRuleConfig(
            channels=["console", "agent_message"],
            suppression_secs=1800,
        ),
        "tooManyVariables": AlertRuleConfig(
            channels=["console"],
            suppression_secs=3600,
        ),
        "bestPracticeViolation": AlertRuleConfig(
            channels=["console"],
            suppression_secs=7200,
        ),
    }


class AlertsConfig(BaseModel):
    """Alert manager configuration."""

    rules: dict[str, AlertRuleConfig] = Field(default_factory=_default_alert_rules)
    fallback: AlertRuleConfig = AlertRuleConfig(
        channels=["console"],
        suppression_secs=7200,
    )
    critical_channels: list[str] = ["email", "console", "agent_message"]
    intake_interval_secs: float = 5.0
    queue_maxsize: int = 1000
    resolved_retention_secs: float = 86400.0


class EscalationLevelConfig(BaseModel):
    """One level of the escalation policy."""

    targets: list[str] = []
    channels: list[str] = ["console"]
    timeout_secs: float = Field(default=300.0, gt=0)


def _default_escalation_levels() -> list[EscalationLevelConfig]:
    return [
        EscalationLevelConfig(
            targets=["development_team", "agent_coordinators"],
            channels=["email", "console"],
            timeout_secs=300,
        ),
        EscalationLevelConfig(
            targets=["technical_leads", "senior_developers"],
            channels=["email", "chat"],
            timeout_secs=600,
        ),
        EscalationLevelConfig(
            targets=["management", "architecture_team"],
            channels=["email", "chat", "security_team"],
            timeout_secs=900,
        ),
        EscalationLevelConfig(
            targets=["executive_team", "emergency_contacts"],
            channels=["chat", "security_team", "console"],
            timeout_secs=1800,
        ),
    ]


class EscalationConfig(BaseModel):
    """Escalation scheduler configuration — levels are 1-indexed by position."""

    scan_interval_secs: float = 60.0
    levels: list[EscalationLevelConfig] = Field(
        default_factory=_default_escalation_levels,
    )


# ── Channels ─────────────────────────────────────────────────────


class ConsoleConfig(BaseModel):
    """Console (log) channel."""

    enabled: bool = True


class EmailConfig(BaseModel):
    """SMTP email channel."""

    enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    use_tls: bool = True
    username: str = ""
    password: SecretStr = SecretStr("")
    from_addr: str = "esc-alerts@company.com"
    recipients: list[str] = ["dev-team@company.com"]
    critical_recipients: list[str] = ["tech-leads@company.com"]


class ChatConfig(BaseModel):
    """Slack-compatible incoming webhook channel."""

    enabled: bool = False
    webhook_url: SecretStr = SecretStr("")
    channel: str = "#esc-alerts"


class SecurityTeamConfig(BaseModel):
    """Security escalation channel — mails the security list."""

    enabled: bool = False
    emails: list[str] = []
    escalation_phone: str = ""


class AgentMessageConfig(BaseModel):
    """Direct-to-agent channel through the agent coordinator."""

    enabled: bool = True


class NotifyConfig(BaseModel):
    """Notification router and channel configuration."""

    send_timeout_secs: float = 10.0
    console: ConsoleConfig = ConsoleConfig()
    email: EmailConfig = EmailConfig()
    chat: ChatConfig = ChatConfig()
    security_team: SecurityTeamConfig = SecurityTeamConfig()
    agent_message: AgentMessageConfig = AgentMessageConfig()


# ── Coordination / health / reporting ────────────────────────────


class CoordinationRuleConfig(BaseModel):
    """How the coordinator reacts to one violation type.

    ``capability_groups`` yields one correction task per group.
    ``action`` is applied to critical violations only.
    """

    action: str = ""
    notify_all: bool = False
    capability_groups: list[list[str]] = [["compliance_review"]]


def _default_coordination_rules() -> dict[str, CoordinationRuleConfig]:
    return {
        "variableCountExceeded": CoordinationRuleConfig(
            action="immediate_halt",
            notify_all=True,
            capability_groups=[["catalog_creation", "variable_validation"]],
        ),
        "invalidUserCriteria": CoordinationRuleConfig(
            action="immediate_correction",
            notify_all=True,
            capability_groups=[["user_criteria"]],
        ),
        "securityViolation": CoordinationRuleConfig(
            action="immediate_halt",
            notify_all=True,
            capability_groups=[["security"], ["acl_configuration"]],
        ),
        "performanceConcern": CoordinationRuleConfig(
            action="coordinate_optimization",
            capability_groups=[["performance"]],
        ),
        "itemDesignerLimitation": CoordinationRuleConfig(
            action="suggest_alternative",
            capability_groups=[["catalog_creation"]],
        ),
        "integrationError": CoordinationRuleConfig(
            capability_groups=[["integration"]],
        ),
    }


class CoordinatorConfig(BaseModel):
    """Agent coordinator configuration."""

    cycle_interval_secs: float = 15.0
    heartbeat_timeout_secs: float = 90.0
    offline_after_secs: float = 600.0
    correction_deadline_secs: float = 300.0
    rules: dict[str, CoordinationRuleConfig] = Field(
        default_factory=_default_coordination_rules,
    )
    default_rule: CoordinationRuleConfig = CoordinationRuleConfig()


class HealthConfig(BaseModel):
    """Health supervisor configuration."""

    check_interval_secs: float = 30.0


class SummaryConfig(BaseModel):
    """Periodic compliance summary."""

    enabled: bool = False
    interval_secs: float = 3600.0
    channels: list[str] = ["console"]


class Settings(BaseModel):
    """Root settings container."""

    logging: LoggingConfig = LoggingConfig()
    alerts: AlertsConfig = AlertsConfig()
    escalation: EscalationConfig = EscalationConfig()
    notify: NotifyConfig = NotifyConfig()
    coordinator: CoordinatorConfig = CoordinatorConfig()
    health: HealthConfig = HealthConfig()
    summary: SummaryConfig = SummaryConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
