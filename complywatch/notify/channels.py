"""Notification channels — console, email, chat webhook, agent and security delivery."""

from __future__ import annotations

import abc
import asyncio
import datetime
import smtplib
import sys
from email.message import EmailMessage
from typing import Protocol, TextIO

import aiohttp
import structlog

from complywatch.core.config import (
    ChatConfig,
    ConsoleConfig,
    EmailConfig,
    SecurityTeamConfig,
)
from complywatch.core.types import Notification, Severity

logger = structlog.get_logger(__name__)

# Chat attachment colours keyed by severity.
_CHAT_COLORS: dict[Severity, str] = {
    Severity.LOW: "#95A5A6",       # grey
    Severity.MEDIUM: "#3498DB",    # blue
    Severity.HIGH: "#F39C12",      # orange
    Severity.CRITICAL: "#E74C3C",  # red
}


class NotificationChannel(abc.ABC):
    """Base class for notification delivery channels."""

    name: str = "channel"

    @abc.abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Send a notification. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class ConsoleChannel(NotificationChannel):
    """Writes a framed notification block to a text stream (stdout by default)."""

    name = "console"

    def __init__(
        self, config: ConsoleConfig | None = None, stream: TextIO | None = None,
    ) -> None:
        self._config = config or ConsoleConfig()
        self._stream = stream

    async def send(self, notification: Notification) -> bool:
        stream = self._stream or sys.stdout
        rule = "=" * 80
        when = datetime.datetime.fromtimestamp(
            notification.timestamp, datetime.UTC,
        ).isoformat()
        lines = [
            "",
            rule,
            f"COMPLIANCE ALERT [{notification.severity.name}] - {when}",
            rule,
            f"Subject: {notification.subject}",
            f"Alert ID: {notification.alert_id or 'N/A'}",
            f"Agent: {notification.agent_id or 'unknown'}",
        ]
        if notification.targets:
            lines.append(f"Targets: {', '.join(notification.targets)}")
        lines += ["", notification.body, rule, ""]
        print("\n".join(lines), file=stream, flush=True)
        logger.debug(
            "console_notification",
            alert_id=notification.alert_id or None,
            severity=notification.severity.label,
            subject=notification.subject,
        )
        return True

    async def close(self) -> None:
        return None


class EmailChannel(NotificationChannel):
    """Delivers notifications over SMTP; the blocking client runs in a thread."""

    name = "email"

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    def recipients(self, notification: Notification) -> list[str]:
        recipients = list(self._config.recipients)
        if notification.severity == Severity.CRITICAL:
            recipients += [
                r for r in self._config.critical_recipients if r not in recipients
            ]
        return recipients

    def build_message(self, notification: Notification) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = notification.subject
        msg["From"] = self._config.from_addr
        msg["To"] = ", ".join(self.recipients(notification))
        msg["X-Priority"] = "1" if notification.severity == Severity.CRITICAL else "3"
        msg.set_content(notification.body)
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        cfg = self._config
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=30) as server:
            if cfg.use_tls:
                server.starttls()
            password = cfg.password.get_secret_value()
            if cfg.username and password:
                server.login(cfg.username, password)
            server.send_message(msg)

    async def send(self, notification: Notification) -> bool:
        if not self.recipients(notification):
            logger.warning("email_no_recipients", alert_id=notification.alert_id)
            return False
        msg = self.build_message(notification)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(
                "email_send_failed",
                alert_id=notification.alert_id,
                error=str(exc),
            )
            return False
        return True

    async def close(self) -> None:
        return None


class ChatChannel(NotificationChannel):
    """Delivers notifications to a Slack-compatible incoming webhook."""

    name = "chat"

    def __init__(self, config: ChatConfig) -> None:
        self._webhook_url = config.webhook_url.get_secret_value()
        self._channel = config.channel
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def build_payload(self, notification: Notification) -> dict:
        attachment: dict = {
            "color": _CHAT_COLORS.get(notification.severity, "#95A5A6"),
            "title": f"[{notification.severity.name}] {notification.subject}",
            "text": notification.body,
        }
        if notification.fields:
            attachment["fields"] = [
                {"title": k, "value": v, "short": True}
                for k, v in notification.fields.items()
            ]
        return {
            "channel": self._channel,
            "text": notification.subject,
            "attachments": [attachment],
        }

    async def send(self, notification: Notification) -> bool:
        if not self._webhook_url:
            logger.warning("chat_webhook_not_configured")
            return False
        payload = self.build_payload(notification)
        try:
            session = self._get_session()
            async with session.post(self._webhook_url, json=payload) as resp:
                if resp.status in (200, 204):
                    return True
                body = await resp.text()
                logger.warning(
                    "chat_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except aiohttp.ClientError:
            logger.exception("chat_send_error")
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class AgentMessenger(Protocol):
    """Anything that can hand a notification to the agent it concerns."""

    async def notify_agent(self, notification: Notification) -> bool: ...


class AgentMessageChannel(NotificationChannel):
    """Delivers notifications straight into the violating agent's mailbox."""

    name = "agent_message"

    def __init__(self, messenger: AgentMessenger) -> None:
        self._messenger = messenger

    async def send(self, notification: Notification) -> bool:
        if notification.agent_id is None:
            logger.debug("agent_message_no_agent", alert_id=notification.alert_id)
            return False
        return await self._messenger.notify_agent(notification)

    async def close(self) -> None:
        return None


class SecurityTeamChannel(NotificationChannel):
    """Security escalation: writes a security log record and mails the security list."""

    name = "security_team"

    def __init__(
        self,
        config: SecurityTeamConfig,
        mailer: EmailChannel | None = None,
    ) -> None:
        self._config = config
        self._mailer = mailer

    async def send(self, notification: Notification) -> bool:
        log = logger.critical if notification.severity == Severity.CRITICAL else logger.warning
        log(
            "security_escalation",
            alert_id=notification.alert_id,
            subject=notification.subject,
            agent_id=notification.agent_id,
            level=notification.level,
            escalation_phone=self._config.escalation_phone or None,
        )
        if self._mailer is None or not self._config.emails:
            return True
        return await self._mailer.send(notification)

    async def close(self) -> None:
        if self._mailer is not None:
            await self._mailer.close()
