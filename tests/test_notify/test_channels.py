"""Tests for notification channels — HTTP/SMTP mocking, error handling, sessions."""

from __future__ import annotations

import io
import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
from pydantic import SecretStr

from complywatch.core.config import ChatConfig, EmailConfig, SecurityTeamConfig
from complywatch.core.types import Notification, Severity
from complywatch.notify.channels import (
    AgentMessageChannel,
    ChatChannel,
    ConsoleChannel,
    EmailChannel,
    SecurityTeamChannel,
)

# ── Helpers ─────────────────────────────────────────────────────


def _note(**kw: object) -> Notification:
    defaults: dict[str, object] = {
        "subject": "High priority compliance issue - integrationError",
        "body": "Agent: agent-1\nDetails: ...",
        "priority": "high",
        "alert_id": "alert_abc",
        "severity": Severity.HIGH,
        "agent_id": "agent-1",
        "fields": {"type": "integrationError"},
        "timestamp": 1000.0,
    }
    defaults.update(kw)
    return Notification(**defaults)  # type: ignore[arg-type]


def _chat_config(**kw: object) -> ChatConfig:
    defaults: dict[str, object] = {
        "enabled": True,
        "webhook_url": SecretStr("https://hooks.example.com/services/fake"),
    }
    defaults.update(kw)
    return ChatConfig(**defaults)  # type: ignore[arg-type]


def _email_config(**kw: object) -> EmailConfig:
    defaults: dict[str, object] = {
        "enabled": True,
        "smtp_host": "smtp.example.com",
        "username": "bot",
        "password": SecretStr("pw"),
        "recipients": ["dev@example.com"],
        "critical_recipients": ["leads@example.com"],
    }
    defaults.update(kw)
    return EmailConfig(**defaults)  # type: ignore[arg-type]


def _mock_response(status: int = 200, text: str = "ok") -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _mock_session(resp: AsyncMock | None = None, error: Exception | None = None) -> MagicMock:
    session = MagicMock()
    if error is not None:
        session.post = MagicMock(side_effect=error)
    else:
        session.post = MagicMock(return_value=resp)
    session.closed = False
    return session


# ── ConsoleChannel ──────────────────────────────────────────────


class TestConsoleChannel:
    async def test_writes_framed_block(self) -> None:
        stream = io.StringIO()
        ch = ConsoleChannel(stream=stream)
        assert await ch.send(_note(targets=["technical_leads"])) is True
        out = stream.getvalue()
        assert "COMPLIANCE ALERT [HIGH]" in out
        assert "Subject: High priority compliance issue" in out
        assert "Alert ID: alert_abc" in out
        assert "Targets: technical_leads" in out

    async def test_unknown_agent_placeholder(self) -> None:
        stream = io.StringIO()
        await ConsoleChannel(stream=stream).send(_note(agent_id=None))
        assert "Agent: unknown" in stream.getvalue()

    async def test_delivery_is_logged(self) -> None:
        with patch("complywatch.notify.channels.logger") as log:
            await ConsoleChannel(stream=io.StringIO()).send(_note())
        log.debug.assert_called_once_with(
            "console_notification",
            alert_id="alert_abc",
            severity="high",
            subject="High priority compliance issue - integrationError",
        )


# ── EmailChannel ────────────────────────────────────────────────


class TestEmailChannel:
    def test_critical_adds_critical_recipients(self) -> None:
        ch = EmailChannel(_email_config())
        assert ch.recipients(_note()) == ["dev@example.com"]
        assert ch.recipients(_note(severity=Severity.CRITICAL)) == [
            "dev@example.com", "leads@example.com",
        ]

    def test_build_message(self) -> None:
        msg = EmailChannel(_email_config()).build_message(_note(severity=Severity.CRITICAL))
        assert msg["Subject"].startswith("High priority")
        assert msg["X-Priority"] == "1"
        assert "leads@example.com" in msg["To"]

    async def test_send_success(self) -> None:
        ch = EmailChannel(_email_config())
        with patch("complywatch.notify.channels.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            assert await ch.send(_note()) is True
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "pw")
        server.send_message.assert_called_once()

    async def test_smtp_error_returns_false(self) -> None:
        ch = EmailChannel(_email_config())
        with patch("complywatch.notify.channels.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.send_message.side_effect = smtplib.SMTPException("relay denied")
            assert await ch.send(_note()) is False

    async def test_connection_error_returns_false(self) -> None:
        ch = EmailChannel(_email_config())
        with patch(
            "complywatch.notify.channels.smtplib.SMTP",
            side_effect=ConnectionRefusedError("no server"),
        ):
            assert await ch.send(_note()) is False

    async def test_no_recipients_returns_false(self) -> None:
        ch = EmailChannel(_email_config(recipients=[], critical_recipients=[]))
        with patch("complywatch.notify.channels.smtplib.SMTP") as smtp_cls:
            assert await ch.send(_note()) is False
        smtp_cls.assert_not_called()


# ── ChatChannel ─────────────────────────────────────────────────


class TestChatChannel:
    async def test_send_success(self) -> None:
        ch = ChatChannel(_chat_config())
        session = _mock_session(_mock_response(200))
        ch._session = session

        assert await ch.send(_note()) is True
        call_args = session.post.call_args
        assert call_args[0][0] == "https://hooks.example.com/services/fake"
        payload = call_args[1]["json"]
        assert payload["channel"] == "#esc-alerts"
        attachment = payload["attachments"][0]
        assert attachment["title"].startswith("[HIGH]")
        assert attachment["color"] == "#F39C12"
        assert {"title": "type", "value": "integrationError", "short": True} in attachment["fields"]

    async def test_send_204_also_success(self) -> None:
        ch = ChatChannel(_chat_config())
        ch._session = _mock_session(_mock_response(204))
        assert await ch.send(_note()) is True

    async def test_send_failure_status(self) -> None:
        ch = ChatChannel(_chat_config())
        ch._session = _mock_session(_mock_response(500, "server error"))
        assert await ch.send(_note()) is False

    async def test_client_error_returns_false(self) -> None:
        ch = ChatChannel(_chat_config())
        ch._session = _mock_session(error=aiohttp.ClientConnectionError("reset"))
        assert await ch.send(_note()) is False

    async def test_missing_webhook_returns_false(self) -> None:
        ch = ChatChannel(_chat_config(webhook_url=SecretStr("")))
        assert await ch.send(_note()) is False

    async def test_close_session(self) -> None:
        ch = ChatChannel(_chat_config())
        session = AsyncMock()
        session.closed = False
        ch._session = session
        await ch.close()
        session.close.assert_awaited_once()

    async def test_close_when_no_session(self) -> None:
        ch = ChatChannel(_chat_config())
        await ch.close()  # should not raise

    async def test_lazy_session_creation(self) -> None:
        ch = ChatChannel(_chat_config())
        assert ch._session is None
        session = ch._get_session()
        assert session is not None
        await ch.close()


# ── AgentMessageChannel ─────────────────────────────────────────


class TestAgentMessageChannel:
    async def test_forwards_to_messenger(self) -> None:
        messenger = MagicMock()
        messenger.notify_agent = AsyncMock(return_value=True)
        ch = AgentMessageChannel(messenger)
        note = _note()
        assert await ch.send(note) is True
        messenger.notify_agent.assert_awaited_once_with(note)

    async def test_no_agent_returns_false(self) -> None:
        messenger = MagicMock()
        messenger.notify_agent = AsyncMock(return_value=True)
        ch = AgentMessageChannel(messenger)
        assert await ch.send(_note(agent_id=None)) is False
        messenger.notify_agent.assert_not_awaited()


# ── SecurityTeamChannel ─────────────────────────────────────────


class TestSecurityTeamChannel:
    async def test_without_mailer_logs_and_succeeds(self) -> None:
        ch = SecurityTeamChannel(SecurityTeamConfig(enabled=True))
        assert await ch.send(_note(severity=Severity.CRITICAL)) is True

    async def test_mails_security_list(self) -> None:
        mailer = MagicMock()
        mailer.send = AsyncMock(return_value=False)
        ch = SecurityTeamChannel(
            SecurityTeamConfig(enabled=True, emails=["sec@example.com"]),
            mailer=mailer,
        )
        assert await ch.send(_note()) is False
        mailer.send.assert_awaited_once()

    async def test_close_closes_mailer(self) -> None:
        mailer = MagicMock()
        mailer.close = AsyncMock()
        ch = SecurityTeamChannel(SecurityTeamConfig(), mailer=mailer)
        await ch.close()
        mailer.close.assert_awaited_once()
