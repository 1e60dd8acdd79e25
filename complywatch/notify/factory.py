"""Convenience factory for wiring notification channels."""

from __future__ import annotations

from complywatch.core.config import NotifyConfig
from complywatch.notify.channels import (
    AgentMessageChannel,
    AgentMessenger,
    ChatChannel,
    ConsoleChannel,
    EmailChannel,
    NotificationChannel,
    SecurityTeamChannel,
)
from complywatch.notify.router import NotificationRouter


def build_channels(
    config: NotifyConfig,
    messenger: AgentMessenger | None = None,
) -> dict[str, NotificationChannel]:
    """Instantiate every enabled channel, keyed by its routing name.

    ``agent_message`` needs a *messenger* (normally the agent coordinator)
    and is skipped without one.
    """
    channels: dict[str, NotificationChannel] = {}

    if config.console.enabled:
        channels[ConsoleChannel.name] = ConsoleChannel(config.console)

    if config.email.enabled:
        channels[EmailChannel.name] = EmailChannel(config.email)

    if config.chat.enabled:
        channels[ChatChannel.name] = ChatChannel(config.chat)

    if config.security_team.enabled:
        mailer: EmailChannel | None = None
        if config.email.enabled and config.security_team.emails:
            mailer = EmailChannel(config.email.model_copy(update={
                "recipients": list(config.security_team.emails),
                "critical_recipients": [],
            }))
        channels[SecurityTeamChannel.name] = SecurityTeamChannel(
            config.security_team, mailer=mailer,
        )

    if config.agent_message.enabled and messenger is not None:
        channels[AgentMessageChannel.name] = AgentMessageChannel(messenger)

    return channels


def create_router(
    config: NotifyConfig,
    messenger: AgentMessenger | None = None,
) -> NotificationRouter:
    """Build a router over the enabled channels."""
    return NotificationRouter(
        channels=build_channels(config, messenger),
        send_timeout_secs=config.send_timeout_secs,
    )
