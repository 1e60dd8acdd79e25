"""Agent coordination — registry, correction tasks and mailboxes."""

from complywatch.agents.coordinator import (
    AgentCoordinator,
    MessageSink,
    correction_actions,
    prevention_tips,
    suitability,
)
from complywatch.agents.mailbox import Mailbox
from complywatch.agents.registry import AgentRegistry

__all__ = [
    "AgentCoordinator",
    "AgentRegistry",
    "Mailbox",
    "MessageSink",
    "correction_actions",
    "prevention_tips",
    "suitability",
]
