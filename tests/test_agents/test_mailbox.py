"""Tests for Mailbox — priority partitioning and FIFO order."""

from __future__ import annotations

from complywatch.agents.mailbox import Mailbox
from complywatch.core.types import AgentMessage, MessagePriority


def _msg(kind: str, urgent: bool = False) -> AgentMessage:
    priority = MessagePriority.URGENT if urgent else MessagePriority.NORMAL
    return AgentMessage(kind=kind, priority=priority)


class TestMailbox:
    def test_urgent_drains_first(self) -> None:
        box = Mailbox()
        box.put(_msg("n1"))
        box.put(_msg("u1", urgent=True))
        box.put(_msg("n2"))
        box.put(_msg("u2", urgent=True))
        assert [m.kind for m in box.drain()] == ["u1", "u2", "n1", "n2"]

    def test_drain_empties(self) -> None:
        box = Mailbox()
        box.put(_msg("n1"))
        assert len(box) == 1
        box.drain()
        assert len(box) == 0
        assert box.drain() == []

    def test_peek_does_not_remove(self) -> None:
        box = Mailbox()
        box.put(_msg("n1"))
        assert [m.kind for m in box.peek()] == ["n1"]
        assert len(box) == 1
