"""Priority-partitioned agent mailboxes."""

from __future__ import annotations

from collections import deque

from complywatch.core.types import AgentMessage, MessagePriority


class Mailbox:
    """Urgent messages always drain before normal ones; FIFO within each."""

    def __init__(self) -> None:
        self._urgent: deque[AgentMessage] = deque()
        self._normal: deque[AgentMessage] = deque()

    def __len__(self) -> int:
        return len(self._urgent) + len(self._normal)

    def put(self, message: AgentMessage) -> None:
        if message.priority == MessagePriority.URGENT:
            self._urgent.append(message)
        else:
            self._normal.append(message)

    def peek(self) -> list[AgentMessage]:
        """Return pending messages in delivery order without removing them."""
        return [*self._urgent, *self._normal]

    def drain(self) -> list[AgentMessage]:
        messages = self.peek()
        self._urgent.clear()
        self._normal.clear()
        return messages
