"""In-memory registry of agents and correction tasks."""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable

from complywatch.core.exceptions import NotFoundError
from complywatch.core.locks import KeyedLock
from complywatch.core.types import Agent, CorrectionTask, TaskStatus

AgentMutation = Callable[[Agent], None]
TaskMutation = Callable[[CorrectionTask], None]


class AgentRegistry:
    """Holds agents and tasks; every write runs under that record's lock."""

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}
        self._tasks: dict[str, CorrectionTask] = {}
        self._agent_locks = KeyedLock()
        self._task_locks = KeyedLock()
        self._seq = itertools.count(1)

    # ── Agents ──────────────────────────────────────────────────

    def next_seq(self) -> int:
        return next(self._seq)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def agents(self) -> list[Agent]:
        """All agents in registration order."""
        return sorted(self._agents.values(), key=lambda a: a.registration_seq)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    async def upsert_agent(
        self, agent_id: str, create: Callable[[], Agent], mutate: AgentMutation,
    ) -> tuple[Agent, bool]:
        """Create the agent if missing, otherwise apply *mutate*.

        Returns ``(agent, created)``.
        """
        async with self._agent_locks.hold(agent_id):
            existing = self._agents.get(agent_id)
            if existing is None:
                agent = create()
                self._agents[agent_id] = agent
                return agent, True
            mutate(existing)
            return existing, False

    async def update_agent(self, agent_id: str, mutate: AgentMutation) -> Agent:
        async with self._agent_locks.hold(agent_id):
            agent = self._agents.get(agent_id)
            if agent is None:
                raise NotFoundError(f"agent {agent_id}")
            mutate(agent)
            return agent

    # ── Tasks ───────────────────────────────────────────────────

    def get_task(self, task_id: str) -> CorrectionTask | None:
        return self._tasks.get(task_id)

    def tasks(self, status: TaskStatus | None = None) -> list[CorrectionTask]:
        """Tasks in creation order, optionally filtered by status."""
        return [t for t in self._tasks.values() if status is None or t.status == status]

    def add_tasks(self, tasks: Iterable[CorrectionTask]) -> None:
        for task in tasks:
            self._tasks[task.id] = task

    async def update_task(self, task_id: str, mutate: TaskMutation) -> CorrectionTask:
        async with self._task_locks.hold(task_id):
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"task {task_id}")
            mutate(task)
            return task
