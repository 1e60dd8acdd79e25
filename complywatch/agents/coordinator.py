"""AgentCoordinator — registry, correction tasks and agent messaging."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import pydantic
import structlog

from complywatch.agents.mailbox import Mailbox
from complywatch.agents.registry import AgentRegistry
from complywatch.core.config import CoordinationRuleConfig, CoordinatorConfig
from complywatch.core.exceptions import NotFoundError, ValidationError
from complywatch.core.types import (
    Agent,
    AgentInfo,
    AgentMessage,
    AgentStatus,
    Alert,
    Clock,
    CorrectionTask,
    MessagePriority,
    Notification,
    Severity,
    TaskStatus,
    Violation,
)

logger = structlog.get_logger(__name__)

MessageSink = Callable[[str, AgentMessage], Awaitable[None] | None]

# Keyed by violation type with case and underscores folded away.
_CORRECTION_ACTIONS: dict[str, dict[str, Any]] = {
    "variablecountexceeded": {
        "action": "reduce_variables",
        "description": "Reduce catalog item variables to under 100",
        "steps": [
            "Identify non-essential variables",
            "Group related variables into variable sets",
            "Consider splitting into multiple catalog items",
        ],
    },
    "invalidusercriteria": {
        "action": "fix_user_criteria",
        "description": "Configure user criteria at item level only",
        "steps": [
            "Remove category-level user criteria",
            "Set item-level user criteria",
            "Test access control",
        ],
    },
}

_GENERIC_CORRECTION: dict[str, Any] = {
    "action": "generic_correction",
    "description": "Address the identified violation",
    "steps": ["Review violation details", "Apply appropriate correction"],
}

_PREVENTION_TIPS: dict[str, list[str]] = {
    "variablecountexceeded": [
        "Keep catalog items under 100 variables",
        "Reuse variable sets instead of duplicating variables",
    ],
    "invalidusercriteria": [
        "Set user criteria on the catalog item, never on the category",
        "Test access with a non-admin user before publishing",
    ],
}

_GENERIC_PREVENTION_TIPS = ["Follow ESC best practices", "Use validation tools"]


def correction_actions(violation_type: str) -> list[dict[str, Any]]:
    """Concrete remediation steps sent with an immediate correction command."""
    key = violation_type.replace("_", "").lower()
    action = _CORRECTION_ACTIONS.get(key, _GENERIC_CORRECTION)
    return [{**action, "steps": list(action["steps"])}]


def prevention_tips(violation_type: str) -> list[str]:
    """Advice broadcast to every agent when a critical violation is seen."""
    key = violation_type.replace("_", "").lower()
    return list(_PREVENTION_TIPS.get(key, _GENERIC_PREVENTION_TIPS))


def suitability(agent: Agent, task: CorrectionTask) -> float:
    """Score an agent for a task; higher is better."""
    overlap = len(agent.capabilities & task.required_capabilities)
    return 10 * overlap + 0.1 * agent.validation_score - 2 * agent.violation_count


class AgentCoordinator:
    """Coordinates corrective work across registered worker agents.

    - Agents register (idempotent on id) and are marked stale/offline
      when they stop sending heartbeats.
    - Violations raised against an agent become correction tasks, one
      per capability group of the type's coordination rule.
    - Each coordination cycle assigns unassigned tasks to the most
      suitable active agent and delivers queued mailbox messages.
    """

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        registry: AgentRegistry | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._config = config or CoordinatorConfig()
        self._registry = registry or AgentRegistry()
        self._clock = clock
        self._mailboxes: dict[str, Mailbox] = {}
        self._sinks: list[MessageSink] = []
        self._task: asyncio.Task[None] | None = None
        self._running = False

    # ── Properties ───────────────────────────────────────────────

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def agent_count(self) -> int:
        return len(self._registry)

    @property
    def healthy(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def rule_for(self, violation_type: str) -> CoordinationRuleConfig:
        return self._config.rules.get(violation_type, self._config.default_rule)

    # ── Registration ─────────────────────────────────────────────

    async def register(self, info: AgentInfo | Mapping[str, Any]) -> Agent:
        """Register or refresh an agent.

        Re-registration keeps the agent's violation count and its
        registration order; only the first registration gets a welcome
        message.

        Raises:
            ValidationError: malformed registration payload.
        """
        if not isinstance(info, AgentInfo):
            try:
                info = AgentInfo.model_validate(dict(info))
            except (pydantic.ValidationError, TypeError, ValueError) as exc:
                raise ValidationError(str(exc)) from exc

        now = self._clock()

        def _create() -> Agent:
            return Agent(
                id=info.id,
                type=info.type,
                capabilities=set(info.capabilities),
                validation_score=(
                    info.validation_score if info.validation_score is not None else 100.0
                ),
                last_seen=now,
                registered_at=now,
                registration_seq=self._registry.next_seq(),
            )

        def _refresh(agent: Agent) -> None:
            agent.type = info.type or agent.type
            agent.capabilities = set(info.capabilities)
            if info.validation_score is not None:
                agent.validation_score = info.validation_score
            agent.status = AgentStatus.ACTIVE
            agent.last_seen = now

        agent, created = await self._registry.upsert_agent(info.id, _create, _refresh)
        self._mailboxes.setdefault(agent.id, Mailbox())

        logger.info(
            "agent_registered" if created else "agent_reregistered",
            agent_id=agent.id,
            agent_type=agent.type,
            capabilities=sorted(agent.capabilities),
        )
        if created:
            self._enqueue(agent.id, AgentMessage(
                kind="welcome",
                body=(
                    f"Welcome {agent.id}. All solutions must follow the platform "
                    "compliance requirements; violations are reported back here."
                ),
                payload={"capabilities": sorted(agent.capabilities)},
                timestamp=now,
            ))
        return agent.model_copy(deep=True)

    async def touch(self, agent_id: str) -> Agent:
        """Record a heartbeat; stale or offline agents become active again."""
        now = self._clock()

        def _seen(agent: Agent) -> None:
            if agent.status != AgentStatus.ACTIVE:
                logger.info("agent_reactivated", agent_id=agent.id, previous=agent.status)
            agent.status = AgentStatus.ACTIVE
            agent.last_seen = now

        agent = await self._registry.update_agent(agent_id, _seen)
        return agent.model_copy(deep=True)

    async def record_validation(
        self,
        agent_id: str,
        score: float,
        violation_count: int | None = None,
    ) -> Agent:
        """Store the latest validation result reported for an agent."""
        if not 0 <= score <= 100:
            raise ValidationError(f"validation score out of range: {score}")
        now = self._clock()

        def _apply(agent: Agent) -> None:
            agent.validation_score = score
            if violation_count is not None:
                agent.violation_count = violation_count
            agent.last_seen = now
            agent.status = AgentStatus.ACTIVE

        agent = await self._registry.update_agent(agent_id, _apply)
        logger.debug("agent_validation_recorded", agent_id=agent_id, score=score)
        return agent.model_copy(deep=True)

    def get_agent(self, agent_id: str) -> Agent:
        agent = self._registry.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"agent {agent_id}")
        return agent.model_copy(deep=True)

    def agents(self, status: AgentStatus | None = None) -> list[Agent]:
        return [
            a.model_copy(deep=True)
            for a in self._registry.agents()
            if status is None or a.status == status
        ]

    # ── Violations → tasks ───────────────────────────────────────

    async def on_alert(self, alert: Alert) -> list[CorrectionTask]:
        """Alert-created subscriber: turns a new alert into correction work."""
        return await self.on_violation(alert.violation, alert_id=alert.id)

    async def on_alert_upgraded(self, alert: Alert) -> list[CorrectionTask]:
        """Alert-upgraded subscriber: re-prioritises the alert's open tasks.

        Critical re-grades also send the halt or correction commands. An
        alert with no open tasks is treated like a new one.
        """
        violation = alert.violation
        open_tasks = [
            t for t in self._registry.tasks()
            if t.alert_id == alert.id and t.status != TaskStatus.COMPLETED
        ]
        if not open_tasks:
            return await self.on_violation(violation, alert_id=alert.id)

        priority = int(violation.severity) + 1

        def _reprioritise(task: CorrectionTask) -> None:
            task.priority = max(task.priority, priority)
            task.violation_ref = violation.id

        updated = [await self._registry.update_task(t.id, _reprioritise) for t in open_tasks]
        logger.info(
            "correction_tasks_reprioritised",
            alert_id=alert.id,
            severity=violation.severity.label,
            tasks=[t.id for t in updated],
        )
        if violation.severity == Severity.CRITICAL and violation.agent_id is not None:
            self._critical_commands(
                violation, self.rule_for(violation.type), alert.id, self._clock(),
            )
        return [t.model_copy(deep=True) for t in updated]

    async def on_violation(
        self, violation: Violation, alert_id: str | None = None,
    ) -> list[CorrectionTask]:
        if violation.agent_id is None:
            return []

        agent_id = violation.agent_id
        if agent_id in self._registry:
            def _count(agent: Agent) -> None:
                agent.violation_count += 1

            await self._registry.update_agent(agent_id, _count)

        rule = self.rule_for(violation.type)
        now = self._clock()
        tasks = [
            CorrectionTask(
                violation_ref=violation.id,
                violation_type=violation.type,
                alert_id=alert_id,
                source_agent=agent_id,
                required_capabilities=set(group),
                priority=int(violation.severity) + 1,
                created_at=now,
            )
            for group in rule.capability_groups
        ]
        self._registry.add_tasks(tasks)
        logger.info(
            "correction_tasks_created",
            agent_id=agent_id,
            violation_type=violation.type,
            alert_id=alert_id,
            tasks=[t.id for t in tasks],
        )

        if violation.severity == Severity.CRITICAL:
            self._critical_commands(violation, rule, alert_id, now)
        return tasks

    def _critical_commands(
        self,
        violation: Violation,
        rule: CoordinationRuleConfig,
        alert_id: str | None,
        now: float,
    ) -> None:
        agent_id = violation.agent_id
        base = {
            "violation_id": violation.id,
            "violation_type": violation.type,
            "alert_id": alert_id,
            "message": violation.message,
        }
        if agent_id is not None and rule.action == "immediate_halt":
            self._enqueue(agent_id, AgentMessage(
                kind="immediate_halt",
                priority=MessagePriority.URGENT,
                body="CRITICAL COMPLIANCE VIOLATION - HALT ALL OPERATIONS",
                payload={
                    **base,
                    "required_action": (
                        "Stop current solution development and await "
                        "correction instructions"
                    ),
                },
                timestamp=now,
            ))
            logger.warning("halt_command_sent", agent_id=agent_id, alert_id=alert_id)
        elif agent_id is not None and rule.action == "immediate_correction":
            self._enqueue(agent_id, AgentMessage(
                kind="immediate_correction",
                priority=MessagePriority.URGENT,
                body="CRITICAL COMPLIANCE VIOLATION - IMMEDIATE CORRECTION REQUIRED",
                payload={
                    **base,
                    "correction_actions": correction_actions(violation.type),
                    "deadline": now + self._config.correction_deadline_secs,
                },
                timestamp=now,
            ))
            logger.warning("correction_command_sent", agent_id=agent_id, alert_id=alert_id)

        if rule.notify_all:
            self.broadcast(AgentMessage(
                kind="critical_violation_notice",
                priority=MessagePriority.URGENT,
                body=f"Critical {violation.type} violation reported for agent {agent_id}",
                payload={
                    **base,
                    "agent_id": agent_id,
                    "prevention_tips": prevention_tips(violation.type),
                },
                timestamp=now,
            ))

    async def notify_resolution(self, alert: Alert) -> list[CorrectionTask]:
        """Alert-resolved subscriber: completes that alert's open tasks."""
        completed = []
        for task in self._registry.tasks():
            if task.alert_id == alert.id and task.status != TaskStatus.COMPLETED:
                completed.append(await self.complete_task(task.id))
        return completed

    # ── Assignment ───────────────────────────────────────────────

    def best_agent(self, task: CorrectionTask) -> Agent | None:
        """Most suitable active agent sharing a capability with *task*."""
        candidates = [
            a for a in self._registry.agents()
            if a.status == AgentStatus.ACTIVE and a.capabilities & task.required_capabilities
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: (suitability(a, task), -a.registration_seq))

    async def assign(self) -> list[CorrectionTask]:
        """Assign every unassigned task that has a capable active agent."""
        pending = sorted(
            enumerate(self._registry.tasks(TaskStatus.UNASSIGNED)),
            key=lambda item: (-item[1].priority, item[0]),
        )
        assigned: list[CorrectionTask] = []
        for _, task in pending:
            agent = self.best_agent(task)
            if agent is None:
                continue
            assigned.append(await self._assign_to(task.id, agent.id))
        return assigned

    async def _assign_to(self, task_id: str, agent_id: str) -> CorrectionTask:
        now = self._clock()

        def _assign(task: CorrectionTask) -> None:
            task.status = TaskStatus.ASSIGNED
            task.assigned_agent = agent_id
            task.assigned_at = now

        task = await self._registry.update_task(task_id, _assign)
        critical = task.priority > int(Severity.HIGH) + 1
        self._enqueue(agent_id, AgentMessage(
            kind="task_assignment",
            priority=MessagePriority.URGENT if critical else MessagePriority.NORMAL,
            body=f"Correction task {task.id} for {task.violation_type}",
            payload={
                "task_id": task.id,
                "violation_type": task.violation_type,
                "alert_id": task.alert_id,
                "source_agent": task.source_agent,
                "required_capabilities": sorted(task.required_capabilities),
                "priority": task.priority,
            },
            timestamp=now,
        ))
        logger.info(
            "task_assigned",
            task_id=task.id,
            agent_id=agent_id,
            violation_type=task.violation_type,
            priority=task.priority,
        )
        return task.model_copy(deep=True)

    async def reassign(self, task_id: str, agent_id: str | None = None) -> CorrectionTask:
        """Move a task to *agent_id*, or to the best other agent when omitted.

        Without a suitable agent the task goes back to the unassigned pool.
        """
        task = self._registry.get_task(task_id)
        if task is None:
            raise NotFoundError(f"task {task_id}")
        if task.status == TaskStatus.COMPLETED:
            return task.model_copy(deep=True)

        if agent_id is not None:
            if agent_id not in self._registry:
                raise NotFoundError(f"agent {agent_id}")
            return await self._assign_to(task_id, agent_id)

        previous = task.assigned_agent
        candidates = [
            a for a in self._registry.agents()
            if a.id != previous
            and a.status == AgentStatus.ACTIVE
            and a.capabilities & task.required_capabilities
        ]
        if candidates:
            best = max(candidates, key=lambda a: (suitability(a, task), -a.registration_seq))
            return await self._assign_to(task_id, best.id)

        def _release(t: CorrectionTask) -> None:
            t.status = TaskStatus.UNASSIGNED
            t.assigned_agent = None
            t.assigned_at = None

        released = await self._registry.update_task(task_id, _release)
        logger.info("task_released", task_id=task_id, previous_agent=previous)
        return released.model_copy(deep=True)

    async def complete_task(self, task_id: str) -> CorrectionTask:
        now = self._clock()

        def _complete(task: CorrectionTask) -> None:
            if task.status != TaskStatus.COMPLETED:
                task.status = TaskStatus.COMPLETED
                task.completed_at = now

        task = await self._registry.update_task(task_id, _complete)
        logger.info("task_completed", task_id=task_id, agent_id=task.assigned_agent)
        return task.model_copy(deep=True)

    def tasks(self, status: TaskStatus | None = None) -> list[CorrectionTask]:
        return [t.model_copy(deep=True) for t in self._registry.tasks(status)]

    # ── Messaging ────────────────────────────────────────────────

    def _enqueue(self, agent_id: str, message: AgentMessage) -> bool:
        mailbox = self._mailboxes.get(agent_id)
        if mailbox is None:
            logger.debug("message_for_unknown_agent", agent_id=agent_id, kind=message.kind)
            return False
        mailbox.put(message)
        return True

    def send_message(self, agent_id: str, message: AgentMessage) -> bool:
        """Queue *message* for one agent; False if the agent is unknown."""
        return self._enqueue(agent_id, message)

    def broadcast(self, message: AgentMessage) -> int:
        """Queue *message* for every registered agent; returns the count."""
        count = 0
        for agent_id in self._mailboxes:
            # One copy per mailbox.
            self._enqueue(agent_id, message.model_copy(deep=True))
            count += 1
        logger.info("message_broadcast", kind=message.kind, recipients=count)
        return count

    async def fetch_messages(self, agent_id: str) -> list[AgentMessage]:
        """Agent pull: counts as a heartbeat, returns queued messages in order."""
        await self.touch(agent_id)
        return self._mailboxes[agent_id].drain()

    def pending_messages(self, agent_id: str) -> list[AgentMessage]:
        mailbox = self._mailboxes.get(agent_id)
        return mailbox.peek() if mailbox is not None else []

    def on_message(self, sink: MessageSink) -> None:
        """Register a push-delivery sink for mailbox messages."""
        self._sinks.append(sink)

    async def deliver_pending(self) -> int:
        """Push queued messages to the registered sinks."""
        if not self._sinks:
            return 0
        delivered = 0
        for agent_id, mailbox in self._mailboxes.items():
            for message in mailbox.drain():
                for sink in self._sinks:
                    try:
                        result = sink(agent_id, message)
                        if asyncio.iscoroutine(result):
                            await result
                    except Exception:
                        logger.exception(
                            "message_sink_error", agent_id=agent_id, kind=message.kind,
                        )
                delivered += 1
        return delivered

    async def notify_agent(self, notification: Notification) -> bool:
        """Deliver an alert notification into the violating agent's mailbox."""
        if notification.agent_id is None:
            return False
        critical = notification.severity == Severity.CRITICAL
        return self._enqueue(notification.agent_id, AgentMessage(
            kind="compliance_alert",
            priority=MessagePriority.URGENT if critical else MessagePriority.NORMAL,
            body=notification.body,
            payload={
                "subject": notification.subject,
                "alert_id": notification.alert_id,
                "severity": notification.severity.label,
                "level": notification.level,
            },
            timestamp=notification.timestamp,
        ))

    # ── Liveness ─────────────────────────────────────────────────

    async def mark_stale(self) -> list[Agent]:
        """Demote agents that stopped sending heartbeats; returns those changed."""
        now = self._clock()
        heartbeat = self._config.heartbeat_timeout_secs
        offline_after = self._config.offline_after_secs
        changed: list[Agent] = []

        for agent in self._registry.agents():
            idle = now - agent.last_seen
            if agent.status == AgentStatus.OFFLINE or idle <= heartbeat:
                continue
            new_status = AgentStatus.OFFLINE if idle > offline_after else AgentStatus.STALE
            if new_status == agent.status:
                continue

            def _demote(a: Agent, status: AgentStatus = new_status) -> None:
                a.status = status

            updated = await self._registry.update_agent(agent.id, _demote)
            logger.warning(
                "agent_status_changed",
                agent_id=agent.id,
                status=new_status,
                idle_secs=round(idle, 1),
            )
            changed.append(updated.model_copy(deep=True))
        return changed

    # ── Cycle / lifecycle ────────────────────────────────────────

    async def run_cycle(self) -> dict[str, int]:
        stale = await self.mark_stale()
        assigned = await self.assign()
        delivered = await self.deliver_pending()
        return {"stale": len(stale), "assigned": len(assigned), "delivered": delivered}

    def snapshot(self) -> dict[str, int]:
        agents = self._registry.agents()
        tasks = self._registry.tasks()
        return {
            "agents": len(agents),
            "active_agents": sum(a.status == AgentStatus.ACTIVE for a in agents),
            "stale_agents": sum(a.status == AgentStatus.STALE for a in agents),
            "offline_agents": sum(a.status == AgentStatus.OFFLINE for a in agents),
            "unassigned_tasks": sum(t.status == TaskStatus.UNASSIGNED for t in tasks),
            "assigned_tasks": sum(t.status == TaskStatus.ASSIGNED for t in tasks),
            "completed_tasks": sum(t.status == TaskStatus.COMPLETED for t in tasks),
            "pending_messages": sum(len(m) for m in self._mailboxes.values()),
        }

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("agent_coordinator_started")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("agent_coordinator_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("coordination_cycle_error")
            await asyncio.sleep(self._config.cycle_interval_secs)
