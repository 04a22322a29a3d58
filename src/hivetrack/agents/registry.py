"""
Agent registry: lifecycle state machine and hierarchy for tracked agents.

The registry is the only writer of agent status. Persistence goes through
``LocalAgentManager``; the registry itself only keeps a session -> agent id
cache that can always be rebuilt from storage.

State machine::

    spawning -> ready -> active <-> idle -> {completed | error | terminated}

``error`` and ``terminated`` are forced transitions, permitted from any
state. Every other transition not listed in ``LEGAL_TRANSITIONS`` is logged
and ignored.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import psutil

from hivetrack.config.app import AgentRegistryConfig
from hivetrack.storage.agents import (
    GARBAGE_TOOL_NAMES,
    AgentRecord,
    AgentStatus,
    LocalAgentManager,
)
from hivetrack.utils.event_bus import EventBus, Subscription, Topic
from hivetrack.utils.periodic import PeriodicTask

if TYPE_CHECKING:
    from hivetrack.hooks.server import HookServer

logger = logging.getLogger(__name__)

ROOT_AGENT_NAME = "Main Session"

LEGAL_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.SPAWNING: frozenset({AgentStatus.READY, AgentStatus.ACTIVE, AgentStatus.COMPLETED}),
    AgentStatus.READY: frozenset({AgentStatus.ACTIVE, AgentStatus.IDLE, AgentStatus.COMPLETED}),
    AgentStatus.ACTIVE: frozenset({AgentStatus.IDLE, AgentStatus.COMPLETED}),
    AgentStatus.IDLE: frozenset({AgentStatus.ACTIVE, AgentStatus.COMPLETED}),
    AgentStatus.COMPLETED: frozenset(),
    AgentStatus.ERROR: frozenset(),
    AgentStatus.TERMINATED: frozenset(),
}

FORCED_STATUSES = frozenset({AgentStatus.ERROR, AgentStatus.TERMINATED})

STATUS_TOPICS: dict[AgentStatus, Topic] = {
    AgentStatus.SPAWNING: Topic.AGENT_SPAWNED,
    AgentStatus.READY: Topic.AGENT_READY,
    AgentStatus.ACTIVE: Topic.AGENT_ACTIVE,
    AgentStatus.IDLE: Topic.AGENT_IDLE,
    AgentStatus.COMPLETED: Topic.AGENT_COMPLETED,
    AgentStatus.ERROR: Topic.AGENT_ERROR,
    AgentStatus.TERMINATED: Topic.AGENT_TERMINATED,
}

# Topics forwarded to UI subscribers
LIFECYCLE_TOPICS: tuple[Topic, ...] = (
    Topic.AGENT_SPAWNED,
    Topic.AGENT_READY,
    Topic.AGENT_ACTIVE,
    Topic.AGENT_IDLE,
    Topic.AGENT_COMPLETED,
    Topic.AGENT_ERROR,
    Topic.AGENT_TERMINATED,
    Topic.AGENT_ACTIVITY,
)


def can_transition(current: AgentStatus, target: AgentStatus) -> bool:
    """True if ``current -> target`` is allowed."""
    if target in FORCED_STATUSES:
        return True
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


def _seconds_since(timestamp: str, now: datetime) -> float:
    then = datetime.fromisoformat(timestamp)
    if then.tzinfo is None:
        then = then.replace(tzinfo=UTC)
    return (now - then).total_seconds()


@dataclass
class AgentTreeNode:
    """An agent and its children, recursively."""

    agent: AgentRecord
    children: list[AgentTreeNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent.to_dict(),
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class AgentStats:
    total: int
    active: int
    idle: int
    completed: int
    error: int
    by_status: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "idle": self.idle,
            "completed": self.completed,
            "error": self.error,
            "by_status": self.by_status,
        }


class AgentRegistry:
    """
    Authoritative lifecycle state and hierarchy for every tracked agent.

    Example:
        >>> registry = AgentRegistry(LocalAgentManager(db), hook_server)
        >>> registry.init()
        >>> agent = registry.spawn("builder", cwd="/repo")
        >>> registry.mark_active(agent.id)
        >>> registry.complete(agent.id, 0)
        >>> registry.shutdown()
    """

    def __init__(
        self,
        agents: LocalAgentManager,
        hook_server: HookServer | None = None,
        config: AgentRegistryConfig | None = None,
    ) -> None:
        self.agents = agents
        self.config = config or AgentRegistryConfig()
        self.events = EventBus()
        self._hook_server = hook_server
        self._hook_subscriptions: list[Subscription] = []
        self._session_agents: dict[str, str] = {}
        self._session_lock = threading.Lock()
        self._timers: dict[str, PeriodicTask] = {}
        self._initialized = False

    # ==================== LIFECYCLE ====================

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def timers(self) -> dict[str, PeriodicTask]:
        return dict(self._timers)

    def init(self) -> None:
        """
        Run startup sweeps, subscribe to hook events and start maintenance timers.

        Timers are only started when called with a running event loop.
        """
        if self._initialized:
            logger.debug("Agent registry already initialized")
            return

        logger.info("Initializing agent registry")
        self.run_garbage_cleanup()
        self.cleanup_stale_agents()
        self.terminate_stale_agents()
        self._wire_hook_events()
        self._start_timers()
        self._initialized = True
        logger.info("Agent registry initialized")

    def shutdown(self) -> None:
        """Cancel timers, drop subscriptions and terminate every live agent."""
        logger.info("Shutting down agent registry")

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        self._remove_hook_listeners()
        with self._session_lock:
            self._session_agents.clear()

        for agent in self.agents.list_active():
            self.terminate_agent(agent.id)

        self.events.clear()
        self._initialized = False
        logger.info("Agent registry shut down")

    def _start_timers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, agent maintenance timers not started")
            return

        cfg = self.config
        schedule: list[tuple[str, float, Callable[[], Any]]] = [
            ("stale-record-purge", cfg.cleanup_interval, self.cleanup_stale_agents),
            ("activity-check", cfg.activity_check_interval, self.check_agent_activity),
            ("stale-agent-check", cfg.stale_check_interval, self.terminate_stale_agents),
            ("garbage-cleanup", cfg.garbage_cleanup_interval, self.run_garbage_cleanup),
            (
                "session-map-validation",
                cfg.session_map_validation_interval,
                self.validate_session_map,
            ),
        ]
        for name, interval, action in schedule:
            timer = PeriodicTask(name, interval, action)
            timer.start(loop)
            self._timers[name] = timer
        logger.debug(f"Started {len(self._timers)} agent maintenance timers")

    # ==================== EVENTS ====================

    def on(self, topic: Topic | str, callback: Callable[..., Any]) -> Subscription:
        """Subscribe to a registry topic (``agent:*``)."""
        return self.events.subscribe(topic, callback)

    def _emit(self, topic: Topic, *args: Any) -> None:
        self.events.emit(topic, *args)

    # ==================== SESSION CACHE ====================

    def _cache_session(self, session_id: str, agent_id: str) -> None:
        with self._session_lock:
            self._session_agents[session_id] = agent_id
        logger.debug(f"Mapped session {session_id} to agent {agent_id}")

    def _uncache_session(self, session_id: str) -> None:
        with self._session_lock:
            self._session_agents.pop(session_id, None)

    def _uncache_agent(self, agent_id: str) -> None:
        with self._session_lock:
            stale = [sid for sid, aid in self._session_agents.items() if aid == agent_id]
            for session_id in stale:
                del self._session_agents[session_id]

    def session_cache_snapshot(self) -> dict[str, str]:
        with self._session_lock:
            return dict(self._session_agents)

    def validate_session_map(self) -> int:
        """Drop cache entries whose agent is gone or terminal. Returns the count."""
        with self._session_lock:
            entries = list(self._session_agents.items())
        if not entries:
            return 0

        removed = 0
        for session_id, agent_id in entries:
            agent = self.agents.get(agent_id)
            if agent is None or agent.is_terminal:
                self._uncache_session(session_id)
                removed += 1

        if removed:
            logger.info(f"Session map validation removed {removed} stale entries")
        return removed

    # ==================== OPERATIONS ====================

    def spawn(
        self,
        name: str,
        cwd: str,
        parent_id: str | None = None,
        template_id: str | None = None,
        initial_prompt: str | None = None,
        session_path: str | None = None,
    ) -> AgentRecord:
        """Register a new agent in ``spawning`` state with a fresh id."""
        agent = self.agents.register(
            name=name,
            cwd=cwd,
            parent_id=parent_id,
            template_id=template_id,
            initial_prompt=initial_prompt,
            session_path=session_path,
        )
        logger.info(f"Agent spawned: {agent.name} ({agent.id}) parent={agent.parent_id}")
        self._emit(Topic.AGENT_SPAWNED, agent)
        return agent

    def set_pid(self, agent_id: str, pid: int) -> None:
        if not self.agents.set_pid(agent_id, pid):
            logger.warning(f"Cannot set PID, agent not found: {agent_id}")
            return
        logger.debug(f"Agent {agent_id} PID set to {pid}")

    def _transition(self, agent_id: str, target: AgentStatus) -> AgentRecord | None:
        agent = self.agents.get(agent_id)
        if agent is None:
            logger.warning(f"Cannot mark agent {target.value}, not found: {agent_id}")
            return None

        if agent.status == target:
            self.agents.update_activity(agent_id)
            return self.agents.get(agent_id)

        if not can_transition(agent.status, target):
            logger.warning(
                f"Ignoring illegal transition for agent {agent_id}: "
                f"{agent.status.value} -> {target.value}"
            )
            return agent

        updated = self.agents.update_status(agent_id, target)
        logger.debug(f"Agent {agent_id} status {agent.status.value} -> {target.value}")
        if updated is not None:
            self._emit(STATUS_TOPICS[target], updated)
        return updated

    def mark_ready(self, agent_id: str) -> AgentRecord | None:
        return self._transition(agent_id, AgentStatus.READY)

    def mark_active(self, agent_id: str) -> AgentRecord | None:
        return self._transition(agent_id, AgentStatus.ACTIVE)

    def mark_idle(self, agent_id: str) -> AgentRecord | None:
        return self._transition(agent_id, AgentStatus.IDLE)

    def complete(self, agent_id: str, exit_code: int = 0) -> AgentRecord | None:
        """
        Finish an agent. Exit code 0 is ``completed``, anything else ``error``.

        Completing an agent that is already terminal is a no-op.
        """
        agent = self.agents.get(agent_id)
        if agent is None:
            logger.warning(f"Cannot complete agent, not found: {agent_id}")
            return None
        if agent.is_terminal:
            logger.debug(f"Agent {agent_id} already {agent.status.value}, ignoring completion")
            return agent

        updated = self.agents.complete(agent_id, exit_code)
        if updated is None:
            return None
        logger.info(f"Agent completed: {updated.name} ({updated.id}) with exit code {exit_code}")
        if exit_code == 0:
            self._emit(Topic.AGENT_COMPLETED, updated)
        else:
            self._emit(Topic.AGENT_ERROR, updated, f"Exited with code {exit_code}")
        return updated

    def error(self, agent_id: str, message: str) -> AgentRecord | None:
        """Force the agent into ``error``."""
        if self.agents.get(agent_id) is None:
            logger.warning(f"Cannot mark agent error, not found: {agent_id}")
            return None
        updated = self.agents.update_status(agent_id, AgentStatus.ERROR, error_message=message)
        if updated is None:
            return None
        logger.error(f"Agent error: {updated.name} ({updated.id}): {message}")
        self._emit(Topic.AGENT_ERROR, updated, message)
        return updated

    def terminate_agent(self, agent_id: str) -> AgentRecord | None:
        """
        Force the agent into ``terminated``.

        Children keep their ``parent_id``; only the session cache is purged.
        """
        self._uncache_agent(agent_id)
        if self.agents.get(agent_id) is None:
            logger.warning(f"Cannot terminate agent, not found: {agent_id}")
            return None
        updated = self.agents.update_status(agent_id, AgentStatus.TERMINATED)
        if updated is None:
            return None
        logger.info(f"Agent terminated: {updated.name} ({updated.id})")
        self._emit(Topic.AGENT_TERMINATED, updated)
        return updated

    def record_activity(self, agent_id: str) -> AgentRecord | None:
        if not self.agents.update_activity(agent_id):
            logger.warning(f"Cannot record activity, agent not found: {agent_id}")
            return None
        agent = self.agents.get(agent_id)
        if agent is not None:
            self._emit(Topic.AGENT_ACTIVITY, agent)
        return agent

    def upsert_agent(
        self,
        name: str,
        cwd: str,
        session_path: str | None = None,
        status: AgentStatus | str = AgentStatus.SPAWNING,
        parent_id: str | None = None,
        template_id: str | None = None,
        initial_prompt: str | None = None,
        pid: int | None = None,
    ) -> AgentRecord:
        """
        Update the live agent sharing ``session_path``, or spawn a new one.

        Nullable fields passed as None keep their stored value.
        """
        status = AgentStatus(status)
        existing = None
        if session_path:
            existing = self.agents.find_by_session(session_path, live_only=True)

        if existing is None:
            agent = self.spawn(
                name=name,
                cwd=cwd,
                parent_id=parent_id,
                template_id=template_id,
                initial_prompt=initial_prompt,
                session_path=session_path,
            )
            if pid is not None:
                self.agents.set_pid(agent.id, pid)
            if status != AgentStatus.SPAWNING:
                # Initial status of a fresh record, not a lifecycle step
                agent = self.agents.update_status(agent.id, status) or agent
                self._emit(STATUS_TOPICS[status], agent)
            elif pid is not None:
                agent = self.agents.get(agent.id) or agent
            return agent

        values: dict[str, Any] = {"name": name, "cwd": cwd}
        for key, value in (
            ("pid", pid),
            ("parent_id", parent_id),
            ("template_id", template_id),
            ("initial_prompt", initial_prompt),
        ):
            if value is not None:
                values[key] = value

        status_changed = False
        if status != existing.status:
            if can_transition(existing.status, status):
                values["status"] = status
                status_changed = True
            else:
                logger.debug(
                    f"Upsert keeps agent {existing.id} {existing.status.value}, "
                    f"cannot move to {status.value}"
                )

        if status_changed and status.is_terminal:
            updated = self.agents.update_status(existing.id, status)
            values.pop("status")
            updated = self.agents.update_fields(existing.id, **values) or updated
        else:
            updated = self.agents.update_fields(existing.id, **values)

        if updated is None:
            return existing
        logger.debug(f"Upserted agent {updated.id} for session {session_path}")
        if status_changed:
            self._emit(STATUS_TOPICS[status], updated)
        return updated

    def clear_all_agents(self) -> int:
        """Delete every agent record. Returns the count removed."""
        with self._session_lock:
            self._session_agents.clear()
        return self.agents.delete_all()

    def run_garbage_cleanup(self) -> int:
        return self.agents.cleanup_garbage(
            tool_names=GARBAGE_TOOL_NAMES,
            orphan_age_seconds=self.config.orphan_age,
        )

    def cleanup_stale_agents(self, max_age_seconds: float | None = None) -> int:
        """Delete terminal records completed more than ``max_age_seconds`` ago (default 24h)."""
        if max_age_seconds is None:
            max_age_seconds = self.config.stale_record_max_age
        cleaned = self.agents.cleanup_stale(max_age_seconds)
        if cleaned > 0:
            logger.info(f"Cleaned up {cleaned} stale agent records")
        return cleaned

    # ==================== MAINTENANCE SWEEPS ====================

    def check_agent_activity(self) -> list[AgentRecord]:
        """Demote ``active`` agents inactive past the idle threshold."""
        now = datetime.now(UTC)
        demoted: list[AgentRecord] = []
        for agent in self.agents.list_by_status(AgentStatus.ACTIVE):
            if _seconds_since(agent.last_activity, now) > self.config.idle_threshold:
                updated = self.mark_idle(agent.id)
                if updated is not None and updated.status == AgentStatus.IDLE:
                    demoted.append(updated)
        if demoted:
            logger.debug(f"Marked {len(demoted)} agents idle")
        return demoted

    def _process_gone(self, pid: int | None) -> bool:
        if pid is None or not self.config.check_pids:
            return False
        if pid == os.getpid():
            return False
        try:
            return not psutil.pid_exists(pid)
        except (psutil.Error, OSError) as e:
            logger.debug(f"Cannot check PID {pid}: {e}")
            return False

    def terminate_stale_agents(self) -> list[AgentRecord]:
        """
        Force-terminate live agents that look hung or dead.

        An agent is stale when it has been inactive longer than the stale
        threshold, or when its recorded process no longer exists.
        """
        now = datetime.now(UTC)
        terminated: list[AgentRecord] = []
        for agent in self.agents.list_active():
            idle_seconds = _seconds_since(agent.last_activity, now)
            if idle_seconds > self.config.stale_agent_threshold:
                reason = f"inactive for {int(idle_seconds // 60)} minutes"
            elif self._process_gone(agent.pid):
                reason = f"process {agent.pid} no longer exists"
            else:
                continue
            logger.info(f"Terminating stale agent {agent.name} ({agent.id}): {reason}")
            updated = self.terminate_agent(agent.id)
            if updated is not None:
                terminated.append(updated)
        return terminated

    # ==================== QUERIES ====================

    def get_agent(self, agent_id: str) -> AgentRecord | None:
        return self.agents.get(agent_id)

    def exists(self, agent_id: str) -> bool:
        return self.agents.get(agent_id) is not None

    def get_active_agents(self) -> list[AgentRecord]:
        return self.agents.list_active()

    def get_all_agents(self) -> list[AgentRecord]:
        return self.agents.list_all()

    def get_children(self, parent_id: str) -> list[AgentRecord]:
        return self.agents.list_by_parent(parent_id)

    def get_root_agents(self) -> list[AgentRecord]:
        return self.agents.list_by_parent(None)

    def get_agents_by_status(self, status: AgentStatus | str) -> list[AgentRecord]:
        return self.agents.list_by_status(status)

    def find_agents_by_name(self, pattern: str) -> list[AgentRecord]:
        """Case-insensitive regex search; an invalid regex is matched literally."""
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error:
            regex = re.compile(re.escape(pattern), re.IGNORECASE)
        return [agent for agent in self.agents.list_all() if regex.search(agent.name)]

    def get_agent_by_session(self, session_id: str) -> AgentRecord | None:
        """Resolve a session id through the cache, then storage."""
        with self._session_lock:
            agent_id = self._session_agents.get(session_id)
        if agent_id is not None:
            agent = self.agents.get(agent_id)
            if agent is not None:
                return agent
        live = self.agents.find_by_session(session_id, live_only=True)
        return live or self.agents.find_by_session(session_id)

    def get_agent_tree(self) -> list[AgentTreeNode]:
        """
        Full forest of agents.

        Records whose parent no longer exists appear as extra roots, so
        every agent is reachable exactly once.
        """
        agents = sorted(self.agents.list_all(), key=lambda a: a.spawned_at)
        by_id = {agent.id: agent for agent in agents}
        children: dict[str, list[AgentRecord]] = {}
        roots: list[AgentRecord] = []
        for agent in agents:
            if agent.parent_id is None or agent.parent_id not in by_id:
                roots.append(agent)
            else:
                children.setdefault(agent.parent_id, []).append(agent)

        visited: set[str] = set()

        def build(agent: AgentRecord) -> AgentTreeNode:
            visited.add(agent.id)
            node = AgentTreeNode(agent=agent)
            for child in children.get(agent.id, []):
                if child.id not in visited:
                    node.children.append(build(child))
            return node

        forest = [build(root) for root in roots]
        # Parent cycles have no root; surface them rather than drop them
        for agent in agents:
            if agent.id not in visited:
                forest.append(build(agent))
        return forest

    def get_subtree(self, agent_id: str) -> AgentTreeNode | None:
        root = self.agents.get(agent_id)
        if root is None:
            return None

        visited: set[str] = set()

        def build(agent: AgentRecord) -> AgentTreeNode:
            visited.add(agent.id)
            node = AgentTreeNode(agent=agent)
            for child in self.agents.list_by_parent(agent.id):
                if child.id not in visited:
                    node.children.append(build(child))
            return node

        return build(root)

    def get_ancestors(self, agent_id: str) -> list[AgentRecord]:
        """Parent chain, nearest first. Stops at a missing parent."""
        ancestors: list[AgentRecord] = []
        agent = self.agents.get(agent_id)
        seen = {agent_id}
        while agent is not None and agent.parent_id and agent.parent_id not in seen:
            seen.add(agent.parent_id)
            parent = self.agents.get(agent.parent_id)
            if parent is None:
                break
            ancestors.append(parent)
            agent = parent
        return ancestors

    def get_descendants(self, agent_id: str) -> list[AgentRecord]:
        """Every agent below ``agent_id``, breadth first."""
        descendants: list[AgentRecord] = []
        seen = {agent_id}
        queue = deque([agent_id])
        while queue:
            current = queue.popleft()
            for child in self.agents.list_by_parent(current):
                if child.id in seen:
                    continue
                seen.add(child.id)
                descendants.append(child)
                queue.append(child.id)
        return descendants

    def get_stats(self) -> AgentStats:
        by_status = {s.value: 0 for s in AgentStatus}
        by_status.update(self.agents.count_by_status())
        return AgentStats(
            total=sum(by_status.values()),
            active=sum(
                by_status.get(s.value, 0)
                for s in (AgentStatus.SPAWNING, AgentStatus.READY, AgentStatus.ACTIVE)
            ),
            idle=by_status.get(AgentStatus.IDLE.value, 0),
            completed=by_status.get(AgentStatus.COMPLETED.value, 0),
            error=by_status.get(AgentStatus.ERROR.value, 0),
            by_status=by_status,
        )

    # ==================== HOOK SERVER INTEGRATION ====================

    def _wire_hook_events(self) -> None:
        if self._hook_server is None:
            logger.warning("Hook server unavailable, agent registry will not track hook events")
            return

        self._remove_hook_listeners()
        bus = self._hook_server.events
        self._hook_subscriptions = [
            bus.subscribe(Topic.SESSION_START, self._on_session_start),
            bus.subscribe(Topic.SESSION_END, self._on_session_end),
            bus.subscribe(Topic.AGENT_START, self._on_agent_start),
            bus.subscribe(Topic.AGENT_STOP, self._on_agent_stop),
        ]
        logger.info("Hook events wired up")

    def _remove_hook_listeners(self) -> None:
        for subscription in self._hook_subscriptions:
            subscription.unsubscribe()
        if self._hook_subscriptions:
            logger.debug(f"Removed {len(self._hook_subscriptions)} hook listeners")
        self._hook_subscriptions = []

    def _on_session_start(self, data: dict[str, Any]) -> None:
        session_id = data.get("session_id")
        if not session_id:
            return
        agent = self.upsert_agent(
            name=ROOT_AGENT_NAME,
            cwd=data.get("project_path") or os.getcwd(),
            session_path=session_id,
            status=AgentStatus.ACTIVE,
        )
        self._cache_session(session_id, agent.id)

    def _on_session_end(self, data: dict[str, Any]) -> None:
        session_id = data.get("session_id")
        if not session_id:
            return
        agent = self.get_agent_by_session(session_id)
        if agent is not None and not agent.is_terminal:
            self.complete(agent.id, 0)
        self._uncache_session(session_id)

    def _resolve_parent(self, candidates: list[str], child_session_id: str) -> str | None:
        """
        First candidate session that maps to a known agent.

        Each candidate is tried through the cache, then storage by session,
        then as a literal agent id. Failing that, a ``<parent>-<suffix>``
        child id names its parent.
        """
        for session_id in candidates:
            with self._session_lock:
                agent_id = self._session_agents.get(session_id)
            if agent_id is not None and self.agents.get(agent_id) is not None:
                return agent_id
            agent = self.agents.find_by_session(session_id)
            if agent is not None and agent.session_path != child_session_id:
                return agent.id
            agent = self.agents.get(session_id)
            if agent is not None:
                return agent.id

        if "-" in child_session_id:
            prefix = child_session_id.split("-", 1)[0]
            agent = self.agents.get(prefix)
            if agent is not None:
                return agent.id
        return None

    def _on_agent_start(self, data: dict[str, Any]) -> None:
        session_id = data.get("session_id")
        if not session_id:
            return
        parent_id = self._resolve_parent(list(data.get("parent_session_ids") or []), session_id)
        if parent_id is None:
            logger.warning(f"Could not resolve parent for sub-agent session {session_id}")
        else:
            logger.info(f"Sub-agent session {session_id} linked to parent {parent_id}")

        agent = self.upsert_agent(
            name=data.get("agent_name") or f"Subagent-{session_id}",
            cwd=data.get("cwd") or os.getcwd(),
            session_path=session_id,
            status=AgentStatus.ACTIVE,
            parent_id=parent_id,
        )
        self._cache_session(session_id, agent.id)

    def _on_agent_stop(self, data: dict[str, Any]) -> None:
        session_id = data.get("session_id")
        if not session_id:
            return
        agent = self.get_agent_by_session(session_id) or self.agents.get(session_id)
        if agent is None:
            logger.warning(f"Sub-agent stop for unknown session {session_id}")
        elif not agent.is_terminal:
            self.complete(agent.id, 0)
        self._uncache_session(session_id)


_default_registry: AgentRegistry | None = None
_registry_lock = threading.Lock()


def set_agent_registry(registry: AgentRegistry | None) -> None:
    """Install the process-wide registry (bootstrap only)."""
    global _default_registry
    with _registry_lock:
        _default_registry = registry


def get_agent_registry() -> AgentRegistry:
    """
    Get the process-wide registry installed at bootstrap.

    Raises:
        RuntimeError: If no registry has been installed.
    """
    if _default_registry is None:
        raise RuntimeError("Agent registry not initialized")
    return _default_registry
