"""
Bridge from terminal-output agent detection to the agent registry.

Detection sources scrape terminal output and report the same sub-agent
several times in quick succession. The bridge coalesces those repeats,
numbers concurrent instances of one agent name, and remembers which agents
belong to which terminal so they can be completed or terminated later.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any

from hivetrack.agents.registry import AgentRegistry
from hivetrack.servers.websocket import Notifier, NullNotifier
from hivetrack.storage.agents import AgentRecord
from hivetrack.utils.event_bus import EventBus, Subscription, Topic

logger = logging.getLogger(__name__)

DEDUP_PRUNE_THRESHOLD = 50

# Epoch seconds stay below this until the year 5138; larger values are milliseconds
_EPOCH_MS_FLOOR = 1e11


def to_epoch_seconds(timestamp: float) -> float:
    """Detection timestamps in epoch milliseconds are scaled to seconds."""
    return timestamp / 1000.0 if timestamp > _EPOCH_MS_FLOOR else timestamp


class DetectionBridge:
    """
    Turns detection signals into registry calls.

    Args:
        registry: Registry receiving spawn/complete/activity calls
        notifier: UI notifier for ``agent:detected``
        dedup_window_seconds: Repeats of one (terminal, name) pair inside
            this window are ignored
        cwd: Working directory recorded for detected agents
    """

    def __init__(
        self,
        registry: AgentRegistry,
        notifier: Notifier | None = None,
        dedup_window_seconds: float = 5.0,
        cwd: str | None = None,
    ) -> None:
        self.registry = registry
        self.notifier: Notifier = notifier or NullNotifier()
        self.dedup_window_seconds = dedup_window_seconds
        self.cwd = cwd or os.getcwd()

        self._recent: dict[tuple[str, str], float] = {}
        self._instance_counts: dict[str, int] = {}
        self._base_names: dict[str, str] = {}
        self._terminal_agents: dict[str, list[str]] = {}
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    # ==================== WIRING ====================

    def attach(self, bus: EventBus) -> None:
        """Subscribe to a detection source's topics."""
        self.detach()
        self._subscriptions = [
            bus.subscribe(Topic.AGENT_SPAWN, self._on_spawn),
            bus.subscribe(Topic.AGENT_COMPLETE, self._on_complete),
            bus.subscribe(Topic.AGENT_ACTIVITY, self._on_activity),
            bus.subscribe(Topic.TERMINAL_EXITED, self._on_terminal_exited),
        ]
        logger.info("Detection source wired to agent registry")

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def _on_spawn(self, data: dict[str, Any]) -> None:
        self.handle_agent_spawn(
            terminal_id=str(data["terminal_id"]),
            agent_name=data["agent_name"],
            description=data.get("description"),
            timestamp=data.get("timestamp"),
        )

    def _on_complete(self, data: dict[str, Any]) -> None:
        self.handle_agent_complete(
            terminal_id=str(data["terminal_id"]),
            agent_id=data.get("agent_id"),
            agent_name=data.get("agent_name"),
            reason=data.get("reason"),
        )

    def _on_activity(self, data: dict[str, Any]) -> None:
        self.handle_agent_activity(str(data["terminal_id"]))

    def _on_terminal_exited(self, data: dict[str, Any]) -> None:
        self.handle_terminal_exited(str(data["terminal_id"]))

    # ==================== HANDLERS ====================

    def _is_duplicate(self, terminal_id: str, agent_name: str, timestamp: float) -> bool:
        """
        Record a detection at ``timestamp`` (epoch seconds).

        Pruning measures age against this detection's timestamp, so the
        caller's clock is the only clock involved.
        """
        key = (terminal_id, agent_name)
        with self._lock:
            last = self._recent.get(key)
            if last is not None and timestamp - last < self.dedup_window_seconds:
                return True
            self._recent[key] = timestamp

            if len(self._recent) > DEDUP_PRUNE_THRESHOLD:
                cutoff = timestamp - self.dedup_window_seconds * 2
                for stale_key in [k for k, ts in self._recent.items() if ts < cutoff]:
                    del self._recent[stale_key]
        return False

    def _next_display_name(self, agent_name: str) -> str:
        with self._lock:
            instance = self._instance_counts.get(agent_name, 0) + 1
            self._instance_counts[agent_name] = instance
        return f"{agent_name} #{instance}" if instance > 1 else agent_name

    def handle_agent_spawn(
        self,
        terminal_id: str,
        agent_name: str,
        description: str | None = None,
        timestamp: float | None = None,
    ) -> AgentRecord | None:
        """
        Register a detected agent unless it repeats a recent detection.

        ``timestamp`` is epoch seconds, defaulting to now. Values large enough
        to be epoch milliseconds are converted.
        """
        timestamp = time.time() if timestamp is None else to_epoch_seconds(timestamp)
        if self._is_duplicate(terminal_id, agent_name, timestamp):
            logger.debug(f"Skipping duplicate agent detection: {agent_name} on terminal {terminal_id}")
            return None

        display_name = self._next_display_name(agent_name)
        agent = self.registry.spawn(name=display_name, cwd=self.cwd, initial_prompt=description)
        with self._lock:
            self._terminal_agents.setdefault(terminal_id, []).append(agent.id)
            self._base_names[agent.id] = agent_name
        self.registry.mark_active(agent.id)
        logger.info(f"Registered detected agent: {display_name} ({agent.id})")

        self.notifier.notify(
            Topic.AGENT_DETECTED.value,
            {
                "id": agent.id,
                "name": display_name,
                "description": description,
                "terminal_id": terminal_id,
            },
        )
        return self.registry.get_agent(agent.id)

    def _live_terminal_agents(self, terminal_id: str) -> list[AgentRecord]:
        with self._lock:
            agent_ids = list(self._terminal_agents.get(terminal_id, ()))
        agents = []
        for agent_id in agent_ids:
            agent = self.registry.get_agent(agent_id)
            if agent is not None and not agent.is_terminal:
                agents.append(agent)
        return agents

    @staticmethod
    def _matches(agent: AgentRecord, agent_id: str | None, agent_name: str | None) -> bool:
        if agent_id and (agent.id.startswith(agent_id) or agent_id.startswith(agent.id[:7])):
            return True
        if agent_name:
            return (
                agent.name == agent_name
                or agent.name.startswith(f"{agent_name} #")
                or agent.name.lower() == agent_name.lower()
            )
        return False

    def handle_agent_complete(
        self,
        terminal_id: str,
        agent_id: str | None = None,
        agent_name: str | None = None,
        reason: str | None = None,
    ) -> AgentRecord | None:
        """Complete the first live agent of the terminal matching id prefix or name."""
        for agent in self._live_terminal_agents(terminal_id):
            if self._matches(agent, agent_id, agent_name):
                return self.registry.complete(agent.id, 1 if reason == "error" else 0)
        logger.debug(
            f"No live agent on terminal {terminal_id} matches completion "
            f"(id={agent_id}, name={agent_name})"
        )
        return None

    def handle_agent_activity(self, terminal_id: str) -> int:
        agents = self._live_terminal_agents(terminal_id)
        for agent in agents:
            self.registry.record_activity(agent.id)
        return len(agents)

    def handle_terminal_exited(self, terminal_id: str) -> int:
        """
        Terminate every live agent detected on the terminal.

        Instance numbering restarts for names no other open terminal still
        tracks.
        """
        agents = self._live_terminal_agents(terminal_id)
        for agent in agents:
            logger.info(f"Terminating agent {agent.id} due to terminal {terminal_id} exit")
            self.registry.terminate_agent(agent.id)
        with self._lock:
            for agent_id in self._terminal_agents.pop(terminal_id, ()):
                self._base_names.pop(agent_id, None)
            in_use = set(self._base_names.values())
            for name in [n for n in self._instance_counts if n not in in_use]:
                del self._instance_counts[name]
        return len(agents)

    def terminal_agents(self, terminal_id: str) -> list[str]:
        with self._lock:
            return list(self._terminal_agents.get(terminal_id, ()))
