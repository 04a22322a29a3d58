"""
In-process publish/subscribe bus.

Subscribers are invoked synchronously, in subscription order, on the
emitting thread. A subscriber that raises is logged and skipped so one
faulty listener cannot break the emitter or the remaining listeners.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class Topic(str, Enum):
    """Every topic published inside the daemon."""

    # Registry lifecycle
    AGENT_SPAWNED = "agent:spawned"
    AGENT_READY = "agent:ready"
    AGENT_ACTIVE = "agent:active"
    AGENT_IDLE = "agent:idle"
    AGENT_COMPLETED = "agent:completed"
    AGENT_ERROR = "agent:error"
    AGENT_TERMINATED = "agent:terminated"
    AGENT_ACTIVITY = "agent:activity"

    # Hook server
    HOOK_PROCESSED = "hook:processed"
    HOOK_EVENT = "hook:event"
    HOOK_NOTIFICATION = "hook:notification"
    SESSION_START = "session:start"
    SESSION_END = "session:end"
    AGENT_START = "agent:start"
    AGENT_STOP = "agent:stop"
    TOOL_USED = "tool:used"
    PERMISSION_REQUESTED = "permission:requested"

    # Detection sources
    AGENT_SPAWN = "agent:spawn"
    AGENT_COMPLETE = "agent:complete"
    AGENT_DETECTED = "agent:detected"
    TERMINAL_EXITED = "terminal:exited"


def _topic_key(topic: Topic | str) -> str:
    return topic.value if isinstance(topic, Topic) else topic


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(self, bus: EventBus, topic: str, callback: Callback) -> None:
        self._bus = bus
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Remove the callback. Calling twice is harmless."""
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)


class EventBus:
    """Topic-keyed callback registry."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: Topic | str, callback: Callback) -> Subscription:
        key = _topic_key(topic)
        subscription = Subscription(self, key, callback)
        with self._lock:
            self._subscribers.setdefault(key, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.topic)
            if not subs:
                return
            try:
                subs.remove(subscription)
            except ValueError:
                return
            if not subs:
                del self._subscribers[subscription.topic]

    def emit(self, topic: Topic | str, *args: Any) -> int:
        """
        Deliver ``args`` to every subscriber of ``topic``.

        Returns:
            Number of subscribers that handled the event without raising.
        """
        key = _topic_key(topic)
        # Snapshot under lock, call outside it so callbacks may (un)subscribe
        with self._lock:
            subscribers = list(self._subscribers.get(key, ()))

        delivered = 0
        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.callback(*args)
                delivered += 1
            except Exception as e:
                logger.warning(f"Subscriber for '{key}' raised: {e}", exc_info=True)
        return delivered

    def subscriber_count(self, topic: Topic | str | None = None) -> int:
        with self._lock:
            if topic is None:
                return sum(len(subs) for subs in self._subscribers.values())
            return len(self._subscribers.get(_topic_key(topic), ()))

    def clear(self) -> None:
        """Drop every subscription."""
        with self._lock:
            for subs in self._subscribers.values():
                for subscription in subs:
                    subscription.active = False
            self._subscribers.clear()
