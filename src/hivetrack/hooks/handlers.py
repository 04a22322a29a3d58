"""
Default hook handlers.

These handlers never decide anything: they always allow. Their job is to
maintain the per-directory session stacks and to translate raw hook events
into the bus topics the agent registry consumes.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from hivetrack.hooks.events import HookEvent, HookEventType, HookResponse
from hivetrack.utils.event_bus import Topic

logger = logging.getLogger(__name__)

HookHandler = Callable[[HookEvent], HookResponse | Awaitable[HookResponse]]

# Tool whose invocation means the calling session is about to spawn a sub-agent
SPAWNING_TOOL = "Task"


class HandlerContext(Protocol):
    """What the hook server exposes to its handlers."""

    def push_session(self, working_directory: str | None, session_id: str) -> None: ...

    def pop_session(self, working_directory: str | None, session_id: str) -> None: ...

    def get_current_parent_session(self, working_directory: str | None) -> str | None: ...

    def emit(self, topic: Topic | str, data: Any) -> None: ...

    def notify(self, channel: str, data: Any) -> None: ...


def parent_session_candidates(event: HookEvent, current_parent: str | None) -> list[str]:
    """
    Ordered, de-duplicated session ids that may own a new sub-agent.

    Explicit ``parent_session_id`` first, then the top of the directory's
    session stack, then the session that reported the event.
    """
    candidates: list[str] = []
    for candidate in (event.parent_session_id, current_parent, event.session_id):
        if candidate and candidate != event.agent_id and candidate not in candidates:
            candidates.append(candidate)
    return candidates


class DefaultHookHandlers:
    """Built-in handler per hook event type."""

    def __init__(self, context: HandlerContext) -> None:
        self._context = context
        self._handler_map: dict[HookEventType, Callable[[HookEvent], HookResponse]] = {
            HookEventType.PRE_TOOL_USE: self.handle_pre_tool_use,
            HookEventType.POST_TOOL_USE: self.handle_post_tool_use,
            HookEventType.SESSION_START: self.handle_session_start,
            HookEventType.SESSION_END: self.handle_session_end,
            HookEventType.SUBAGENT_START: self.handle_subagent_start,
            HookEventType.SUBAGENT_STOP: self.handle_subagent_stop,
            HookEventType.PERMISSION_REQUEST: self.handle_permission_request,
            HookEventType.NOTIFICATION: self.handle_notification,
        }

    def get_handler(
        self, event_type: HookEventType | str
    ) -> Callable[[HookEvent], HookResponse] | None:
        if isinstance(event_type, str):
            try:
                event_type = HookEventType(event_type)
            except ValueError:
                return None
        return self._handler_map.get(event_type)

    def get_handler_map(self) -> dict[HookEventType, Callable[[HookEvent], HookResponse]]:
        """Copy of the handler map (modifications don't affect internal state)."""
        return dict(self._handler_map)

    # ==================== TOOL HANDLERS ====================

    def handle_pre_tool_use(self, event: HookEvent) -> HookResponse:
        """A Task call marks the caller as the pending parent for its directory."""
        if event.tool_name == SPAWNING_TOOL and event.session_id:
            logger.info(f"Task tool call in session {event.session_id}, tracking as parent")
            self._context.push_session(event.working_directory, event.session_id)
        return HookResponse()

    def handle_post_tool_use(self, event: HookEvent) -> HookResponse:
        if event.tool_name:
            success = True
            if isinstance(event.tool_response, dict):
                success = bool(event.tool_response.get("success", True))
            self._context.emit(
                Topic.TOOL_USED,
                {
                    "tool_name": event.tool_name,
                    "session_id": event.session_id,
                    "success": success,
                },
            )
        return HookResponse()

    # ==================== SESSION HANDLERS ====================

    def handle_session_start(self, event: HookEvent) -> HookResponse:
        if event.session_id:
            self._context.push_session(event.working_directory, event.session_id)
        logger.info(f"Session started: {event.session_id} in {event.working_directory}")
        self._context.emit(
            Topic.SESSION_START,
            {"session_id": event.session_id, "project_path": event.working_directory},
        )
        return HookResponse()

    def handle_session_end(self, event: HookEvent) -> HookResponse:
        if event.session_id:
            self._context.pop_session(event.working_directory, event.session_id)
        logger.info(f"Session ended: {event.session_id}")
        self._context.emit(
            Topic.SESSION_END,
            {"session_id": event.session_id, "project_path": event.working_directory},
        )
        return HookResponse()

    # ==================== SUBAGENT HANDLERS ====================

    def handle_subagent_start(self, event: HookEvent) -> HookResponse:
        if not event.agent_id:
            logger.warning("SubagentStart without agent_id, cannot track sub-agent")
            return HookResponse()

        current_parent = self._context.get_current_parent_session(event.working_directory)
        candidates = parent_session_candidates(event, current_parent)
        agent_name = event.agent_name or event.agent_type or f"Subagent-{event.agent_id}"

        logger.info(
            f"Sub-agent {event.agent_id} ({agent_name}) started, parent candidates: {candidates}"
        )
        self._context.emit(
            Topic.AGENT_START,
            {
                "session_id": event.agent_id,
                "agent_name": agent_name,
                "cwd": event.working_directory,
                "parent_session_ids": candidates,
            },
        )
        return HookResponse()

    def handle_subagent_stop(self, event: HookEvent) -> HookResponse:
        if not event.agent_id:
            logger.warning("SubagentStop without agent_id")
            return HookResponse()
        self._context.emit(
            Topic.AGENT_STOP,
            {"session_id": event.agent_id, "agent_name": event.agent_name},
        )
        return HookResponse()

    # ==================== OTHER HANDLERS ====================

    def handle_permission_request(self, event: HookEvent) -> HookResponse:
        self._context.emit(
            Topic.PERMISSION_REQUESTED,
            {
                "type": event.permission_type,
                "details": event.permission_details,
                "session_id": event.session_id,
            },
        )
        return HookResponse()

    def handle_notification(self, event: HookEvent) -> HookResponse:
        self._context.notify(
            Topic.HOOK_NOTIFICATION.value,
            {
                "type": event.notification_type,
                "message": event.notification_message,
                "session_id": event.session_id,
            },
        )
        return HookResponse()
