"""
Hook server core.

Accepts normalized hook payloads, records them, and runs the handler chain
registered for the event type. Transport lives in ``hivetrack.servers.http``;
this module has no knowledge of HTTP.

Processing order for one payload:
1. normalize (snake_case or camelCase keys)
2. append a HookEventRecord (never updated afterwards)
3. notify the UI
4. run handlers sequentially and merge their responses
5. emit ``hook:processed``
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any

from hivetrack.hooks.events import HookEvent, HookEventType, HookResponse
from hivetrack.hooks.handlers import DefaultHookHandlers, HookHandler
from hivetrack.hooks.session_stack import SessionStackResolver
from hivetrack.servers.websocket import Notifier, NullNotifier
from hivetrack.storage.hook_events import HookEventRecord, LocalHookEventManager
from hivetrack.utils.event_bus import EventBus, Topic

logger = logging.getLogger(__name__)


def _event_type_key(event_type: HookEventType | str) -> str:
    return event_type.value if isinstance(event_type, HookEventType) else event_type


def merge_responses(current: HookResponse, result: HookResponse) -> HookResponse:
    """
    Fold one handler result into the accumulated response.

    ``inject_context`` concatenates in handler order, ``modified_input`` is
    shallow-merged with later keys winning, ``message`` is last-writer-wins.
    """
    if result.inject_context:
        current.inject_context = (current.inject_context or "") + result.inject_context
    if result.modified_input:
        current.modified_input = {**(current.modified_input or {}), **result.modified_input}
    if result.message:
        current.message = result.message
    return current


class HookServer:
    """
    Handler registry plus per-directory session tracking.

    Args:
        hook_events: Storage for the audit log. When None nothing is persisted.
        notifier: UI notifier; defaults to a no-op.
        events: Bus the default handlers publish on. A fresh one by default.
        register_defaults: Install :class:`DefaultHookHandlers`.
    """

    def __init__(
        self,
        hook_events: LocalHookEventManager | None = None,
        notifier: Notifier | None = None,
        events: EventBus | None = None,
        register_defaults: bool = True,
    ) -> None:
        self._hook_events = hook_events
        self.notifier: Notifier = notifier or NullNotifier()
        self.events = events or EventBus()
        self.sessions = SessionStackResolver()
        self._handlers: dict[str, list[HookHandler]] = {}

        if register_defaults:
            self.default_handlers = DefaultHookHandlers(self)
            for event_type, handler in self.default_handlers.get_handler_map().items():
                self.register_handler(event_type, handler)

    # ==================== HANDLER REGISTRATION ====================

    def register_handler(self, event_type: HookEventType | str, handler: HookHandler) -> None:
        """Append ``handler`` to the chain for ``event_type``."""
        key = _event_type_key(event_type)
        self._handlers.setdefault(key, []).append(handler)
        logger.debug(f"Registered handler for {key}")

    def clear_handlers(self, event_type: HookEventType | str) -> None:
        """Remove every handler for ``event_type``."""
        self._handlers.pop(_event_type_key(event_type), None)

    def get_handlers(self, event_type: HookEventType | str) -> list[HookHandler]:
        return list(self._handlers.get(_event_type_key(event_type), ()))

    # ==================== SESSION STACK ====================

    def push_session(self, working_directory: str | None, session_id: str) -> None:
        self.sessions.push(working_directory, session_id)

    def pop_session(self, working_directory: str | None, session_id: str) -> None:
        self.sessions.pop(working_directory, session_id)

    def get_current_parent_session(self, working_directory: str | None) -> str | None:
        return self.sessions.current_parent(working_directory)

    # ==================== OUTPUTS ====================

    def emit(self, topic: Topic | str, data: Any) -> None:
        self.events.emit(topic, data)

    def notify(self, channel: str, data: Any) -> None:
        try:
            self.notifier.notify(channel, data)
        except Exception as e:
            logger.warning(f"UI notification '{channel}' failed: {e}")

    # ==================== PROCESSING ====================

    async def process_event(self, payload: dict[str, Any], path: str = "/") -> HookResponse:
        """
        Process one hook payload and return the merged decision.

        Storage errors propagate to the caller; handler errors do not.
        """
        start_time = time.perf_counter()
        event = HookEvent.from_payload(payload)

        logger.info(
            f"Hook received: {event.event_type} (path={path}, session={event.session_id}, "
            f"tool={event.tool_name}, agent={event.agent_id or event.agent_name})"
        )
        logger.debug(f"Hook payload for {event.event_type}: {payload}")

        record = self._record_event(event)
        self.notify(Topic.HOOK_EVENT.value, record)

        response = HookResponse()
        for handler in self.get_handlers(event.event_type):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.error(f"Handler error for {event.event_type}: {e}", exc_info=True)
                continue

            if result is None:
                continue
            if result.is_blocking:
                response = result
                break
            response = merge_responses(response, result)

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        logger.debug(
            f"Hook {event.event_type} processed in {duration_ms}ms "
            f"(decision={response.decision})"
        )

        self.emit(
            Topic.HOOK_PROCESSED,
            {"payload": payload, "response": response, "duration_ms": duration_ms},
        )
        return response

    def _record_event(self, event: HookEvent) -> HookEventRecord:
        record = HookEventRecord(
            event_type=event.event_type,
            session_id=event.session_id,
            project_path=event.working_directory,
            tool_name=event.tool_name,
            tool_input=event.tool_input,
            tool_result=event.tool_response,
        )
        if self._hook_events is None:
            return record
        return self._hook_events.record(record)
