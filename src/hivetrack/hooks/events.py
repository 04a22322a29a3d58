"""
Hook event and response models.

Hook scripts send payloads with snake_case keys, camelCase keys, or a mix
of both depending on the CLI version. ``payload_value`` is the single place
that resolves a field either way; everything downstream works with the
normalized ``HookEvent``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class HookEventType(str, Enum):
    """Hook event names sent by CLI hook scripts."""

    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    SUBAGENT_START = "SubagentStart"
    SUBAGENT_STOP = "SubagentStop"
    PERMISSION_REQUEST = "PermissionRequest"
    NOTIFICATION = "Notification"
    STOP = "Stop"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_COMPACT = "PreCompact"


class HookDecision(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    DENY = "deny"


UNKNOWN_EVENT_TYPE = "Unknown"

_CAMEL_BOUNDARY = re.compile(r"_([a-z])")


def to_camel(snake_key: str) -> str:
    """``tool_name`` -> ``toolName``."""
    return _CAMEL_BOUNDARY.sub(lambda m: m.group(1).upper(), snake_key)


def payload_value(payload: dict[str, Any], snake_key: str, default: Any = None) -> Any:
    """
    Read a field by its snake_case name, accepting the camelCase spelling.

    When both spellings are present the camelCase one wins. Explicit nulls
    fall through to the other spelling.
    """
    value = payload.get(to_camel(snake_key))
    if value is None:
        value = payload.get(snake_key)
    return default if value is None else value


@dataclass
class HookEvent:
    """Normalized view of one hook payload."""

    event_type: str
    session_id: str | None = None
    working_directory: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_response: dict[str, Any] | None = None
    user_prompt: str | None = None
    permission_type: str | None = None
    permission_details: str | None = None
    agent_id: str | None = None
    agent_name: str | None = None
    agent_type: str | None = None
    parent_session_id: str | None = None
    notification_type: str | None = None
    notification_message: str | None = None
    timestamp: Any = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> HookEvent:
        event_type = payload_value(payload, "hook_event_name") or payload_value(
            payload, "event_type", UNKNOWN_EVENT_TYPE
        )
        return cls(
            event_type=str(event_type),
            session_id=payload_value(payload, "session_id"),
            working_directory=payload_value(payload, "working_directory")
            or payload_value(payload, "cwd"),
            tool_name=payload_value(payload, "tool_name"),
            tool_input=payload_value(payload, "tool_input"),
            tool_response=payload_value(payload, "tool_response"),
            user_prompt=payload_value(payload, "user_prompt"),
            permission_type=payload_value(payload, "permission_type"),
            permission_details=payload_value(payload, "permission_details"),
            agent_id=payload_value(payload, "agent_id"),
            agent_name=payload_value(payload, "agent_name"),
            agent_type=payload_value(payload, "agent_type"),
            parent_session_id=payload_value(payload, "parent_session_id"),
            notification_type=payload_value(payload, "notification_type"),
            notification_message=payload_value(payload, "notification_message"),
            timestamp=payload_value(payload, "timestamp"),
            raw=payload,
        )


@dataclass
class HookResponse:
    """Decision returned to the hook script."""

    decision: str = HookDecision.ALLOW.value
    message: str | None = None
    inject_context: str | None = None
    modified_input: dict[str, Any] | None = None

    @property
    def is_blocking(self) -> bool:
        return self.decision in (HookDecision.BLOCK.value, HookDecision.DENY.value)

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting unset optional fields."""
        result: dict[str, Any] = {"decision": self.decision}
        if self.message is not None:
            result["message"] = self.message
        if self.inject_context is not None:
            result["inject_context"] = self.inject_context
        if self.modified_input is not None:
            result["modified_input"] = self.modified_input
        return result
