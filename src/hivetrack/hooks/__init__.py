"""
Hook ingestion for CLI coding assistants.

- HookEvent / HookResponse: normalized request and decision models
- SessionStackResolver: per-directory stack of open sessions
- DefaultHookHandlers: built-in handlers that infer session parentage
- HookServer: records events and runs the handler chain
"""

from hivetrack.hooks.events import HookDecision, HookEvent, HookEventType, HookResponse
from hivetrack.hooks.handlers import DefaultHookHandlers
from hivetrack.hooks.server import HookServer
from hivetrack.hooks.session_stack import SessionStackResolver

__all__ = [
    "DefaultHookHandlers",
    "HookDecision",
    "HookEvent",
    "HookEventType",
    "HookResponse",
    "HookServer",
    "SessionStackResolver",
]
