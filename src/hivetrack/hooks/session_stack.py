"""Per-working-directory stacks of open sessions."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class SessionStackResolver:
    """
    Tracks which sessions are open in each working directory.

    The top of a directory's stack is the nearest enclosing session, i.e.
    the most likely parent of any session that starts there next. Calls
    with an empty directory are ignored.
    """

    def __init__(self) -> None:
        self._stacks: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def push(self, working_directory: str | None, session_id: str) -> None:
        """Push ``session_id`` unless it is already on the stack."""
        if not working_directory or not session_id:
            return
        with self._lock:
            stack = self._stacks.setdefault(working_directory, [])
            if session_id in stack:
                return
            stack.append(session_id)
            depth = len(stack)
        logger.debug(f"Pushed session {session_id} for {working_directory} (depth {depth})")

    def pop(self, working_directory: str | None, session_id: str) -> None:
        """Remove ``session_id`` wherever it sits in the stack."""
        if not working_directory or not session_id:
            return
        with self._lock:
            stack = self._stacks.get(working_directory)
            if not stack or session_id not in stack:
                return
            stack.remove(session_id)
            depth = len(stack)
            if not stack:
                del self._stacks[working_directory]
        logger.debug(f"Popped session {session_id} for {working_directory} (depth {depth})")

    def current_parent(self, working_directory: str | None) -> str | None:
        if not working_directory:
            return None
        with self._lock:
            stack = self._stacks.get(working_directory)
            return stack[-1] if stack else None

    def snapshot(self) -> dict[str, list[str]]:
        with self._lock:
            return {directory: list(stack) for directory, stack in self._stacks.items()}

    def clear(self) -> None:
        with self._lock:
            self._stacks.clear()
