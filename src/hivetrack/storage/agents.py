"""Local agent registry storage manager."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from hivetrack.storage.database import LocalDatabase

logger = logging.getLogger(__name__)


class AgentStatus(str, Enum):
    """Lifecycle status of a tracked agent."""

    SPAWNING = "spawning"
    READY = "ready"
    ACTIVE = "active"
    IDLE = "idle"
    COMPLETED = "completed"
    ERROR = "error"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({AgentStatus.COMPLETED, AgentStatus.ERROR, AgentStatus.TERMINATED})
LIVE_STATUSES = frozenset(set(AgentStatus) - TERMINAL_STATUSES)

# Built-in tool names that detection sources have mistaken for agents
GARBAGE_TOOL_NAMES: tuple[str, ...] = (
    "Read",
    "Write",
    "Edit",
    "Bash",
    "Glob",
    "Grep",
    "Task",
    "WebFetch",
    "WebSearch",
    "NotebookEdit",
    "AskUserQuestion",
    "TodoWrite",
    "Skill",
    "EnterPlanMode",
    "ExitPlanMode",
    "LSP",
    "KillShell",
    "TaskOutput",
)

_LIVE_SQL = "('spawning', 'ready', 'active', 'idle')"
_TERMINAL_SQL = "('completed', 'error', 'terminated')"

# Columns update_fields may touch
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "pid",
        "cwd",
        "parent_id",
        "template_id",
        "status",
        "session_path",
        "initial_prompt",
        "last_activity",
        "completed_at",
        "exit_code",
        "error_message",
    }
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _ago(seconds: float) -> str:
    return (datetime.now(UTC) - timedelta(seconds=seconds)).isoformat()


@dataclass
class AgentRecord:
    """Persisted agent record."""

    id: str
    name: str
    pid: int | None
    cwd: str
    parent_id: str | None
    template_id: str | None
    status: AgentStatus
    session_path: str | None
    initial_prompt: str | None
    spawned_at: str
    last_activity: str
    completed_at: str | None = None
    exit_code: int | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_row(cls, row: Any) -> AgentRecord:
        """Create AgentRecord from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            pid=row["pid"],
            cwd=row["cwd"],
            parent_id=row["parent_id"],
            template_id=row["template_id"],
            status=AgentStatus(row["status"]),
            session_path=row["session_path"],
            initial_prompt=row["initial_prompt"],
            spawned_at=row["spawned_at"],
            last_activity=row["last_activity"],
            completed_at=row["completed_at"],
            exit_code=row["exit_code"],
            error_message=row["error_message"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "pid": self.pid,
            "cwd": self.cwd,
            "parent_id": self.parent_id,
            "template_id": self.template_id,
            "status": self.status.value,
            "session_path": self.session_path,
            "initial_prompt": self.initial_prompt,
            "spawned_at": self.spawned_at,
            "last_activity": self.last_activity,
            "completed_at": self.completed_at,
            "exit_code": self.exit_code,
            "error_message": self.error_message,
        }


class LocalAgentManager:
    """Manager for the agent_registry table."""

    def __init__(self, db: LocalDatabase):
        """Initialize with database connection."""
        self.db = db

    def register(
        self,
        name: str,
        cwd: str,
        parent_id: str | None = None,
        template_id: str | None = None,
        initial_prompt: str | None = None,
        session_path: str | None = None,
        pid: int | None = None,
        status: AgentStatus = AgentStatus.SPAWNING,
        agent_id: str | None = None,
    ) -> AgentRecord:
        """
        Insert a new agent record.

        Args:
            name: Display name
            cwd: Working directory the agent runs in
            parent_id: Parent agent id, may refer to a record that no longer exists
            template_id: Optional template reference
            initial_prompt: Prompt the agent was started with
            session_path: Session identifier reported by hooks
            pid: OS process id, if known
            status: Initial status
            agent_id: Explicit id; a fresh UUID4 when omitted

        Returns:
            The stored AgentRecord
        """
        agent_id = agent_id or str(uuid.uuid4())
        now = _now()
        self.db.execute(
            """
            INSERT INTO agent_registry (
                id, name, pid, cwd, parent_id, template_id, status,
                session_path, initial_prompt, spawned_at, last_activity
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                agent_id,
                name,
                pid,
                cwd,
                parent_id,
                template_id,
                AgentStatus(status).value,
                session_path,
                initial_prompt,
                now,
                now,
            ),
        )
        logger.debug(f"Registered agent {agent_id} ({name}) parent={parent_id}")
        return AgentRecord(
            id=agent_id,
            name=name,
            pid=pid,
            cwd=cwd,
            parent_id=parent_id,
            template_id=template_id,
            status=AgentStatus(status),
            session_path=session_path,
            initial_prompt=initial_prompt,
            spawned_at=now,
            last_activity=now,
        )

    def get(self, agent_id: str) -> AgentRecord | None:
        """Get agent by ID."""
        row = self.db.fetchone("SELECT * FROM agent_registry WHERE id = ?", (agent_id,))
        return AgentRecord.from_row(row) if row else None

    def list_by_parent(self, parent_id: str | None) -> list[AgentRecord]:
        """Direct children of ``parent_id``, or records with no parent when None."""
        if parent_id is None:
            rows = self.db.fetchall(
                "SELECT * FROM agent_registry WHERE parent_id IS NULL ORDER BY spawned_at"
            )
        else:
            rows = self.db.fetchall(
                "SELECT * FROM agent_registry WHERE parent_id = ? ORDER BY spawned_at",
                (parent_id,),
            )
        return [AgentRecord.from_row(row) for row in rows]

    def list_active(self) -> list[AgentRecord]:
        """Non-terminal agents, newest first."""
        rows = self.db.fetchall(
            f"SELECT * FROM agent_registry WHERE status IN {_LIVE_SQL} "  # nosec B608
            "ORDER BY spawned_at DESC"
        )
        return [AgentRecord.from_row(row) for row in rows]

    def list_all(self) -> list[AgentRecord]:
        """Every agent, newest first."""
        rows = self.db.fetchall("SELECT * FROM agent_registry ORDER BY spawned_at DESC")
        return [AgentRecord.from_row(row) for row in rows]

    def list_by_status(self, status: AgentStatus | str) -> list[AgentRecord]:
        rows = self.db.fetchall(
            "SELECT * FROM agent_registry WHERE status = ? ORDER BY spawned_at DESC",
            (AgentStatus(status).value,),
        )
        return [AgentRecord.from_row(row) for row in rows]

    def count(self, status: AgentStatus | str | None = None) -> int:
        if status is None:
            row = self.db.fetchone("SELECT COUNT(*) AS n FROM agent_registry")
        else:
            row = self.db.fetchone(
                "SELECT COUNT(*) AS n FROM agent_registry WHERE status = ?",
                (AgentStatus(status).value,),
            )
        return row["n"] if row else 0

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.fetchall(
            "SELECT status, COUNT(*) AS n FROM agent_registry GROUP BY status"
        )
        return {row["status"]: row["n"] for row in rows}

    def update_status(
        self,
        agent_id: str,
        status: AgentStatus | str,
        error_message: str | None = None,
    ) -> AgentRecord | None:
        """
        Set status and touch last_activity.

        Moving into a terminal status also stamps completed_at (first time
        only) and stores error_message.
        """
        status = AgentStatus(status)
        now = _now()
        values: dict[str, Any] = {"status": status.value, "last_activity": now}
        if status.is_terminal:
            existing = self.get(agent_id)
            if existing is None:
                return None
            values["completed_at"] = existing.completed_at or now
            values["error_message"] = error_message
        self.db.safe_update("agent_registry", values, "id = ?", (agent_id,))
        return self.get(agent_id)

    def update_activity(self, agent_id: str, timestamp: str | None = None) -> bool:
        """Touch last_activity. Returns False if no such agent."""
        cursor = self.db.execute(
            "UPDATE agent_registry SET last_activity = ? WHERE id = ?",
            (timestamp or _now(), agent_id),
        )
        return cursor.rowcount > 0

    def complete(self, agent_id: str, exit_code: int) -> AgentRecord | None:
        """Finish an agent: exit code 0 is completed, anything else is error."""
        now = _now()
        status = AgentStatus.COMPLETED if exit_code == 0 else AgentStatus.ERROR
        self.db.safe_update(
            "agent_registry",
            {
                "status": status.value,
                "exit_code": exit_code,
                "completed_at": now,
                "last_activity": now,
            },
            "id = ?",
            (agent_id,),
        )
        return self.get(agent_id)

    def set_pid(self, agent_id: str, pid: int) -> bool:
        cursor = self.db.execute(
            "UPDATE agent_registry SET pid = ? WHERE id = ?",
            (pid, agent_id),
        )
        return cursor.rowcount > 0

    def update_fields(self, agent_id: str, **fields: Any) -> AgentRecord | None:
        """
        Update arbitrary columns by name.

        Raises:
            ValueError: If a field is not an updatable column.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update agent fields: {sorted(unknown)}")
        if "status" in fields and fields["status"] is not None:
            fields["status"] = AgentStatus(fields["status"]).value
        fields.setdefault("last_activity", _now())
        self.db.safe_update("agent_registry", fields, "id = ?", (agent_id,))
        return self.get(agent_id)

    def find_by_session(self, session_path: str, live_only: bool = False) -> AgentRecord | None:
        """
        Find the newest agent recorded for a session.

        Args:
            session_path: Session identifier
            live_only: Ignore completed/error/terminated records
        """
        sql = "SELECT * FROM agent_registry WHERE session_path = ?"
        if live_only:
            sql += f" AND status IN {_LIVE_SQL}"
        sql += " ORDER BY spawned_at DESC LIMIT 1"
        row = self.db.fetchone(sql, (session_path,))
        return AgentRecord.from_row(row) if row else None

    def delete(self, agent_id: str) -> bool:
        cursor = self.db.execute("DELETE FROM agent_registry WHERE id = ?", (agent_id,))
        return cursor.rowcount > 0

    def delete_all(self) -> int:
        """Delete every agent record. Returns the number deleted."""
        cursor = self.db.execute("DELETE FROM agent_registry")
        logger.info(f"Deleted all {cursor.rowcount} agents from registry")
        return cursor.rowcount

    def cleanup_stale(self, max_age_seconds: float = 86400.0) -> int:
        """Delete terminal records whose completed_at is older than ``max_age_seconds``."""
        cursor = self.db.execute(
            f"DELETE FROM agent_registry WHERE status IN {_TERMINAL_SQL} "  # nosec B608
            "AND completed_at IS NOT NULL AND completed_at < ?",
            (_ago(max_age_seconds),),
        )
        return cursor.rowcount

    def cleanup_garbage(
        self,
        tool_names: tuple[str, ...] = GARBAGE_TOOL_NAMES,
        orphan_age_seconds: float = 3600.0,
    ) -> int:
        """
        Delete records that are clearly misdetections.

        - named exactly after a built-in tool, or ``"<tool> #<n>"`` with a
          numeric ``<n>``; matching is case-sensitive
        - named ``"Explore #<n>"`` (a bare ``Explore`` is a real sub-agent type)
        - no session, older than ``orphan_age_seconds``, still non-terminal

        Returns:
            Number of records deleted
        """
        total = 0
        with self.db.transaction() as conn:
            for tool in tool_names:
                total += conn.execute(
                    "DELETE FROM agent_registry WHERE name = ?", (tool,)
                ).rowcount
            total += conn.execute(
                "DELETE FROM agent_registry WHERE name GLOB 'Explore #[0-9]*' "
                "AND name NOT GLOB 'Explore #*[^0-9]*'"
            ).rowcount
            for tool in tool_names:
                total += conn.execute(
                    "DELETE FROM agent_registry WHERE name GLOB ? || ' #[0-9]*' "
                    "AND name NOT GLOB ? || ' #*[^0-9]*'",
                    (tool, tool),
                ).rowcount
            total += conn.execute(
                f"DELETE FROM agent_registry WHERE session_path IS NULL "  # nosec B608
                f"AND spawned_at < ? AND status IN {_LIVE_SQL}",
                (_ago(orphan_age_seconds),),
            ).rowcount

        if total > 0:
            logger.info(f"Cleaned up {total} garbage agent entries")
        return total
