"""Append-only audit log of accepted hook requests."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from hivetrack.storage.database import LocalDatabase

logger = logging.getLogger(__name__)


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load(value: str | None) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


@dataclass
class HookEventRecord:
    """One accepted hook request."""

    event_type: str
    session_id: str | None = None
    project_path: str | None = None
    tool_name: str | None = None
    tool_input: Any = None
    tool_result: Any = None
    blocked: bool = False
    block_reason: str | None = None
    duration_ms: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    id: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> HookEventRecord:
        """Create HookEventRecord from database row."""
        return cls(
            id=row["id"],
            event_type=row["event_type"],
            session_id=row["session_id"],
            project_path=row["project_path"],
            tool_name=row["tool_name"],
            tool_input=_load(row["tool_input"]),
            tool_result=_load(row["tool_result"]),
            blocked=bool(row["blocked"]),
            block_reason=row["block_reason"],
            duration_ms=row["duration_ms"] or 0,
            timestamp=row["timestamp"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "session_id": self.session_id,
            "project_path": self.project_path,
            "tool_name": self.tool_name,
            "tool_input": self.tool_input,
            "tool_result": self.tool_result,
            "blocked": self.blocked,
            "block_reason": self.block_reason,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }


@dataclass
class HookEventStats:
    total_events: int
    events_by_type: dict[str, int]
    blocked_count: int
    avg_duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "events_by_type": self.events_by_type,
            "blocked_count": self.blocked_count,
            "avg_duration_ms": self.avg_duration_ms,
        }


class LocalHookEventManager:
    """Manager for the hook_events table."""

    def __init__(self, db: LocalDatabase):
        self.db = db

    def record(self, event: HookEventRecord) -> HookEventRecord:
        """Append an event and return it with its assigned id."""
        cursor = self.db.execute(
            """
            INSERT INTO hook_events (
                event_type, session_id, project_path, tool_name, tool_input,
                tool_result, blocked, block_reason, duration_ms, timestamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_type,
                event.session_id,
                event.project_path,
                event.tool_name,
                _dump(event.tool_input),
                _dump(event.tool_result),
                1 if event.blocked else 0,
                event.block_reason,
                event.duration_ms,
                event.timestamp,
            ),
        )
        event.id = cursor.lastrowid
        return event

    def get(self, event_id: int) -> HookEventRecord | None:
        row = self.db.fetchone("SELECT * FROM hook_events WHERE id = ?", (event_id,))
        return HookEventRecord.from_row(row) if row else None

    def list_recent(self, limit: int = 100) -> list[HookEventRecord]:
        rows = self.db.fetchall(
            "SELECT * FROM hook_events ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [HookEventRecord.from_row(row) for row in rows]

    def list_by_session(self, session_id: str, limit: int = 100) -> list[HookEventRecord]:
        rows = self.db.fetchall(
            "SELECT * FROM hook_events WHERE session_id = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (session_id, limit),
        )
        return [HookEventRecord.from_row(row) for row in rows]

    def list_by_type(self, event_type: str, limit: int = 100) -> list[HookEventRecord]:
        rows = self.db.fetchall(
            "SELECT * FROM hook_events WHERE event_type = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (event_type, limit),
        )
        return [HookEventRecord.from_row(row) for row in rows]

    def count(self) -> int:
        row = self.db.fetchone("SELECT COUNT(*) AS n FROM hook_events")
        return row["n"] if row else 0

    def stats(self) -> HookEventStats:
        by_type = self.db.fetchall(
            "SELECT event_type, COUNT(*) AS n FROM hook_events GROUP BY event_type"
        )
        blocked = self.db.fetchone("SELECT COUNT(*) AS n FROM hook_events WHERE blocked = 1")
        avg = self.db.fetchone("SELECT AVG(duration_ms) AS avg FROM hook_events")
        return HookEventStats(
            total_events=self.count(),
            events_by_type={row["event_type"]: row["n"] for row in by_type},
            blocked_count=blocked["n"] if blocked else 0,
            avg_duration_ms=(avg["avg"] if avg and avg["avg"] is not None else 0.0),
        )

    def cleanup_old(self, max_age_hours: float = 24) -> int:
        """Delete events older than ``max_age_hours``. Returns the number deleted."""
        threshold = (datetime.now(UTC) - timedelta(hours=max_age_hours)).isoformat()
        cursor = self.db.execute("DELETE FROM hook_events WHERE timestamp < ?", (threshold,))
        if cursor.rowcount > 0:
            logger.info(f"Cleaned up {cursor.rowcount} old hook events")
        return cursor.rowcount
