"""Schema migrations for the hivetrack database."""

import logging
import sqlite3

from hivetrack.storage.database import LocalDatabase

logger = logging.getLogger(__name__)

# (version, description, sql); statements separated by ';'
MIGRATIONS: list[tuple[int, str, str]] = [
    (
        1,
        "Track applied schema versions",
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
    (
        2,
        "Agent registry",
        # No foreign key on parent_id: children outlive deleted parents
        """
        CREATE TABLE IF NOT EXISTS agent_registry (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            pid INTEGER,
            cwd TEXT NOT NULL,
            parent_id TEXT,
            template_id TEXT,
            status TEXT NOT NULL DEFAULT 'spawning',
            session_path TEXT,
            initial_prompt TEXT,
            spawned_at TEXT NOT NULL,
            last_activity TEXT NOT NULL,
            completed_at TEXT,
            exit_code INTEGER,
            error_message TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_agent_registry_parent ON agent_registry(parent_id);
        CREATE INDEX IF NOT EXISTS idx_agent_registry_status ON agent_registry(status);
        CREATE INDEX IF NOT EXISTS idx_agent_registry_session ON agent_registry(session_path);
        """,
    ),
    (
        3,
        "Hook event audit log",
        """
        CREATE TABLE IF NOT EXISTS hook_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_type TEXT NOT NULL,
            session_id TEXT,
            project_path TEXT,
            tool_name TEXT,
            tool_input TEXT,
            tool_result TEXT,
            blocked INTEGER NOT NULL DEFAULT 0,
            block_reason TEXT,
            duration_ms INTEGER,
            timestamp TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_hook_events_type ON hook_events(event_type);
        CREATE INDEX IF NOT EXISTS idx_hook_events_session ON hook_events(session_id);
        CREATE INDEX IF NOT EXISTS idx_hook_events_timestamp ON hook_events(timestamp);
        """,
    ),
]


def get_current_version(db: LocalDatabase) -> int:
    """Highest applied migration, 0 for a fresh file."""
    try:
        row = db.fetchone("SELECT MAX(version) AS version FROM schema_version")
    except sqlite3.OperationalError:
        return 0
    return int(row["version"]) if row and row["version"] else 0


def _apply(db: LocalDatabase, version: int, sql: str) -> None:
    with db.transaction() as conn:
        for statement in (s.strip() for s in sql.split(";")):
            if statement:
                conn.execute(statement)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))


def run_migrations(db: LocalDatabase) -> int:
    """
    Bring the schema up to date.

    Each migration runs in its own transaction together with its
    ``schema_version`` row, so a failure leaves the previous version intact.

    Returns:
        Number of migrations applied
    """
    current = get_current_version(db)
    pending = [m for m in MIGRATIONS if m[0] > current]

    for version, description, sql in pending:
        logger.debug(f"Applying migration {version}: {description}")
        try:
            _apply(db, version, sql)
        except sqlite3.Error as e:
            logger.error(f"Migration {version} ({description}) failed: {e}")
            raise

    if pending:
        logger.info(f"Database {db.db_path} migrated to version {pending[-1][0]}")
    return len(pending)
