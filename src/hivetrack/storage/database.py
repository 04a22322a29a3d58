"""
SQLite access for the agent registry and the hook audit log.

The daemon's request handlers, its maintenance timers and one-shot CLI
commands all open the same file. Each thread gets its own connection in
autocommit mode; multi-statement sweeps go through :meth:`transaction`.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".hivetrack" / "hivetrack.db"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(kind: str, name: str) -> None:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid {kind} name: {name!r}")


class LocalDatabase:
    """Per-thread SQLite connections to one hivetrack database file."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        # WAL lets the CLI read while the daemon writes
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        logger.debug(f"Opened database {self.db_path} in thread {threading.get_ident()}")
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        conn: sqlite3.Connection | None = getattr(self._local, "connection", None)
        if conn is None:
            conn = self._open()
            self._local.connection = conn
        return conn

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self.connection.execute(sql, params)

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        row: sqlite3.Row | None = self.execute(sql, params).fetchone()
        return row

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def safe_update(
        self,
        table: str,
        values: dict[str, Any],
        where: str,
        where_params: tuple[Any, ...],
    ) -> sqlite3.Cursor:
        """
        ``UPDATE table SET col = ?, ... WHERE <where>``.

        Table and column names must be plain identifiers since they are
        interpolated. Values and ``where_params`` are bound. An empty
        ``values`` dict is a no-op.

        Raises:
            ValueError: If the table or a column name is not an identifier.
        """
        if not values:
            return self.connection.cursor()

        _check_identifier("table", table)
        for column in values:
            _check_identifier("column", column)

        assignments = ", ".join(f"{column} = ?" for column in values)
        sql = f"UPDATE {table} SET {assignments} WHERE {where}"  # nosec B608
        return self.execute(sql, (*values.values(), *where_params))

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements atomically, rolling back on any error."""
        conn = self.connection
        conn.execute("BEGIN")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def close(self) -> None:
        """Close this thread's connection. The next call reopens it."""
        conn: sqlite3.Connection | None = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None
