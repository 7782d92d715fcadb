from __future__ import annotations

import contextlib
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from taskapi.obs.logger import JsonLogger, get_default_logger
from taskapi.tasks.errors import RepositoryError, TitleRequired
from taskapi.tasks.models import Task


_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    done INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
)
"""


class SQLiteTaskRepository:
    """
    SQLite-backed task store.

    Each method opens its own connection and issues a single statement, so the
    engine's own locking serializes id assignment. `created_at` is stored as
    ISO-8601 UTC text, which sorts chronologically.
    """

    def __init__(
        self,
        db_path: str | Path = "data/tasks.db",
        busy_timeout_ms: int = 5000,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout_ms = busy_timeout_ms
        self._logger = logger or get_default_logger()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Shutdown hook; there are no persistent connections to close."""
        return

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout_ms / 1000.0)
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def apply_migrations(self) -> None:
        """Create the tasks table if it does not exist yet."""
        try:
            with contextlib.closing(self._get_conn()) as conn, conn:
                conn.execute(_SCHEMA)
        except sqlite3.Error as e:
            raise RepositoryError(f"migration failed: {e}") from e
        self._logger.info("sqlite_ready", db_path=str(self._db_path))

    def create(self, title: str) -> Task:
        if not title.strip():
            raise TitleRequired()

        now = datetime.now(timezone.utc)
        try:
            with contextlib.closing(self._get_conn()) as conn, conn:
                cur = conn.execute(
                    "INSERT INTO tasks (title, done, created_at) VALUES (?, 0, ?)",
                    (title, now.isoformat()),
                )
                task_id = cur.lastrowid
        except sqlite3.Error as e:
            raise RepositoryError(f"insert failed: {e}") from e

        return Task(id=int(task_id), title=title, done=False, created_at=now)

    def list(self) -> List[Task]:
        try:
            with contextlib.closing(self._get_conn()) as conn:
                rows = conn.execute(
                    "SELECT id, title, done, created_at FROM tasks ORDER BY id ASC"
                ).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(f"select failed: {e}") from e

        return [self._row_to_task(row) for row in rows]

    def ping(self) -> bool:
        try:
            with contextlib.closing(self._get_conn()) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            self._logger.warning("sqlite_ping_failed", db_path=str(self._db_path))
            return False

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        created_at = datetime.fromisoformat(row["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Task(
            id=int(row["id"]),
            title=str(row["title"]),
            done=bool(row["done"]),
            created_at=created_at,
        )
