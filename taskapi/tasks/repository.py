"""Task storage interface and the in-memory backend.

Backends are picked at startup by `build_repository`; handlers only see the
`TaskRepository` capability.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Protocol, runtime_checkable
import threading

from taskapi.tasks.errors import TitleRequired
from taskapi.tasks.models import Task
from taskapi.tasks.sqlite_repo import SQLiteTaskRepository


@runtime_checkable
class TaskRepository(Protocol):
    def create(self, title: str) -> Task: ...

    def list(self) -> List[Task]: ...

    def ping(self) -> bool: ...


class InMemoryTaskRepository:
    """Process-local task store guarded by a single lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._seq = 0
        self._data: Dict[int, Task] = {}

    def create(self, title: str) -> Task:
        """Assign the next id, stamp UTC time, and store the task."""
        if not title.strip():
            raise TitleRequired()

        with self._lock:
            self._seq += 1
            task = Task(
                id=self._seq,
                title=title,
                done=False,
                created_at=datetime.now(timezone.utc),
            )
            self._data[task.id] = task
        return task

    def list(self) -> List[Task]:
        """Return all tasks in ascending id order."""
        with self._lock:
            return [self._data[k] for k in sorted(self._data)]

    def ping(self) -> bool:
        return True


def build_repository(settings, logger=None) -> TaskRepository:
    if settings.STORAGE_BACKEND == "sqlite":
        repo = SQLiteTaskRepository(settings.DB_PATH, logger=logger)
        repo.apply_migrations()
        return repo
    return InMemoryTaskRepository()
