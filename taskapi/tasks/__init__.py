"""Task resource: model, storage backends, validation and HTTP routes."""

from taskapi.tasks.errors import RepositoryError, TaskError, TitleRequired
from taskapi.tasks.models import Task
from taskapi.tasks.repository import InMemoryTaskRepository, TaskRepository, build_repository
from taskapi.tasks.sqlite_repo import SQLiteTaskRepository

__all__ = [
    "Task",
    "TaskError",
    "TitleRequired",
    "RepositoryError",
    "TaskRepository",
    "InMemoryTaskRepository",
    "SQLiteTaskRepository",
    "build_repository",
]
