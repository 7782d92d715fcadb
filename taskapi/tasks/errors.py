class TaskError(Exception):
    """Base class for task domain errors."""


class TitleRequired(TaskError):
    def __init__(self):
        super().__init__("title required")


class RepositoryError(TaskError):
    """Storage failed; details stay in logs, never in responses."""
