"""Error taxonomy for the report task pipeline."""

from __future__ import annotations


class ReportServiceError(Exception):
    """Base class for errors raised by the report service."""


class ReportNotFoundError(ReportServiceError):
    """No task exists for the requested id."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Report task {task_id} does not exist")
        self.task_id = task_id


class GenerationError(ReportServiceError):
    """The report generator could not produce any usable payload."""


class StoreError(ReportServiceError):
    """The task store is unavailable or a write failed."""


class InvalidTransitionError(StoreError):
    """An update tried to move a task backwards or out of a terminal state."""

    def __init__(self, task_id: int, current: str, target: str) -> None:
        super().__init__(f"Report task {task_id} cannot move from {current} to {target}")
        self.task_id = task_id
        self.current = current
        self.target = target


class CacheError(ReportServiceError):
    """The result cache backend failed; callers fall back to the task store."""
