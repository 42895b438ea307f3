"""Storage interface for the report task lifecycle."""

from __future__ import annotations

from typing import Protocol

from report_service.app.errors import InvalidTransitionError
from report_service.app.models import TERMINAL_STATUSES, ReportTask, can_transition


class TaskStore(Protocol):
    def migrate(self) -> None: ...

    def create_task(self, user_input: str) -> ReportTask: ...

    def get_task(self, task_id: int) -> ReportTask | None: ...

    def update_task(self, task: ReportTask) -> ReportTask: ...

    def list_tasks(self) -> list[ReportTask]: ...


def check_update(current: ReportTask, target: ReportTask) -> None:
    """Raise InvalidTransitionError unless `target` is a legal successor of `current`."""
    if not can_transition(current.status, target.status):
        raise InvalidTransitionError(current.id, current.status, target.status)
    # A terminal record may only be rewritten with an identical payload.
    if current.status in TERMINAL_STATUSES and current.report_result != target.report_result:
        raise InvalidTransitionError(current.id, current.status, target.status)
    # Only COMPLETED carries a result, and it always carries one.
    if (target.status == "COMPLETED") != bool(target.report_result):
        raise InvalidTransitionError(current.id, current.status, target.status)
