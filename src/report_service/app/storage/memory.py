"""In-memory storage backend for tests and single-process runs."""

from __future__ import annotations

import itertools
import threading
from datetime import UTC, datetime

from report_service.app.errors import ReportNotFoundError
from report_service.app.models import ReportTask
from report_service.app.storage.base import check_update


class InMemoryTaskStorage:
    """Thread-safe dict-backed task store. Not durable across restarts."""

    def __init__(self) -> None:
        self._tasks: dict[int, ReportTask] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def create_task(self, user_input: str) -> ReportTask:
        now = datetime.now(UTC)
        with self._lock:
            record = ReportTask(
                id=next(self._ids),
                user_input=user_input,
                status="PENDING",
                report_result=None,
                created_at=now,
                updated_at=now,
            )
            self._tasks[record.id] = record
        return record.model_copy(deep=True)

    def get_task(self, task_id: int) -> ReportTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def update_task(self, task: ReportTask) -> ReportTask:
        with self._lock:
            current = self._tasks.get(task.id)
            if current is None:
                raise ReportNotFoundError(task.id)
            check_update(current, task)
            updated = current.model_copy(
                update={
                    "status": task.status,
                    "report_result": task.report_result,
                    "updated_at": datetime.now(UTC),
                }
            )
            self._tasks[task.id] = updated
        return updated.model_copy(deep=True)

    def list_tasks(self) -> list[ReportTask]:
        with self._lock:
            tasks = [self._tasks[task_id] for task_id in sorted(self._tasks)]
        return [task.model_copy(deep=True) for task in tasks]
