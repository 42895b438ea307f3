"""Background worker that drives one report task to a terminal state.

Lifecycle per task id: PENDING -> PROCESSING -> COMPLETED | FAILED.
Each persisted transition is immediately followed by a cache refresh for the
same id so status reads never lag the store permanently.
"""

from __future__ import annotations

import logging

from .cache import ResultCache
from .errors import CacheError, ReportNotFoundError, StoreError
from .llm import ReportGenerator
from .models import ReportSnapshot, ReportStatus, ReportTask
from .storage.base import TaskStore

logger = logging.getLogger(__name__)


class ReportProcessor:
    """Run the generation step for a task and record every transition."""

    def __init__(
        self,
        *,
        storage: TaskStore,
        cache: ResultCache,
        generator: ReportGenerator,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.generator = generator

    def process(self, task_id: int) -> ReportTask:
        """Process one task and return its final persisted record.

        Generation failures end in FAILED and are not raised. A missing task or a
        store failure propagates to the caller's worker boundary.
        """
        task = self.storage.get_task(task_id)
        if task is None:
            logger.error("report_task event=missing task_id=%s", task_id)
            raise ReportNotFoundError(task_id)
        if task.status != "PENDING":
            logger.warning(
                "report_task event=skip task_id=%s status=%s reason=already_started",
                task_id,
                task.status,
            )
            return task

        task = self._transition(task, "PROCESSING")

        try:
            # 1) Long-latency step: no lock is held here.
            payload = self.generator.generate(task.user_input)
            report_result = payload.to_report_result()
        except Exception:  # noqa: BLE001
            logger.exception("report_task event=generation_failed task_id=%s", task_id)
            return self._transition(task, "FAILED")

        # 2) Record the result only after generation succeeded.
        return self._transition(task, "COMPLETED", report_result=report_result)

    def _transition(
        self,
        task: ReportTask,
        status: ReportStatus,
        *,
        report_result: str | None = None,
    ) -> ReportTask:
        target = task.model_copy(update={"status": status, "report_result": report_result})
        try:
            persisted = self.storage.update_task(target)
        except StoreError:
            logger.exception(
                "report_task event=persist_failed task_id=%s from=%s to=%s",
                task.id,
                task.status,
                status,
            )
            raise
        logger.info("report_task event=transition task_id=%s status=%s", task.id, status)
        self._refresh_cache(persisted)
        return persisted

    def _refresh_cache(self, task: ReportTask) -> None:
        try:
            self.cache.put(task.id, ReportSnapshot.from_task(task))
        except CacheError as exc:
            logger.warning(
                "report_cache event=refresh_failed task_id=%s reason=%s", task.id, exc
            )
            # A stale entry must not outlive the write; drop it so reads hit the store.
            try:
                self.cache.invalidate(task.id)
            except CacheError as inner:
                logger.error(
                    "report_cache event=invalidate_failed task_id=%s reason=%s", task.id, inner
                )
