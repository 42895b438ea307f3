"""Entry point used by the HTTP layer: submit report tasks and answer status queries.

Terms:
- Dispatch: handing a task id to the background worker pool without waiting.
- Read-through: on a cache miss the store is read; a terminal snapshot is then
  written back to the cache.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from .cache import ResultCache
from .errors import CacheError, ReportNotFoundError
from .models import TERMINAL_STATUSES, ReportSnapshot
from .processor import ReportProcessor
from .storage.base import TaskStore

logger = logging.getLogger(__name__)


class ReportOrchestrator:
    """Coordinate task creation, background processing, and cached status reads."""

    def __init__(
        self,
        *,
        storage: TaskStore,
        cache: ResultCache,
        processor: ReportProcessor,
        max_workers: int = 4,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.processor = processor
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="report-worker")
        # Ids with a processor run scheduled or in progress.
        self._in_flight: dict[int, Future[None]] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    def submit(self, user_input: str) -> ReportSnapshot:
        """Create a PENDING task, schedule processing, and return without waiting."""
        task = self.storage.create_task(user_input)
        snapshot = ReportSnapshot.from_task(task)
        # Cache the PENDING view before the worker can write PROCESSING.
        self._put_cache(snapshot)
        logger.info("report_task event=submitted task_id=%s status=%s", task.id, task.status)
        try:
            self.dispatch(task.id)
        except RuntimeError as exc:
            # The pool is shut down; no worker will ever pick this task up.
            logger.error("report_task event=dispatch_failed task_id=%s reason=%s", task.id, exc)
            failed = self.storage.update_task(task.model_copy(update={"status": "FAILED"}))
            snapshot = ReportSnapshot.from_task(failed)
            self._put_cache(snapshot)
        return snapshot

    def dispatch(self, task_id: int) -> bool:
        """Schedule processing for `task_id`; return False if a run is already in flight."""
        with self._lock:
            if task_id in self._in_flight:
                logger.warning("report_task event=dispatch_skipped task_id=%s", task_id)
                return False
            self._in_flight[task_id] = self._pool.submit(self._run, task_id)
        return True

    def get_status(self, task_id: int) -> ReportSnapshot:
        """Return the latest snapshot, preferring the cache over the store."""
        try:
            cached = self.cache.get(task_id)
        except CacheError as exc:
            logger.warning("report_cache event=read_failed task_id=%s reason=%s", task_id, exc)
            cached = None
        if cached is not None:
            return cached

        task = self.storage.get_task(task_id)
        if task is None:
            raise ReportNotFoundError(task_id)
        snapshot = ReportSnapshot.from_task(task)
        # Only terminal snapshots are final; a PENDING or PROCESSING read may be
        # stale by the time it lands, so non-terminal reads stay uncached.
        if snapshot.status not in TERMINAL_STATUSES:
            return snapshot
        try:
            self.cache.add(task_id, snapshot)
        except CacheError as exc:
            logger.warning(
                "report_cache event=repopulate_failed task_id=%s reason=%s", task_id, exc
            )
        return snapshot

    def list_all(self) -> list[ReportSnapshot]:
        return [ReportSnapshot.from_task(task) for task in self.storage.list_tasks()]

    def in_flight(self) -> set[int]:
        with self._lock:
            return set(self._in_flight)

    def wait_idle(self, timeout_s: float | None = None) -> bool:
        """Block until no processor run is in flight; return False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight, timeout=timeout_s)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def _run(self, task_id: int) -> None:
        # Worker boundary: nothing raised here reaches the submitter.
        try:
            self.processor.process(task_id)
        except Exception:  # noqa: BLE001
            logger.exception("report_task event=worker_failed task_id=%s", task_id)
        finally:
            with self._idle:
                self._in_flight.pop(task_id, None)
                self._idle.notify_all()

    def _put_cache(self, snapshot: ReportSnapshot) -> None:
        try:
            self.cache.put(snapshot.id, snapshot)
        except CacheError as exc:
            logger.warning("report_cache event=write_failed task_id=%s reason=%s", snapshot.id, exc)
