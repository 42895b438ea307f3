from __future__ import annotations

import time

import pytest

from report_service.app.cache import InMemoryResultCache
from report_service.app.errors import CacheError, ReportNotFoundError
from report_service.app.models import ReportSnapshot
from report_service.app.orchestrator import ReportOrchestrator
from report_service.app.processor import ReportProcessor
from report_service.app.storage.memory import InMemoryTaskStorage

from .conftest import RecordingCache, StubGenerator


class UnreachableCache(InMemoryResultCache):
    def get(self, task_id: int) -> ReportSnapshot | None:
        raise CacheError("cache down")

    def add(self, task_id: int, snapshot: ReportSnapshot) -> bool:
        raise CacheError("cache down")


def _orchestrator(
    storage: InMemoryTaskStorage, cache: InMemoryResultCache, generator: StubGenerator
) -> ReportOrchestrator:
    processor = ReportProcessor(storage=storage, cache=cache, generator=generator)
    return ReportOrchestrator(storage=storage, cache=cache, processor=processor, max_workers=4)


def test_submit_returns_pending_snapshot_and_completes_in_background(
    orchestrator: ReportOrchestrator, cache: RecordingCache
) -> None:
    snapshot = orchestrator.submit("hello")

    assert snapshot.status == "PENDING"
    assert snapshot.report_result == ""
    assert orchestrator.wait_idle(timeout_s=5)

    final = orchestrator.get_status(snapshot.id)
    assert final.status == "COMPLETED"
    assert final.report_result == '{"summary":"ok"}'
    assert final.created_at == snapshot.created_at
    assert cache.history[snapshot.id] == ["PENDING", "PROCESSING", "COMPLETED"]


def test_submit_does_not_wait_for_slow_generator(
    storage: InMemoryTaskStorage, cache: RecordingCache
) -> None:
    orchestrator = _orchestrator(storage, cache, StubGenerator(delay_s=2.0))
    try:
        started = time.monotonic()
        snapshot = orchestrator.submit("slow input")
        elapsed = time.monotonic() - started

        assert elapsed < 0.5
        assert snapshot.status == "PENDING"
        assert orchestrator.get_status(snapshot.id).status in {"PENDING", "PROCESSING"}
    finally:
        orchestrator.shutdown(wait=True)
    assert orchestrator.get_status(snapshot.id).status == "COMPLETED"


def test_status_reads_reflect_each_transition(
    storage: InMemoryTaskStorage, cache: RecordingCache
) -> None:
    generator = StubGenerator(gated=True)
    orchestrator = _orchestrator(storage, cache, generator)
    try:
        snapshot = orchestrator.submit("hello")
        assert generator.started.wait(timeout=5)

        processing = orchestrator.get_status(snapshot.id)
        assert processing.status == "PROCESSING"
        assert processing.report_result == ""
        assert orchestrator.in_flight() == {snapshot.id}
        assert orchestrator.dispatch(snapshot.id) is False

        generator.release.set()
        assert orchestrator.wait_idle(timeout_s=5)
        assert orchestrator.get_status(snapshot.id).status == "COMPLETED"
        assert generator.calls == ["hello"]
    finally:
        generator.release.set()
        orchestrator.shutdown(wait=True)


def test_failed_generation_is_visible_through_cache_and_store(
    storage: InMemoryTaskStorage, cache: RecordingCache, failing_generator: StubGenerator
) -> None:
    orchestrator = _orchestrator(storage, cache, failing_generator)
    try:
        snapshot = orchestrator.submit("hello")
        assert orchestrator.wait_idle(timeout_s=5)

        assert orchestrator.get_status(snapshot.id).status == "FAILED"
        cache.invalidate(snapshot.id)
        from_store = orchestrator.get_status(snapshot.id)
        assert from_store.status == "FAILED"
        assert from_store.report_result == ""
    finally:
        orchestrator.shutdown(wait=True)


def test_get_status_unknown_id_raises_not_found(orchestrator: ReportOrchestrator) -> None:
    with pytest.raises(ReportNotFoundError):
        orchestrator.get_status(999)


def test_get_status_is_idempotent_and_repopulates_cache(
    orchestrator: ReportOrchestrator, cache: RecordingCache
) -> None:
    snapshot = orchestrator.submit("hello")
    assert orchestrator.wait_idle(timeout_s=5)
    cache.invalidate(snapshot.id)

    first = orchestrator.get_status(snapshot.id)
    assert cache.get(snapshot.id) == first
    second = orchestrator.get_status(snapshot.id)
    assert first == second


def test_get_status_prefers_cache_entry(
    orchestrator: ReportOrchestrator, cache: RecordingCache, storage: InMemoryTaskStorage
) -> None:
    task = storage.create_task("not dispatched")
    cached = ReportSnapshot.from_task(task).model_copy(update={"status": "PROCESSING"})
    cache.put(task.id, cached)

    assert orchestrator.get_status(task.id) == cached


def test_get_status_falls_back_to_store_when_cache_is_down(
    storage: InMemoryTaskStorage,
) -> None:
    orchestrator = _orchestrator(storage, UnreachableCache(), StubGenerator())
    try:
        snapshot = orchestrator.submit("hello")
        assert orchestrator.wait_idle(timeout_s=5)
        assert orchestrator.get_status(snapshot.id).status == "COMPLETED"
    finally:
        orchestrator.shutdown(wait=True)


def test_list_all_returns_one_snapshot_per_submission(
    storage: InMemoryTaskStorage, cache: RecordingCache
) -> None:
    generator = StubGenerator(gated=True)
    orchestrator = _orchestrator(storage, cache, generator)
    try:
        first = orchestrator.submit("first")
        second = orchestrator.submit("second")

        listed = orchestrator.list_all()
        assert [item.id for item in listed] == [first.id, second.id]
        assert all(item.status in {"PENDING", "PROCESSING"} for item in listed)
    finally:
        generator.release.set()
        orchestrator.shutdown(wait=True)


def test_duplicate_inputs_create_independent_tasks(orchestrator: ReportOrchestrator) -> None:
    first = orchestrator.submit("same text")
    second = orchestrator.submit("same text")

    assert first.id != second.id
    assert orchestrator.wait_idle(timeout_s=5)
    assert len(orchestrator.list_all()) == 2


def test_many_concurrent_tasks_each_reach_completed(
    storage: InMemoryTaskStorage, cache: RecordingCache
) -> None:
    orchestrator = _orchestrator(storage, cache, StubGenerator(delay_s=0.05))
    try:
        ids = [orchestrator.submit(f"input {index}").id for index in range(12)]
        assert orchestrator.wait_idle(timeout_s=10)
    finally:
        orchestrator.shutdown(wait=True)

    for task_id in ids:
        assert cache.history[task_id] == ["PENDING", "PROCESSING", "COMPLETED"]
        assert orchestrator.get_status(task_id).status == "COMPLETED"


class TerminalWriteFailingCache(RecordingCache):
    """Cache whose writes of terminal snapshots fail, remembering every invalidation."""

    def __init__(self) -> None:
        super().__init__()
        self.invalidated: list[int] = []

    def put(self, task_id: int, snapshot: ReportSnapshot) -> None:
        if snapshot.status in {"COMPLETED", "FAILED"}:
            raise CacheError("cache write rejected")
        super().put(task_id, snapshot)

    def invalidate(self, task_id: int) -> None:
        self.invalidated.append(task_id)
        super().invalidate(task_id)


def test_processing_read_is_not_cached_over_later_completion(
    storage: InMemoryTaskStorage,
) -> None:
    cache = TerminalWriteFailingCache()
    generator = StubGenerator(gated=True)
    orchestrator = _orchestrator(storage, cache, generator)
    try:
        snapshot = orchestrator.submit("hello")
        assert generator.started.wait(timeout=5)

        # A reader misses the cache while the task is still PROCESSING.
        cache.invalidate(snapshot.id)
        assert orchestrator.get_status(snapshot.id).status == "PROCESSING"
        assert cache.get(snapshot.id) is None

        generator.release.set()
        assert orchestrator.wait_idle(timeout_s=5)
    finally:
        generator.release.set()
        orchestrator.shutdown(wait=True)

    assert cache.invalidated.count(snapshot.id) == 2
    assert cache.get(snapshot.id) is None
    final = orchestrator.get_status(snapshot.id)
    assert final.status == "COMPLETED"
    assert final.report_result == '{"summary":"ok"}'


def test_terminal_read_through_populates_cache(
    orchestrator: ReportOrchestrator, cache: RecordingCache, storage: InMemoryTaskStorage
) -> None:
    pending = storage.create_task("not dispatched")
    assert orchestrator.get_status(pending.id).status == "PENDING"
    assert cache.get(pending.id) is None

    storage.update_task(pending.model_copy(update={"status": "FAILED"}))
    assert orchestrator.get_status(pending.id).status == "FAILED"
    cached = cache.get(pending.id)
    assert cached is not None
    assert cached.status == "FAILED"


def test_submit_after_shutdown_marks_task_failed(
    orchestrator: ReportOrchestrator, cache: RecordingCache, storage: InMemoryTaskStorage
) -> None:
    orchestrator.shutdown(wait=True)

    snapshot = orchestrator.submit("too late")

    assert snapshot.status == "FAILED"
    stored = storage.get_task(snapshot.id)
    assert stored is not None
    assert stored.status == "FAILED"
    assert cache.history[snapshot.id] == ["PENDING", "FAILED"]
    assert orchestrator.get_status(snapshot.id).status == "FAILED"
    assert orchestrator.in_flight() == set()
