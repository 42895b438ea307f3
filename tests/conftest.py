from __future__ import annotations

import threading
import time
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from report_service.app.cache import InMemoryResultCache
from report_service.app.errors import GenerationError
from report_service.app.models import ReportPayload, ReportSnapshot
from report_service.app.orchestrator import ReportOrchestrator
from report_service.app.processor import ReportProcessor
from report_service.app.storage.memory import InMemoryTaskStorage
from report_service.config.settings import Settings
from report_service.main import create_app


class StubGenerator:
    """Test double for the report generator with optional delay, gate, and failure."""

    def __init__(
        self,
        payload: ReportPayload | None = None,
        *,
        error: Exception | None = None,
        delay_s: float = 0.0,
        gated: bool = False,
    ) -> None:
        self.payload = payload or ReportPayload(summary="ok")
        self.error = error
        self.delay_s = delay_s
        self.started = threading.Event()
        self.release = threading.Event()
        if not gated:
            self.release.set()
        self.calls: list[str] = []

    def generate(self, user_input: str) -> ReportPayload:
        self.calls.append(user_input)
        self.started.set()
        self.release.wait(timeout=10)
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.payload


class RecordingCache(InMemoryResultCache):
    """In-memory cache that remembers every status written per task id."""

    def __init__(self) -> None:
        super().__init__()
        self.history: dict[int, list[str]] = {}

    def put(self, task_id: int, snapshot: ReportSnapshot) -> None:
        self.history.setdefault(task_id, []).append(snapshot.status)
        super().put(task_id, snapshot)


@pytest.fixture
def storage() -> InMemoryTaskStorage:
    return InMemoryTaskStorage()


@pytest.fixture
def cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def failing_generator() -> StubGenerator:
    return StubGenerator(error=GenerationError("provider unavailable"))


@pytest.fixture
def processor(
    storage: InMemoryTaskStorage, cache: RecordingCache, generator: StubGenerator
) -> ReportProcessor:
    return ReportProcessor(storage=storage, cache=cache, generator=generator)


@pytest.fixture
def orchestrator(
    storage: InMemoryTaskStorage, cache: RecordingCache, processor: ReportProcessor
) -> Iterator[ReportOrchestrator]:
    instance = ReportOrchestrator(storage=storage, cache=cache, processor=processor, max_workers=4)
    yield instance
    instance.shutdown(wait=True)


@pytest.fixture
def settings() -> Settings:
    return Settings(storage_backend="memory", cache_backend="memory", openai_api_key="")


@pytest.fixture
def client(
    storage: InMemoryTaskStorage,
    cache: RecordingCache,
    generator: StubGenerator,
    settings: Settings,
) -> Iterator[TestClient]:
    app = create_app(
        storage=storage,
        cache=cache,
        generator=generator,
        settings_override=settings,
    )
    with TestClient(app) as test_client:
        yield test_client
