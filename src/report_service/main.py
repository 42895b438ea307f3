"""FastAPI application wiring for the report service.

Terms used in this file:
- FastAPI app: the main web application object.
- response_model: Pydantic model used to validate/shape API responses.
- app.state: a place to store shared runtime objects (orchestrator, settings).
- lifespan: startup/shutdown hook that builds and stops the worker pool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from .app.cache import InMemoryResultCache, RedisResultCache, ResultCache
from .app.errors import ReportNotFoundError, StoreError
from .app.llm import ReportGenerator, build_report_generator
from .app.models import CreateReportRequest, ReportSnapshot
from .app.orchestrator import ReportOrchestrator
from .app.processor import ReportProcessor
from .app.storage import InMemoryTaskStorage, PostgresTaskStorage, TaskStore
from .app.ui import render_homepage
from .config.settings import Settings, configure_logging, get_settings

logger = logging.getLogger(__name__)


def build_storage(settings: Settings) -> TaskStore:
    if settings.storage_backend == "memory":
        return InMemoryTaskStorage()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set REPORT_SERVICE_DATABASE_URL "
            "or DATABASE_URL before starting the app."
        )
    return PostgresTaskStorage(database_url)


def build_cache(settings: Settings) -> ResultCache:
    if settings.cache_backend == "memory":
        return InMemoryResultCache(ttl_s=settings.cache_ttl_s)
    return RedisResultCache(settings.redis_url, ttl_s=settings.cache_ttl_s)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: TaskStore | None,
    cache_override: ResultCache | None,
    generator_override: ReportGenerator | None,
) -> None:
    if hasattr(app.state, "orchestrator"):
        return

    storage = storage_override or build_storage(settings)
    storage.migrate()
    cache = cache_override or build_cache(settings)
    generator = generator_override or build_report_generator(
        api_key=settings.resolved_openai_api_key(),
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
    )
    processor = ReportProcessor(storage=storage, cache=cache, generator=generator)
    app.state.settings = settings
    app.state.orchestrator = ReportOrchestrator(
        storage=storage,
        cache=cache,
        processor=processor,
        max_workers=settings.worker_pool_size,
    )
    logger.info(
        "report_service event=ready storage=%s cache=%s workers=%d",
        type(storage).__name__,
        type(cache).__name__,
        settings.worker_pool_size,
    )


def create_app(
    *,
    storage: TaskStore | None = None,
    cache: ResultCache | None = None,
    generator: ReportGenerator | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    """Application factory.

    Passing `storage` builds runtime state immediately, which keeps tests
    independent of whether the client runs the lifespan.
    """
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)

    def _ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            cache_override=cache,
            generator_override=generator,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure(app)
        yield
        app.state.orchestrator.shutdown(wait=False)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    if storage is not None:
        _ensure(app)

    def _get_orchestrator(request: Request) -> ReportOrchestrator:
        if not hasattr(request.app.state, "orchestrator"):
            _ensure(request.app)
        return request.app.state.orchestrator

    # Multiple health endpoints map to the same function for compatibility with
    # different probes/load balancers.
    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    def home() -> str:
        return render_homepage(app_name=settings.app_name)

    @app.post("/api/reports", response_model=ReportSnapshot)
    def create_report(payload: CreateReportRequest, request: Request) -> ReportSnapshot:
        orchestrator = _get_orchestrator(request)
        try:
            return orchestrator.submit(payload.user_input)
        except StoreError as exc:
            logger.error("report_api event=submit_failed reason=%s", exc)
            raise HTTPException(status_code=503, detail="Report storage unavailable") from exc

    @app.get("/api/reports", response_model=list[ReportSnapshot])
    def list_reports(request: Request) -> list[ReportSnapshot]:
        orchestrator = _get_orchestrator(request)
        try:
            return orchestrator.list_all()
        except StoreError as exc:
            logger.error("report_api event=list_failed reason=%s", exc)
            raise HTTPException(status_code=503, detail="Report storage unavailable") from exc

    @app.get("/api/reports/{task_id}", response_model=ReportSnapshot)
    def get_report(task_id: int, request: Request) -> ReportSnapshot:
        orchestrator = _get_orchestrator(request)
        try:
            return orchestrator.get_status(task_id)
        except ReportNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc
        except StoreError as exc:
            logger.error("report_api event=status_failed task_id=%s reason=%s", task_id, exc)
            raise HTTPException(status_code=503, detail="Report storage unavailable") from exc

    return app


# Module-level app for `uvicorn report_service.main:app`.
app = create_app()
