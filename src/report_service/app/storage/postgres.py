"""PostgreSQL storage backend for report tasks.

Terms:
- Migration: creating the table before normal reads/writes.
- Row factory: returns query rows as dict-like objects instead of tuples.
- FOR UPDATE: row lock held for the duration of one transition write.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from report_service.app.errors import ReportNotFoundError, StoreError
from report_service.app.models import ReportTask
from report_service.app.storage.base import check_update


class PostgresTaskStorage:
    """Thread-safe PostgreSQL-backed storage for ReportTask records."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        # Lock guards DB operations done through this storage instance.
        self._lock = threading.Lock()
        # Lazy import helper keeps error message clear if psycopg is missing.
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        """Create required table and indexes if they do not already exist."""
        with self._guard(), self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS report_tasks (
                    id BIGSERIAL PRIMARY KEY,
                    user_input TEXT NOT NULL,
                    status TEXT NOT NULL,
                    report_result TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    CONSTRAINT report_tasks_result_iff_completed
                        CHECK ((status = 'COMPLETED') = (COALESCE(report_result, '') <> ''))
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_report_tasks_status
                ON report_tasks(status)
                """)
            conn.commit()

    def create_task(self, user_input: str) -> ReportTask:
        """Insert a new PENDING row and return it with its assigned id."""
        now = datetime.now(tz=UTC)
        with self._guard(), self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO report_tasks (
                    user_input,
                    status,
                    report_result,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (user_input, "PENDING", None, now, now),
            ).fetchone()
            conn.commit()
        if row is None:
            raise StoreError("Failed to persist report task")
        return self._row_to_task(row)

    def get_task(self, task_id: int) -> ReportTask | None:
        with self._guard(), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM report_tasks WHERE id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(self, task: ReportTask) -> ReportTask:
        """Persist status/report_result after checking the transition is monotonic."""
        updated_at = datetime.now(tz=UTC)
        with self._guard(), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM report_tasks WHERE id = %s FOR UPDATE",
                (task.id,),
            ).fetchone()
            if row is None:
                raise ReportNotFoundError(task.id)
            check_update(self._row_to_task(row), task)
            row = conn.execute(
                """
                UPDATE report_tasks
                SET status = %s,
                    report_result = %s,
                    updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (task.status, task.report_result, updated_at, task.id),
            ).fetchone()
            conn.commit()
        if row is None:
            raise ReportNotFoundError(task.id)
        return self._row_to_task(row)

    def list_tasks(self) -> list[ReportTask]:
        with self._guard(), self._connect() as conn:
            rows = conn.execute("SELECT * FROM report_tasks ORDER BY id").fetchall()
        return [self._row_to_task(row) for row in rows]

    def _guard(self) -> _StoreGuard:
        return _StoreGuard(self._lock, self._psycopg.Error)

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        try:
            return self._psycopg.connect(self.database_url, row_factory=self._dict_row)
        except self._psycopg.Error as exc:
            raise StoreError(f"Could not connect to report storage: {exc}") from exc

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg and helpers with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        """Parse datetime value from database driver output."""
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> ReportTask:
        """Map one DB row to the canonical ReportTask model."""
        return ReportTask(
            id=int(row["id"]),
            user_input=row["user_input"],
            status=row["status"],
            report_result=row["report_result"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


class _StoreGuard:
    """Hold the storage lock and translate driver errors into StoreError."""

    def __init__(self, lock: threading.Lock, driver_error: type[Exception]) -> None:
        self._lock = lock
        self._driver_error = driver_error

    def __enter__(self) -> None:
        self._lock.acquire()

    def __exit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> bool:
        self._lock.release()
        if exc is not None and isinstance(exc, self._driver_error):
            raise StoreError(f"Report storage operation failed: {exc}") from exc
        return False
