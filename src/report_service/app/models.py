"""Pydantic models shared across API, orchestrator, processor, cache, and storage.

Terms used in this file:
- ReportTask: the durable record owned by the task store.
- ReportSnapshot: the response-facing projection written to the result cache.
- ReportPayload: the structured document produced by the report generator.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Task lifecycle states used by storage + API responses.
ReportStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"COMPLETED", "FAILED"})

# Position of each status along PENDING -> PROCESSING -> terminal.
_STATUS_RANK: dict[str, int] = {
    "PENDING": 0,
    "PROCESSING": 1,
    "COMPLETED": 2,
    "FAILED": 2,
}


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    """Return True when moving from `current` to `target` keeps the lifecycle monotonic.

    Rewriting the same status is allowed so retried updates stay idempotent.
    """
    if current == target:
        return True
    if current in TERMINAL_STATUSES:
        return False
    return _STATUS_RANK[target] > _STATUS_RANK[current]


class ReportTask(BaseModel):
    """Canonical task record shape returned by storage."""

    id: int
    # Raw text submitted by the API client.
    user_input: str
    status: ReportStatus = "PENDING"
    # JSON document produced by the generator; only set once COMPLETED.
    report_result: str | None = None
    created_at: datetime
    updated_at: datetime


class ReportSnapshot(BaseModel):
    """Response/cache projection of a ReportTask."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    status: ReportStatus
    report_result: str = ""
    created_at: datetime

    @classmethod
    def from_task(cls, task: ReportTask) -> ReportSnapshot:
        return cls(
            id=task.id,
            status=task.status,
            report_result=task.report_result or "",
            created_at=task.created_at,
        )


class ReportPayload(BaseModel):
    """Structured analysis document stored (as JSON text) in report_result."""

    summary: str = Field(min_length=1)
    key_points: list[str] = Field(default_factory=list)
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)

    def to_report_result(self) -> str:
        # Compact JSON without defaulted fields: {"summary":"ok"}.
        return self.model_dump_json(exclude_defaults=True)


class CreateReportRequest(BaseModel):
    """Request body for POST /api/reports."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # min_length enforces non-empty text at API boundary.
    user_input: str = Field(min_length=1)
