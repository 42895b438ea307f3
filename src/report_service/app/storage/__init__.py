"""Task store backends."""

from report_service.app.storage.base import TaskStore, check_update
from report_service.app.storage.memory import InMemoryTaskStorage
from report_service.app.storage.postgres import PostgresTaskStorage

__all__ = [
    "InMemoryTaskStorage",
    "PostgresTaskStorage",
    "TaskStore",
    "check_update",
]
