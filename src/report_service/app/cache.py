"""Result cache: fast-path mapping from task id to the last-known ReportSnapshot.

The cache only accelerates status reads. The task store stays the source of
truth, so every entry may expire (TTL measured from the last write) without
affecting correctness.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import ValidationError

from .errors import CacheError
from .models import ReportSnapshot

DEFAULT_TTL_S = 600.0


class ResultCache(Protocol):
    def get(self, task_id: int) -> ReportSnapshot | None: ...

    def put(self, task_id: int, snapshot: ReportSnapshot) -> None: ...

    def add(self, task_id: int, snapshot: ReportSnapshot) -> bool: ...

    def invalidate(self, task_id: int) -> None: ...


class InMemoryResultCache:
    """Thread-safe dict cache with per-entry expiry."""

    def __init__(
        self,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[int, tuple[float, ReportSnapshot]] = {}
        self._lock = threading.Lock()

    def get(self, task_id: int) -> ReportSnapshot | None:
        with self._lock:
            entry = self._live_entry(task_id)
        if entry is None:
            return None
        return entry.model_copy(deep=True)

    def put(self, task_id: int, snapshot: ReportSnapshot) -> None:
        with self._lock:
            self._sweep_expired()
            self._entries[task_id] = (self._clock() + self.ttl_s, snapshot.model_copy(deep=True))

    def add(self, task_id: int, snapshot: ReportSnapshot) -> bool:
        with self._lock:
            self._sweep_expired()
            if self._live_entry(task_id) is not None:
                return False
            self._entries[task_id] = (self._clock() + self.ttl_s, snapshot.model_copy(deep=True))
            return True

    def invalidate(self, task_id: int) -> None:
        with self._lock:
            self._entries.pop(task_id, None)

    def _sweep_expired(self) -> None:
        # Caller holds the lock. Ids that are never read again expire here.
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    def _live_entry(self, task_id: int) -> ReportSnapshot | None:
        # Caller holds the lock.
        entry = self._entries.get(task_id)
        if entry is None:
            return None
        expires_at, snapshot = entry
        if self._clock() >= expires_at:
            del self._entries[task_id]
            return None
        return snapshot


class RedisResultCache:
    """Redis-backed cache storing snapshot JSON under `report:{id}` with an expiry."""

    def __init__(
        self,
        redis_url: str,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        key_prefix: str = "report:",
        client: Any | None = None,
    ) -> None:
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        self.ttl_s = ttl_s
        self.key_prefix = key_prefix
        self._redis_error = self._load_redis_error()
        self._client = client if client is not None else self._build_client(redis_url)

    def get(self, task_id: int) -> ReportSnapshot | None:
        try:
            raw = self._client.get(self._key(task_id))
        except self._redis_error as exc:
            raise CacheError(f"Redis get failed for task {task_id}: {exc}") from exc
        if raw is None:
            return None
        try:
            return ReportSnapshot.model_validate_json(raw)
        except ValidationError as exc:
            raise CacheError(f"Corrupt cache entry for task {task_id}: {exc}") from exc

    def put(self, task_id: int, snapshot: ReportSnapshot) -> None:
        try:
            self._client.set(self._key(task_id), self._encode(snapshot), px=self._ttl_ms())
        except self._redis_error as exc:
            raise CacheError(f"Redis set failed for task {task_id}: {exc}") from exc

    def add(self, task_id: int, snapshot: ReportSnapshot) -> bool:
        try:
            stored = self._client.set(
                self._key(task_id), self._encode(snapshot), px=self._ttl_ms(), nx=True
            )
        except self._redis_error as exc:
            raise CacheError(f"Redis set failed for task {task_id}: {exc}") from exc
        return bool(stored)

    def invalidate(self, task_id: int) -> None:
        try:
            self._client.delete(self._key(task_id))
        except self._redis_error as exc:
            raise CacheError(f"Redis delete failed for task {task_id}: {exc}") from exc

    def _key(self, task_id: int) -> str:
        return f"{self.key_prefix}{task_id}"

    def _ttl_ms(self) -> int:
        return max(1, int(self.ttl_s * 1000))

    @staticmethod
    def _encode(snapshot: ReportSnapshot) -> str:
        return snapshot.model_dump_json(by_alias=True)

    @staticmethod
    def _build_client(redis_url: str) -> Any:
        if not redis_url:
            raise ValueError("redis_url is required")
        import redis

        return redis.Redis.from_url(redis_url)

    @staticmethod
    def _load_redis_error() -> type[Exception]:
        try:
            from redis.exceptions import RedisError
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                'Redis cache requires redis-py. Install with: python -m pip install "redis>=5.0"'
            ) from exc
        return RedisError
