"""
Explicit read cache for task snapshots.

Instances are created by whoever wires the gateway and passed in; nothing
in the package holds a module-level cache.
"""

from threading import RLock
from typing import Any

from cachetools import TTLCache


class TaskCache:
    """TTL + LRU bounded cache of task snapshots keyed by task id."""

    def __init__(self, maxsize: int = 1024, ttl: float = 60.0):
        self._cache: TTLCache[str, dict[str, Any]] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = RLock()
        self.hits = 0
        self.misses = 0

    def get(self, task_id: str) -> dict[str, Any] | None:
        with self._lock:
            snapshot = self._cache.get(task_id)
            if snapshot is None:
                self.misses += 1
                return None
            self.hits += 1
            return dict(snapshot)

    def put(self, task_id: str, snapshot: dict[str, Any]) -> None:
        with self._lock:
            self._cache[task_id] = dict(snapshot)

    def invalidate(self, *task_ids: str) -> None:
        with self._lock:
            for task_id in task_ids:
                self._cache.pop(task_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
