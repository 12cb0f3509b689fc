"""Process-local CPU baselines keyed by run id.

A baseline is written when a sampled job starts and read once when it
finishes. Entries older than max_age are never returned, whether or not the
periodic sweep has reached them yet.
"""

import sys
import threading
import time
from collections.abc import Callable
from typing import Any

from jobscope.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_AGE_SECONDS = 3600
DEFAULT_CLEANUP_INTERVAL_SECONDS = 300


class BaselineStore:
    """TTL-bounded in-memory map of run id -> baseline data."""

    def __init__(
        self,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_age = max_age_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._entries: dict[str, tuple[dict[str, Any], float]] = {}
        self._last_cleanup = 0.0
        self._lock = threading.Lock()

    def set(self, run_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            now = self._clock()
            self._periodic_cleanup(now)
            self._entries[run_id] = (data, now)

    def get(self, run_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(run_id)
            if entry is None:
                return None
            data, stored_at = entry
            if self._clock() - stored_at >= self._max_age:
                del self._entries[run_id]
                return None
            return data

    def clear(self, run_id: str) -> None:
        with self._lock:
            self._entries.pop(run_id, None)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._last_cleanup = 0.0

    def stats(self) -> dict[str, Any]:
        """Diagnostic snapshot: entry count, approximate size, oldest timestamp."""
        with self._lock:
            memory = sys.getsizeof(self._entries) + sum(
                sys.getsizeof(key) + sys.getsizeof(data) for key, (data, _) in self._entries.items()
            )
            return {
                "count": len(self._entries),
                "memory_bytes": memory,
                "oldest_timestamp": (
                    min(stored_at for _, stored_at in self._entries.values())
                    if self._entries
                    else None
                ),
            }

    def __len__(self) -> int:
        return len(self._entries)

    def _periodic_cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return

        before = len(self._entries)
        self._entries = {
            run_id: entry
            for run_id, entry in self._entries.items()
            if now - entry[1] < self._max_age
        }
        cleaned = before - len(self._entries)
        if cleaned:
            logger.bind(cleaned=cleaned, remaining=len(self._entries)).debug(
                "baseline_store_swept"
            )
        self._last_cleanup = now
