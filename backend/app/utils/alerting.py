import logging
import time
from collections import deque
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_THRESHOLDS = {
    "ATTACHMENT_BLOB_REMOVE_FAILED": 5,
    "ATTACHMENT_LEDGER_BIND_FAILED": 3,
    "SALARY_RECONCILE_CONFLICT": 3,
}


class AlertTracker:
    """Counts selected actions in a sliding window and logs an ALERT line at each threshold multiple."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self._window_seconds = window_seconds
        self._thresholds = thresholds
        self._buckets: dict[str, deque[float]] = {}
        self._lock = Lock()

    def record(self, action: str, metadata: Optional[dict] = None) -> int:
        if action not in self._thresholds:
            return 0
        limit = self._thresholds[action]
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.setdefault(action, deque())
            cutoff = now - self._window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            bucket.append(now)
            count = len(bucket)
        if count >= limit and count % limit == 0:
            logger.warning(
                "ALERT action=%s count=%s window_seconds=%s metadata=%s",
                action,
                count,
                self._window_seconds,
                metadata or {},
            )
        return count

    def count(self, action: str) -> int:
        with self._lock:
            bucket = self._buckets.get(action)
            return len(bucket) if bucket else 0

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


alert_tracker = AlertTracker(DEFAULT_WINDOW_SECONDS, DEFAULT_THRESHOLDS)
