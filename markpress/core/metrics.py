from __future__ import annotations

import threading
from typing import Dict


class MetricsStore:
    """Thread-safe in-memory metrics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "uploads": 0,
            "bytes_uploaded": 0,
            "downloads": 0,
            "promoted": 0,
            "promotion_failures": 0,
            "posts_published": 0,
            "swept": 0,
        }

    def record_upload(self, size_bytes: int) -> None:
        with self._lock:
            self._counters["uploads"] += 1
            self._counters["bytes_uploaded"] += size_bytes

    def record_download(self) -> None:
        with self._lock:
            self._counters["downloads"] += 1

    def record_promotion(self, promoted: int, failed: int) -> None:
        with self._lock:
            self._counters["promoted"] += max(promoted, 0)
            self._counters["promotion_failures"] += max(failed, 0)

    def record_publish(self) -> None:
        with self._lock:
            self._counters["posts_published"] += 1

    def record_sweep(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._counters["swept"] += count

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)


metrics = MetricsStore()
