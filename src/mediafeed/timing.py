from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class OperationTimer:
    """
    按操作名记录最近 N 次耗时（毫秒），超过阈值时打 warning。

    每个会话持有自己的实例，不使用全局状态。
    """

    def __init__(self, *, window: int = 10, slow_threshold_ms: float = 100.0) -> None:
        self._window = window
        self._slow_threshold_ms = slow_threshold_ms
        self._lock = threading.Lock()
        self._durations: dict[str, deque[float]] = {}

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        start_t = time.monotonic()
        try:
            yield
        finally:
            self.record(name, (time.monotonic() - start_t) * 1000)

    def record(self, name: str, duration_ms: float) -> None:
        with self._lock:
            ring = self._durations.get(name)
            if ring is None:
                ring = self._durations[name] = deque(maxlen=self._window)
            ring.append(duration_ms)
        if duration_ms > self._slow_threshold_ms:
            logger.warning("slow operation: name=%s duration_ms=%.2f", name, duration_ms)

    def summary(self) -> dict[str, tuple[float, int]]:
        with self._lock:
            return {
                name: (sum(ring) / len(ring), len(ring))
                for name, ring in self._durations.items()
                if ring
            }
