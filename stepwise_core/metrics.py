from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, TypeVar

_T = TypeVar("_T")


@dataclass
class CallStats:
    calls: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    min_ms: float = 0.0

    def record(self, elapsed_ms: float) -> None:
        self.calls += 1
        self.total_ms += elapsed_ms
        if self.calls == 1 or elapsed_ms < self.min_ms:
            self.min_ms = elapsed_ms
        if elapsed_ms > self.max_ms:
            self.max_ms = elapsed_ms

    def summary(self) -> dict[str, float | int]:
        avg_ms = self.total_ms / self.calls if self.calls else 0.0
        return {
            "calls": self.calls,
            "total_ms": round(self.total_ms, 2),
            "avg_ms": round(avg_ms, 2),
            "max_ms": round(self.max_ms, 2),
            "min_ms": round(self.min_ms, 2),
        }


class MetricsCollector:
    """Process-local counters and call timings.

    One instance is built per runtime and handed to every component that
    reports metrics, so tests can inspect a fresh collector.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._timings: dict[str, CallStats] = {}

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def record_timing(self, name: str, elapsed_ms: float) -> None:
        with self._lock:
            stats = self._timings.setdefault(name, CallStats())
            stats.record(elapsed_ms)

    def timing(self, name: str) -> dict[str, float | int]:
        with self._lock:
            stats = self._timings.get(name)
            return stats.summary() if stats else CallStats().summary()

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "counters": dict(sorted(self._counters.items())),
                "timings": {
                    name: stats.summary()
                    for name, stats in sorted(self._timings.items())
                },
            }


class StageTimer:
    def __init__(self) -> None:
        self._timings_ms: dict[str, float] = {}

    @contextmanager
    def track(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self._timings_ms[name] = round(
                self._timings_ms.get(name, 0.0) + elapsed_ms,
                2,
            )

    def summary(self) -> dict[str, float]:
        return dict(self._timings_ms)


def timed_call(metrics: MetricsCollector, name: str, func: Callable[[], _T]) -> _T:
    start = time.perf_counter()
    try:
        return func()
    finally:
        metrics.record_timing(name, (time.perf_counter() - start) * 1000.0)
