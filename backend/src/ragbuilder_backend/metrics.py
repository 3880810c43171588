"""Latency and provider-event counters for ingest and query stages."""

from __future__ import annotations

import threading
import time
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator


@dataclass
class LatencyStats:
    count: int = 0
    total: float = 0.0
    max_value: float = 0.0

    def record(self, value: float) -> None:
        self.count += 1
        self.total += value
        if value > self.max_value:
            self.max_value = value

    def summary(self) -> Dict[str, float]:
        avg = self.total / self.count if self.count else 0.0
        return {"count": self.count, "avg_ms": avg * 1000.0, "max_ms": self.max_value * 1000.0}


class PipelineMonitor:
    """Process-wide recorder shared by every pipeline engine."""

    def __init__(self) -> None:
        self._latency: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._events: Counter[str] = Counter()
        self._lock = threading.Lock()

    def record(self, stage: str, duration: float) -> None:
        with self._lock:
            self._latency[stage].record(duration)

    def increment(self, event: str, amount: int = 1) -> None:
        with self._lock:
            self._events[event] += amount

    def latency(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {stage: stats.summary() for stage, stats in self._latency.items()}

    def events(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._events)

    def reset(self) -> None:
        with self._lock:
            self._latency.clear()
            self._events.clear()


monitor = PipelineMonitor()


def record_latency(stage: str, duration: float) -> None:
    monitor.record(stage, duration)


def record_event(event: str) -> None:
    """Count provider fallbacks, generation errors, and similar occurrences."""

    monitor.increment(event)


@contextmanager
def timed(stage: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        monitor.record(stage, time.perf_counter() - start)


def latency_summary() -> Dict[str, Dict[str, float]]:
    return monitor.latency()


def event_summary() -> Dict[str, int]:
    return monitor.events()


__all__ = [
    "LatencyStats",
    "PipelineMonitor",
    "event_summary",
    "latency_summary",
    "monitor",
    "record_event",
    "record_latency",
    "timed",
]
