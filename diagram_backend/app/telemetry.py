from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Any, Iterator


@dataclass
class ActionStats:
    handled: int = 0
    failed: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def as_dict(self) -> dict[str, float | int]:
        return {
            "handled": self.handled,
            "failed": self.failed,
            "avg_ms": self.total_ms / self.handled if self.handled else 0.0,
            "max_ms": self.max_ms,
        }


class Telemetry:
    """Process-wide dispatch statistics plus free-form event counters."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._stats: dict[str, ActionStats] = defaultdict(ActionStats)
        self._counters: dict[str, int] = defaultdict(int)

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        start = perf_counter()
        failed = True
        try:
            yield
            failed = False
        finally:
            elapsed_ms = (perf_counter() - start) * 1000
            with self._lock:
                stats = self._stats[name]
                stats.handled += 1
                stats.failed += int(failed)
                stats.total_ms += elapsed_ms
                stats.max_ms = max(stats.max_ms, elapsed_ms)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[counter] += amount

    def count(self, counter: str) -> int:
        with self._lock:
            return self._counters.get(counter, 0)

    def handled(self, name: str) -> int:
        with self._lock:
            stats = self._stats.get(name)
            return stats.handled if stats else 0

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._counters.clear()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "actions": {name: stats.as_dict() for name, stats in sorted(self._stats.items())},
                "counters": dict(self._counters),
            }


TELEMETRY = Telemetry()
