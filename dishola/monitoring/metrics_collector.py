"""
In-process metrics for the search pipeline: labelled counters and bounded
latency histograms, reported by the ``/stats`` endpoint.
"""
import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional


@dataclass
class MetricPoint:
    timestamp: float
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


def summarize(values: List[float]) -> Dict[str, float]:
    """count/avg/min/max/p95/latest for one histogram (values in arrival order)."""
    ordered = sorted(values)
    p95 = ordered[min(len(ordered) - 1, int(round(0.95 * (len(ordered) - 1))))]
    return {
        "count": len(values),
        "avg": round(sum(values) / len(values), 1),
        "min": ordered[0],
        "max": ordered[-1],
        "p95": p95,
        "latest": values[-1],
    }


class SearchMetrics:
    """Counters (searches, cache hits and misses, AI errors) and timing histograms."""

    MAX_POINTS = 1000

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.histograms: Dict[str, Deque[MetricPoint]] = defaultdict(lambda: deque(maxlen=self.MAX_POINTS))
        self.lock = asyncio.Lock()
        self.started_at = time.time()

    @staticmethod
    def _get_metric_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{rendered}}}"

    async def increment_counter(self, counter_name: str, value: int = 1, labels: Optional[Dict[str, str]] = None):
        async with self.lock:
            self.counters[self._get_metric_key(counter_name, labels)] += value

    async def record_histogram(self, histogram_name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Keep the most recent ``MAX_POINTS`` observations per histogram."""
        async with self.lock:
            self.histograms[histogram_name].append(MetricPoint(time.time(), value, labels or {}))

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.started_at, 1),
            "counters": dict(self.counters),
            "histograms": {
                name: summarize([p.value for p in points])
                for name, points in self.histograms.items()
                if points
            },
        }

    async def reset(self):
        async with self.lock:
            self.counters.clear()
            self.histograms.clear()
