"""
In-process metrics for holder risk analysis
Counts label lookups, cache traffic, rate-limit rejections and classifications,
and keeps latency samples for the network-bound stages
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class LatencySummary:
    """Summary of recorded latency samples"""
    operation: str
    count: int
    p50: float
    p95: float
    mean: float
    max: float


class MetricsCollector:
    """Collects counters and latency samples, optionally labeled"""

    def __init__(self, max_samples: int = 5000):
        self._latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_samples))
        self._counters: Dict[str, int] = defaultdict(int)
        self._labeled_counters: Dict[LabelKey, int] = defaultdict(int)

    @staticmethod
    def _key(metric_name: str, labels: Dict[str, str]) -> LabelKey:
        return (metric_name, tuple(sorted((k, str(v)) for k, v in labels.items())))

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Increment a counter metric

        Args:
            metric_name: Name of the counter
            value: Amount to increment (default 1)
            labels: Optional labels, e.g. {"source": "remote"}
        """
        if labels:
            self._labeled_counters[self._key(metric_name, labels)] += value
        else:
            self._counters[metric_name] += value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Get current counter value"""
        if labels:
            return self._labeled_counters.get(self._key(metric_name, labels), 0)
        return self._counters.get(metric_name, 0)

    def record_latency(self, operation: str, latency_ms: float) -> None:
        """Record one latency sample in milliseconds"""
        self._latencies[operation].append(latency_ms)

    def get_latency_summary(self, operation: str) -> Optional[LatencySummary]:
        """Summarize samples for an operation, None when nothing was recorded"""
        samples = sorted(self._latencies.get(operation, []))
        if not samples:
            return None

        return LatencySummary(
            operation=operation,
            count=len(samples),
            p50=self._percentile(samples, 50),
            p95=self._percentile(samples, 95),
            mean=statistics.mean(samples),
            max=samples[-1]
        )

    def export_metrics(self) -> Dict:
        """
        Export all metrics as a JSON-serializable dict

        Labeled counters are flattened to "name{k=v,...}" keys.
        """
        counters = dict(self._counters)
        for (name, labels), value in self._labeled_counters.items():
            rendered = ",".join(f"{k}={v}" for k, v in labels)
            counters[f"{name}{{{rendered}}}"] = value

        latencies = {}
        for operation in self._latencies:
            summary = self.get_latency_summary(operation)
            if summary:
                latencies[operation] = {
                    "count": summary.count,
                    "p50": summary.p50,
                    "p95": summary.p95,
                    "mean": summary.mean,
                    "max": summary.max
                }

        return {"counters": counters, "latencies": latencies}

    def reset(self) -> None:
        """Reset all metrics"""
        self._latencies.clear()
        self._counters.clear()
        self._labeled_counters.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        """Linear-interpolated percentile of sorted data"""
        if len(sorted_data) == 1:
            return sorted_data[0]

        index = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(index)
        upper = min(lower + 1, len(sorted_data) - 1)
        weight = index - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager recording elapsed time of a block"""

    def __init__(self, metrics: MetricsCollector, operation: str):
        self.metrics = metrics
        self.operation = operation
        self.start_time: Optional[float] = None
        self.latency_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.latency_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.operation, self.latency_ms)


_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get process-wide metrics collector"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def init_metrics(max_samples: int = 5000) -> MetricsCollector:
    """Replace the process-wide metrics collector"""
    global _global_metrics
    _global_metrics = MetricsCollector(max_samples)
    return _global_metrics
