"""Search statistics: latency distributions, cache hit rate, query frequency."""

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from loguru import logger


@dataclass
class LatencyHistogram:
    """Track latency distribution with percentiles."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [
        5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000  # milliseconds
    ])
    counts: Dict[float, int] = field(default_factory=dict)
    total_count: int = 0
    sum_ms: float = 0

    def __post_init__(self):
        for bucket in self.buckets:
            self.counts[bucket] = 0

    def record(self, latency_ms: float) -> None:
        """Record a latency measurement."""
        self.total_count += 1
        self.sum_ms += latency_ms

        for bucket in self.buckets:
            if latency_ms <= bucket:
                self.counts[bucket] += 1
                break
        else:
            # Over max bucket
            self.counts[self.buckets[-1]] += 1

    def get_percentile(self, percentile: float) -> float:
        """Get approximate percentile value (upper bucket bound)."""
        if self.total_count == 0:
            return 0

        target_count = self.total_count * (percentile / 100)
        cumulative = 0

        for bucket in self.buckets:
            cumulative += self.counts[bucket]
            if cumulative >= target_count:
                return bucket

        return self.buckets[-1]

    def get_mean(self) -> float:
        if self.total_count == 0:
            return 0
        return self.sum_ms / self.total_count

    def reset(self) -> None:
        self.counts = {bucket: 0 for bucket in self.buckets}
        self.total_count = 0
        self.sum_ms = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.total_count,
            "mean": round(self.get_mean(), 1),
            "p50": self.get_percentile(50),
            "p95": self.get_percentile(95),
            "p99": self.get_percentile(99),
        }


class SearchMetrics:
    """
    Statistics for one search service instance.

    Average latencies cover the most recent ``window`` measurements; the
    histograms cover the whole lifetime.
    """

    def __init__(self, window: int = 100):
        self.histograms = {
            "search.total": LatencyHistogram("search.total"),
            "search.ranking": LatencyHistogram("search.ranking"),
        }
        self.counters: Counter = Counter()
        self.query_frequency: Counter = Counter()
        self._latencies: Deque[float] = deque(maxlen=window)
        self._ranking_latencies: Deque[float] = deque(maxlen=window)
        self._lock = threading.Lock()

    def record_query(self, query: str) -> None:
        with self._lock:
            self.counters['searches'] += 1
            self.query_frequency[query.lower().strip()] += 1

    def record_cache(self, hit: bool) -> None:
        with self._lock:
            self.counters['cache_hits' if hit else 'cache_misses'] += 1

    def record_search(self, latency_ms: float) -> None:
        with self._lock:
            self._latencies.append(latency_ms)
            self.histograms["search.total"].record(latency_ms)

    def record_ranking(self, latency_ms: float) -> None:
        with self._lock:
            self.counters['ranked_searches'] += 1
            self._ranking_latencies.append(latency_ms)
            self.histograms["search.ranking"].record(latency_ms)

    def increment(self, counter_name: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[counter_name] += amount

    @property
    def cache_hit_rate(self) -> float:
        with self._lock:
            lookups = self.counters['cache_hits'] + self.counters['cache_misses']
            return self.counters['cache_hits'] / lookups if lookups else 0.0

    @property
    def average_latency_ms(self) -> float:
        with self._lock:
            return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def average_ranking_latency_ms(self) -> float:
        with self._lock:
            if not self._ranking_latencies:
                return 0.0
            return sum(self._ranking_latencies) / len(self._ranking_latencies)

    def top_queries(self, n: int = 10) -> List[Tuple[str, int]]:
        with self._lock:
            return self.query_frequency.most_common(n)

    def reset(self) -> None:
        with self._lock:
            for histogram in self.histograms.values():
                histogram.reset()
            self.counters.clear()
            self.query_frequency.clear()
            self._latencies.clear()
            self._ranking_latencies.clear()


class LatencyTimer:
    """Context manager for timing operations."""

    def __init__(self, metrics: SearchMetrics, metric_name: str):
        self.metrics = metrics
        self.metric_name = metric_name
        self.start_time: Optional[float] = None
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if self.metric_name == "search.ranking":
            self.metrics.record_ranking(self.elapsed_ms)
        elif self.metric_name == "search.total":
            self.metrics.record_search(self.elapsed_ms)
        else:
            logger.warning(f"Unknown metric: {self.metric_name}")
