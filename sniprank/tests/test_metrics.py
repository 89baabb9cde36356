"""Tests for search statistics."""

import pytest

from sniprank.engine.metrics import LatencyHistogram, LatencyTimer, SearchMetrics


class TestLatencyHistogram:
    """Test bucketed latency percentiles."""

    def test_empty(self):
        histogram = LatencyHistogram("empty")
        assert histogram.get_percentile(50) == 0
        assert histogram.get_mean() == 0

    def test_percentiles_use_upper_bucket_bound(self):
        """Test that percentiles report bucket bounds and overflow lands in the last bucket."""
        histogram = LatencyHistogram("search")
        for latency in (3, 20, 7000):
            histogram.record(latency)

        assert histogram.get_percentile(50) == 25
        assert histogram.get_percentile(99) == 5000
        assert histogram.get_mean() == pytest.approx(2341.0)

    def test_reset(self):
        histogram = LatencyHistogram("search")
        histogram.record(12)
        histogram.reset()

        assert histogram.to_dict()["count"] == 0
        assert all(count == 0 for count in histogram.counts.values())


class TestSearchMetrics:
    """Test counters and rolling averages."""

    def test_cache_hit_rate(self):
        metrics = SearchMetrics()
        assert metrics.cache_hit_rate == 0.0

        metrics.record_cache(hit=True)
        metrics.record_cache(hit=False)
        metrics.record_cache(hit=False)

        assert metrics.cache_hit_rate == pytest.approx(1 / 3)

    def test_average_covers_recent_window(self):
        """Test that the rolling average drops old measurements."""
        metrics = SearchMetrics(window=2)
        for latency in (10, 20, 30):
            metrics.record_search(latency)

        assert metrics.average_latency_ms == 25
        assert metrics.histograms["search.total"].total_count == 3

    def test_top_queries_are_normalized(self):
        metrics = SearchMetrics()
        for query in ("Parse Config", "parse config ", "main loop"):
            metrics.record_query(query)

        assert metrics.top_queries(1) == [("parse config", 2)]
        assert metrics.counters["searches"] == 3

    def test_reset(self):
        metrics = SearchMetrics()
        metrics.record_query("q")
        metrics.record_ranking(4.0)
        metrics.reset()

        assert metrics.counters["searches"] == 0
        assert metrics.average_ranking_latency_ms == 0.0
        assert metrics.top_queries() == []


def test_latency_timer_records_ranking():
    """Test that the timer feeds the named histogram."""
    metrics = SearchMetrics()

    with LatencyTimer(metrics, "search.ranking") as timer:
        pass

    assert timer.elapsed_ms >= 0
    assert metrics.counters["ranked_searches"] == 1
    assert metrics.histograms["search.ranking"].total_count == 1


def test_latency_timer_unknown_metric_is_ignored():
    metrics = SearchMetrics()

    with LatencyTimer(metrics, "search.other"):
        pass

    assert metrics.histograms["search.total"].total_count == 0
