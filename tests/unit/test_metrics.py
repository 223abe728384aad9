"""
Unit tests for the metrics collector (core/metrics.py)
"""

import pytest

from holder_risk.core.metrics import LatencyTimer, get_metrics, init_metrics


class TestCounters:
    """Test plain and labeled counters"""

    def test_plain_counter(self, metrics_collector):
        metrics_collector.increment_counter("classifications")
        metrics_collector.increment_counter("classifications", 2)

        assert metrics_collector.get_counter("classifications") == 3
        assert metrics_collector.get_counter("unknown") == 0

    def test_labeled_counters_are_separate(self, metrics_collector):
        metrics_collector.increment_counter("label_lookups", labels={"source": "local"})
        metrics_collector.increment_counter("label_lookups", labels={"source": "remote"})
        metrics_collector.increment_counter("label_lookups", labels={"source": "remote"})

        assert metrics_collector.get_counter("label_lookups", {"source": "remote"}) == 2
        assert metrics_collector.get_counter("label_lookups", {"source": "local"}) == 1
        assert metrics_collector.get_counter("label_lookups") == 0

    def test_export_flattens_labels(self, metrics_collector):
        metrics_collector.increment_counter("label_cache_hits")
        metrics_collector.increment_counter(
            "classifications", labels={"source": "label", "classification": "CEX"}
        )

        counters = metrics_collector.export_metrics()["counters"]

        assert counters["label_cache_hits"] == 1
        assert counters["classifications{classification=CEX,source=label}"] == 1

    def test_reset(self, metrics_collector):
        metrics_collector.increment_counter("label_cache_hits")
        metrics_collector.record_latency("remote_label_query", 10.0)

        metrics_collector.reset()

        assert metrics_collector.export_metrics() == {"counters": {}, "latencies": {}}


class TestLatency:
    """Test latency samples and summaries"""

    def test_summary(self, metrics_collector):
        for value in [10.0, 20.0, 30.0, 40.0, 50.0]:
            metrics_collector.record_latency("remote_label_query", value)

        summary = metrics_collector.get_latency_summary("remote_label_query")

        assert summary.count == 5
        assert summary.p50 == pytest.approx(30.0)
        assert summary.p95 == pytest.approx(48.0)
        assert summary.mean == pytest.approx(30.0)
        assert summary.max == 50.0

    def test_no_samples(self, metrics_collector):
        assert metrics_collector.get_latency_summary("never") is None

    def test_timer_records_sample(self, metrics_collector):
        with LatencyTimer(metrics_collector, "transaction_fetch") as timer:
            pass

        assert timer.latency_ms >= 0
        assert metrics_collector.get_latency_summary("transaction_fetch").count == 1


class TestGlobalCollector:
    def test_init_replaces_global(self):
        collector = init_metrics()

        assert get_metrics() is collector
        assert init_metrics() is not collector
