"""Tests for the metrics store."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vigilpy.adapters.clock import ManualClock
from vigilpy.adapters.scheduling import ManualScheduler
from vigilpy.core.config import MetricsConfig
from vigilpy.core.metrics import (
    AggregateFn,
    MetricsStore,
    percentile,
    reduce_values,
)
from vigilpy.core.models import MetricKind, MetricSample
from vigilpy.core.ports import ProcessStats


class FixedProcessStats:
    """Process stats source that always reports the same reading."""

    def __init__(self, stats: ProcessStats) -> None:
        self._stats = stats

    def read(self) -> ProcessStats:
        return self._stats


class TestPercentile:
    """Tests for nearest-rank percentile."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_empty_list_is_zero(self) -> None:
        """No observations give 0.0."""
        assert percentile([], 0.95) == 0.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_p95_of_hundred_values(self) -> None:
        """P95 of 1..100 is the 95th observation."""
        assert percentile([float(v) for v in range(100, 0, -1)], 0.95) == 95.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_single_value(self) -> None:
        """Every percentile of one observation is that observation."""
        assert percentile([7.0], 0.5) == 7.0
        assert percentile([7.0], 0.99) == 7.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_reduce_avg_and_sum(self) -> None:
        """avg and sum reduce as expected."""
        assert reduce_values([1.0, 2.0, 3.0], AggregateFn.AVG) == 2.0
        assert reduce_values([1.0, 2.0, 3.0], AggregateFn.SUM) == 6.0


class TestRecording:
    """Tests for recording samples."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_record_returns_sample_with_clock_time(
        self, metrics: MetricsStore, clock: ManualClock
    ) -> None:
        """Recorded samples carry the clock's timestamp."""
        sample = metrics.record("api_response_time", 120.0, {"route": "/health"})
        assert isinstance(sample, MetricSample)
        assert sample.timestamp == clock.time()
        assert sample.tags == {"route": "/health"}
        assert sample.kind is MetricKind.GAUGE

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_increment_counter_is_cumulative(self, metrics: MetricsStore) -> None:
        """Counters record their running total."""
        metrics.increment_counter("api_requests_total")
        metrics.increment_counter("api_requests_total")
        sample = metrics.increment_counter("api_requests_total", increment=3)
        assert sample.value == 5
        assert sample.kind is MetricKind.COUNTER

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_counter_totals_are_kept_per_tag_set(self, metrics: MetricsStore) -> None:
        """Each tag set counts on its own; the current value sums them."""
        openai = {"provider": "openai", "model": "gpt-4"}
        anthropic = {"provider": "anthropic", "model": "claude-3-haiku"}
        metrics.increment_counter("ai_tokens_total", openai, 1000)
        sample = metrics.increment_counter("ai_tokens_total", anthropic, 500)
        assert sample.value == 500
        assert sample.tags == anthropic
        again = metrics.increment_counter("ai_tokens_total", openai, 10)
        assert again.value == 1010
        assert metrics.counter_value("ai_tokens_total", openai) == 1010
        assert metrics.counter_value("ai_tokens_total", anthropic) == 500
        assert metrics.counter_value("ai_tokens_total") == 0.0
        assert metrics.current_value("ai_tokens_total") == 1510
        assert metrics.all_current_values() == {"ai_tokens_total": 1510}

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_buffer_evicts_oldest(self, clock: ManualClock) -> None:
        """Only the newest buffer_size samples per name are kept."""
        store = MetricsStore(clock, config=MetricsConfig(buffer_size=3))
        for value in range(5):
            store.record("queue_depth", float(value))
        assert [s.value for s in store.history("queue_depth")] == [2.0, 3.0, 4.0]

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_current_value_of_unknown_metric_is_none(
        self, metrics: MetricsStore
    ) -> None:
        """Unknown metrics have no current value."""
        assert metrics.current_value("missing") is None
        assert metrics.latest("missing") is None

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_all_current_values(self, metrics: MetricsStore) -> None:
        """The latest value of every name is reported."""
        metrics.set_gauge("active_users", 3)
        metrics.set_gauge("active_users", 4)
        metrics.record_histogram("api_response_time", 80)
        assert metrics.all_current_values() == {
            "active_users": 4,
            "api_response_time": 80,
        }


class TestAggregate:
    """Tests for windowed aggregation."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_window_excludes_old_samples(
        self, metrics: MetricsStore, clock: ManualClock
    ) -> None:
        """Samples older than the window are not aggregated."""
        metrics.record("latency", 1000.0)
        clock.advance(120)
        metrics.record("latency", 10.0)
        metrics.record("latency", 20.0)
        assert metrics.aggregate("latency", "avg", window_seconds=60) == 15.0
        assert metrics.aggregate("latency", "count", window_seconds=60) == 2
        assert metrics.aggregate("latency", "max", window_seconds=3600) == 1000.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_window_boundary_is_inclusive(
        self, metrics: MetricsStore, clock: ManualClock
    ) -> None:
        """A sample exactly window seconds old still counts."""
        metrics.record("latency", 5.0)
        clock.advance(60)
        assert metrics.aggregate("latency", AggregateFn.COUNT, window_seconds=60) == 1

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_unknown_metric_aggregates_to_zero(self, metrics: MetricsStore) -> None:
        """No samples in the window give 0.0."""
        assert metrics.aggregate("missing", "p99") == 0.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_unknown_function_raises(self, metrics: MetricsStore) -> None:
        """Only the known aggregate names are accepted."""
        metrics.record("latency", 5.0)
        with pytest.raises(ValueError):
            metrics.aggregate("latency", "median")

    @pytest.mark.core
    @pytest.mark.tier(0)
    @given(values=st.lists(st.floats(-1e6, 1e6, allow_nan=False), max_size=50))
    def test_max_and_count_cover_every_sample(self, values: list[float]) -> None:
        """max bounds every recorded value and count equals the samples."""
        store = MetricsStore(ManualClock(), config=MetricsConfig(buffer_size=100))
        for value in values:
            store.record("prop", value)
        assert store.aggregate("prop", "count", 60) == len(values)
        if values:
            peak = store.aggregate("prop", "max", 60)
            assert all(peak >= v for v in values)


class TestMetricsLifecycle:
    """Tests for scheduled collection and reset."""

    @pytest.mark.tier(1)
    async def test_start_registers_jobs(
        self, metrics: MetricsStore, scheduler: ManualScheduler
    ) -> None:
        """start registers the collection and evaluation jobs."""
        metrics.start()
        assert sorted(scheduler.jobs()) == ["metrics.alerts", "metrics.collect"]
        metrics.shutdown()
        assert scheduler.jobs() == []

    @pytest.mark.tier(1)
    async def test_collection_tick_records_process_gauges(
        self, clock: ManualClock, scheduler: ManualScheduler
    ) -> None:
        """Collection records memory, cpu and uptime gauges."""
        stats = ProcessStats(
            memory_percent=2.5,
            rss_bytes=64 * 1024 * 1024,
            cpu_seconds=1.75,
            create_time=clock.time() - 100,
        )
        store = MetricsStore(clock, scheduler, process_stats=FixedProcessStats(stats))
        store.start()
        await scheduler.advance(30)
        assert store.current_value("memory_usage") == 2.5
        assert store.current_value("memory_rss_mb") == 64
        assert store.current_value("cpu_seconds") == 1.75
        assert store.current_value("uptime_seconds") == 130

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_collection_without_stats_source_records_nothing(
        self, metrics: MetricsStore
    ) -> None:
        """Without a process stats source, collection is skipped."""
        metrics.collect_system_metrics()
        assert metrics.names() == []

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_start_without_scheduler_is_noop(self, clock: ManualClock) -> None:
        """Without a scheduler, start only logs."""
        MetricsStore(clock).start()

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_reset_clears_samples(self, metrics: MetricsStore) -> None:
        """reset drops every series."""
        metrics.record("latency", 1.0)
        metrics.reset()
        assert metrics.names() == []


class TestMetricsDashboard:
    """Tests for the metrics dashboard."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_empty_store_gives_empty_dashboard(
        self, metrics: MetricsStore, clock: ManualClock
    ) -> None:
        """An empty store reports the empty dashboard."""
        dashboard = metrics.dashboard()
        assert dashboard.generated_at == clock.time()
        assert dashboard.ai_metrics == {}
        assert dashboard.alerts == []

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_groups_read_current_values(self, metrics: MetricsStore) -> None:
        """Dashboard groups map display keys to current values."""
        metrics.increment_counter("ai_requests_total", increment=4)
        metrics.set_gauge("active_users", 12)
        metrics.record_histogram("api_response_time", 100)
        metrics.record_histogram("api_response_time", 300)
        dashboard = metrics.dashboard()
        assert dashboard.ai_metrics["requests"] == 4
        assert dashboard.ai_metrics["tokens"] == 0.0
        assert dashboard.user_metrics["active_users"] == 12
        assert dashboard.system_metrics["api_response_time_avg"] == 200
        assert dashboard.system_metrics["api_response_time_p95"] == 300
