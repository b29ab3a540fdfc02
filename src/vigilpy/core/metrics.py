"""Metrics store: per-name ring buffers, windowed aggregation, SLOs and alerts."""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from vigilpy.core.config import MetricsConfig
from vigilpy.core.models import MetricKind, MetricSample
from vigilpy.core.ports import ClockPort, ProcessStatsPort, SchedulerPort
from vigilpy.core.slo import (
    AlertRule,
    FiredAlert,
    SLOConfig,
    SLOIndicator,
    SLOStatus,
    classify,
    error_budget,
)

logger = logging.getLogger(__name__)

COLLECT_JOB = "metrics.collect"
ALERT_JOB = "metrics.alerts"


class AggregateFn(str, Enum):
    AVG = "avg"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    P50 = "p50"
    P95 = "p95"
    P99 = "p99"


_PERCENTILES = {AggregateFn.P50: 0.50, AggregateFn.P95: 0.95, AggregateFn.P99: 0.99}


def percentile(values: list[float], p: float) -> float:
    """Nearest-rank percentile of ``values`` (no interpolation).

    Args:
        values: Observations, in any order.
        p: Fraction between 0 and 1.

    Returns:
        The selected observation, or 0.0 for an empty list.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(max(math.ceil(len(ordered) * p) - 1, 0), len(ordered) - 1)
    return ordered[index]


def reduce_values(values: list[float], fn: AggregateFn) -> float:
    if not values:
        return 0.0
    if fn is AggregateFn.AVG:
        return sum(values) / len(values)
    if fn is AggregateFn.SUM:
        return float(sum(values))
    if fn is AggregateFn.MIN:
        return min(values)
    if fn is AggregateFn.MAX:
        return max(values)
    if fn is AggregateFn.COUNT:
        return float(len(values))
    return percentile(values, _PERCENTILES[fn])


# Dashboard groups: display key -> metric name.
USER_METRICS = {
    "active_users": "active_users",
    "new_registrations": "user_registrations",
    "sessions": "user_sessions",
}
HEALTH_METRICS = {
    "data_points": "health_data_points",
    "sync_success": "health_sync_success",
    "sync_errors": "health_sync_errors",
}
AI_METRICS = {
    "requests": "ai_requests_total",
    "errors": "ai_errors_total",
    "cost_hourly": "ai_cost_hourly",
    "tokens": "ai_tokens_total",
}


@dataclass(frozen=True)
class MetricsDashboard:
    """Snapshot of the metric groups, SLOs and recent alerts."""

    generated_at: float
    user_metrics: dict[str, float] = field(default_factory=dict)
    health_metrics: dict[str, float] = field(default_factory=dict)
    ai_metrics: dict[str, float] = field(default_factory=dict)
    system_metrics: dict[str, float] = field(default_factory=dict)
    slos: list[SLOStatus] = field(default_factory=list)
    alerts: list[FiredAlert] = field(default_factory=list)

    @classmethod
    def empty(cls, generated_at: float = 0.0) -> "MetricsDashboard":
        return cls(generated_at=generated_at)


class MetricsStore:
    """In-memory time series with bounded per-name buffers.

    Every aggregate is computed over an explicit window of the retained
    buffer. Background jobs collect process gauges and evaluate alert
    rules and SLOs once ``start`` has been called.

    Args:
        clock: Time source for sample timestamps and windows.
        scheduler: Runs the collection and evaluation ticks.
        config: Buffer sizes, intervals, SLOs and alert rules.
        process_stats: Source of the system gauges; collection is skipped
            without one.
    """

    def __init__(
        self,
        clock: ClockPort,
        scheduler: SchedulerPort | None = None,
        config: MetricsConfig | None = None,
        process_stats: ProcessStatsPort | None = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._config = config or MetricsConfig()
        self._process_stats = process_stats
        self._series: dict[str, deque[MetricSample]] = {}
        # name -> tag set -> running total
        self._counters: dict[str, dict[frozenset[tuple[str, str]], float]] = {}
        self._slos: dict[str, SLOConfig] = {s.name: s for s in self._config.slos}
        self._rules: dict[str, AlertRule] = {r.id: r for r in self._config.alert_rules}
        self._alert_history: dict[str, deque[FiredAlert]] = {}
        self._last_fired: dict[str, float] = {}
        self._violations: dict[str, int] = {}
        self._last_violation: dict[str, float] = {}

    # --- recording ---

    def record(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
        kind: MetricKind = MetricKind.GAUGE,
    ) -> MetricSample:
        """Append a sample, evicting the oldest beyond the buffer size."""
        sample = MetricSample(
            name=name,
            value=value,
            timestamp=self._clock.time(),
            tags=dict(tags or {}),
            kind=MetricKind(kind),
        )
        series = self._series.get(name)
        if series is None:
            series = deque(maxlen=self._config.buffer_size)
            self._series[name] = series
        series.append(sample)
        return sample

    def increment_counter(
        self,
        name: str,
        tags: dict[str, str] | None = None,
        increment: float = 1,
    ) -> MetricSample:
        """Record the running total of a counter for one tag set.

        Each distinct ``tags`` combination keeps its own total, so a
        sample's value is always the total of the series it is tagged with.
        ``current_value`` reports the sum over every tag set.
        """
        totals = self._counters.setdefault(name, {})
        key = frozenset((tags or {}).items())
        totals[key] = totals.get(key, 0.0) + increment
        return self.record(name, totals[key], tags, MetricKind.COUNTER)

    def counter_value(self, name: str, tags: dict[str, str] | None = None) -> float:
        """Running total of a counter for exactly ``tags`` (0.0 if unseen)."""
        return self._counters.get(name, {}).get(frozenset((tags or {}).items()), 0.0)

    def record_histogram(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> MetricSample:
        return self.record(name, value, tags, MetricKind.HISTOGRAM)

    def set_gauge(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> MetricSample:
        return self.record(name, value, tags, MetricKind.GAUGE)

    # --- reading ---

    def latest(self, name: str) -> MetricSample | None:
        series = self._series.get(name)
        return series[-1] if series else None

    def current_value(self, name: str) -> float | None:
        """Latest value of ``name``; counters report the total of all tag sets."""
        totals = self._counters.get(name)
        if totals:
            return sum(totals.values())
        sample = self.latest(name)
        return sample.value if sample is not None else None

    def all_current_values(self) -> dict[str, float]:
        values = {}
        for name in self._series:
            value = self.current_value(name)
            if value is not None:
                values[name] = value
        return values

    def names(self) -> list[str]:
        return list(self._series)

    def history(
        self, name: str, window_seconds: float | None = None
    ) -> list[MetricSample]:
        """Retained samples for ``name``, optionally limited to a window."""
        series = self._series.get(name, ())
        if window_seconds is None:
            return list(series)
        cutoff = self._clock.time() - window_seconds
        return [s for s in series if s.timestamp >= cutoff]

    def aggregate(
        self,
        name: str,
        fn: AggregateFn | str,
        window_seconds: float = 3600,
    ) -> float:
        """Reduce the samples recorded within the last ``window_seconds``.

        Args:
            name: Metric name.
            fn: One of avg, sum, min, max, count, p50, p95, p99.
            window_seconds: Samples with ``timestamp >= now - window`` count.

        Returns:
            The reduced value, or 0.0 when no sample is in the window.

        Raises:
            ValueError: If ``fn`` is not a known aggregate.
        """
        values = [s.value for s in self.history(name, window_seconds)]
        return reduce_values(values, AggregateFn(fn))

    # --- SLOs ---

    def slo_configs(self) -> list[SLOConfig]:
        return list(self._slos.values())

    def add_slo(self, slo: SLOConfig) -> None:
        self._slos[slo.name] = slo

    def _slo_current(self, slo: SLOConfig) -> float:
        window = slo.window_seconds
        if slo.indicator is SLOIndicator.AVAILABILITY:
            total = self.aggregate("api_requests_total", AggregateFn.SUM, window)
            if total == 0:
                return 100.0
            ok = self.aggregate("api_requests_successful", AggregateFn.SUM, window)
            return ok / total * 100
        if slo.indicator is SLOIndicator.LATENCY:
            p95 = self.aggregate("api_response_time", AggregateFn.P95, window)
            threshold = slo.threshold or 0.0
            if threshold <= 0 or p95 <= threshold:
                return 100.0
            return max(0.0, 100 - (p95 - threshold) / threshold * 100)
        if slo.indicator is SLOIndicator.ERROR_RATE:
            return 100 - self.aggregate("error_rate", AggregateFn.AVG, window)
        return self.aggregate(slo.metric or slo.name, AggregateFn.AVG, window)

    def check_slo(self, name: str) -> SLOStatus | None:
        """Current status of one SLO, or None if it is not configured."""
        slo = self._slos.get(name)
        if slo is None:
            logger.warning("Unknown SLO %s", name)
            return None
        current = self._slo_current(slo)
        return SLOStatus(
            name=slo.name,
            current=current,
            target=slo.target,
            status=classify(current, slo.target),
            error_budget=error_budget(current, slo.target),
            violations=self._violations.get(slo.name, 0),
            last_violation=self._last_violation.get(slo.name),
        )

    def all_slo_statuses(self) -> list[SLOStatus]:
        statuses = (self.check_slo(name) for name in self._slos)
        return [s for s in statuses if s is not None]

    def evaluate_slos(self) -> list[SLOStatus]:
        """Count a violation for every SLO currently below target."""
        now = self._clock.time()
        breached = []
        for slo in self._slos.values():
            current = self._slo_current(slo)
            if current < slo.target:
                self._violations[slo.name] = self._violations.get(slo.name, 0) + 1
                self._last_violation[slo.name] = now
                breached.append(slo.name)
        if breached:
            logger.info("SLOs below target: %s", ", ".join(breached))
        return self.all_slo_statuses()

    # --- alerts ---

    def alert_rules(self) -> list[AlertRule]:
        return list(self._rules.values())

    def add_alert_rule(self, rule: AlertRule) -> None:
        self._rules[rule.id] = rule

    def evaluate_alerts(self) -> list[FiredAlert]:
        """Fire every enabled rule whose condition holds and is off cooldown."""
        now = self._clock.time()
        fired: list[FiredAlert] = []
        for rule in self._rules.values():
            if not rule.enabled:
                continue
            last = self._last_fired.get(rule.id)
            if last is not None and now - last < rule.cooldown:
                continue
            value = self.current_value(rule.condition.metric) or 0.0
            if not rule.condition.holds(value):
                continue
            alert = FiredAlert(
                rule_id=rule.id,
                rule_name=rule.name,
                severity=rule.severity,
                message=f"{rule.name}: {rule.condition} (current: {value:g})",
                value=value,
                timestamp=now,
            )
            history = self._alert_history.get(rule.id)
            if history is None:
                history = deque(maxlen=self._config.alert_history_size)
                self._alert_history[rule.id] = history
            history.append(alert)
            self._last_fired[rule.id] = now
            logger.warning("Alert fired: %s", alert.message)
            fired.append(alert)
        return fired

    def alert_history(self, rule_id: str) -> list[FiredAlert]:
        return list(self._alert_history.get(rule_id, ()))

    def recent_alerts(self, hours: float = 24) -> list[FiredAlert]:
        """Alerts fired within the last ``hours``, newest first."""
        cutoff = self._clock.time() - hours * 3600
        alerts = [
            alert
            for history in self._alert_history.values()
            for alert in history
            if alert.timestamp >= cutoff
        ]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    # --- background ---

    def collect_system_metrics(self) -> None:
        """Record memory, cpu and uptime gauges of the host process."""
        if self._process_stats is None:
            logger.debug("No process stats source; skipping system metrics")
            return
        stats = self._process_stats.read()
        self.set_gauge("memory_usage", stats.memory_percent)
        self.set_gauge("memory_rss_mb", stats.rss_bytes / (1024 * 1024))
        self.set_gauge("cpu_seconds", stats.cpu_seconds)
        self.set_gauge(
            "uptime_seconds", max(0.0, self._clock.time() - stats.create_time)
        )

    def run_evaluation(self) -> None:
        self.evaluate_alerts()
        self.evaluate_slos()

    def start(self) -> None:
        if self._scheduler is None:
            logger.warning("MetricsStore has no scheduler; background jobs disabled")
            return
        self._scheduler.every(
            COLLECT_JOB, self._config.collect_interval, self.collect_system_metrics
        )
        self._scheduler.every(
            ALERT_JOB, self._config.alert_interval, self.run_evaluation
        )

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(COLLECT_JOB)
            self._scheduler.cancel(ALERT_JOB)

    def reset(self) -> None:
        """Drop every sample, alert and violation count."""
        self._series.clear()
        self._counters.clear()
        self._alert_history.clear()
        self._last_fired.clear()
        self._violations.clear()
        self._last_violation.clear()

    # --- dashboard ---

    def _group(self, mapping: dict[str, str]) -> dict[str, float]:
        return {key: self.current_value(metric) or 0.0 for key, metric in mapping.items()}

    def dashboard(self) -> MetricsDashboard:
        now = self._clock.time()
        if not self._series and not self._alert_history:
            return MetricsDashboard.empty(now)
        system = {
            "memory_usage": self.current_value("memory_usage") or 0.0,
            "uptime_seconds": self.current_value("uptime_seconds") or 0.0,
            "api_response_time_avg": self.aggregate("api_response_time", AggregateFn.AVG),
            "api_response_time_p95": self.aggregate("api_response_time", AggregateFn.P95),
            "error_rate": self.current_value("error_rate") or 0.0,
        }
        return MetricsDashboard(
            generated_at=now,
            user_metrics=self._group(USER_METRICS),
            health_metrics=self._group(HEALTH_METRICS),
            ai_metrics=self._group(AI_METRICS),
            system_metrics=system,
            slos=self.all_slo_statuses(),
            alerts=self.recent_alerts(),
        )
