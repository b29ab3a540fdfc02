"""Tests for SLO evaluation and threshold alert rules."""

import pytest

from vigilpy.adapters.clock import ManualClock
from vigilpy.adapters.scheduling import ManualScheduler
from vigilpy.core.config import DEFAULT_ALERT_RULES, DEFAULT_SLOS, MetricsConfig
from vigilpy.core.metrics import MetricsStore
from vigilpy.core.models import Severity
from vigilpy.core.slo import (
    AlertCondition,
    AlertRule,
    Comparison,
    HealthStatus,
    SLOConfig,
    SLOIndicator,
    classify,
    error_budget,
)

ERROR_RATE_RULE = AlertRule(
    id="high_error_rate",
    name="High Error Rate",
    description="Error rate exceeds 5%",
    condition=AlertCondition("error_rate", Comparison.GT, 5),
    severity=Severity.HIGH,
    cooldown=300,
)


@pytest.fixture
def slo_store(clock: ManualClock, scheduler: ManualScheduler) -> MetricsStore:
    """Store with the default SLOs and the error-rate rule."""
    return MetricsStore(
        clock,
        scheduler,
        MetricsConfig(slos=DEFAULT_SLOS, alert_rules=(ERROR_RATE_RULE,)),
    )


class TestClassification:
    """Tests for SLO status and error budget arithmetic."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    @pytest.mark.parametrize(
        ("current", "expected"),
        [
            (99.95, HealthStatus.HEALTHY),
            (99.9, HealthStatus.HEALTHY),
            (90.0, HealthStatus.WARNING),
            (89.0, HealthStatus.CRITICAL),
        ],
    )
    def test_classify_against_target(
        self, current: float, expected: HealthStatus
    ) -> None:
        """Healthy at target, warning within 90% of it, critical below."""
        assert classify(current, 99.9) is expected

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_error_budget_never_negative(self) -> None:
        """Error budget is clamped at zero and rounded to cents."""
        assert error_budget(100.0, 99.9) == 0.1
        assert error_budget(50.0, 99.9) == 0.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_comparison_operators(self) -> None:
        """Each comparison applies its operator."""
        assert Comparison.GT.apply(2, 1)
        assert Comparison.GTE.apply(1, 1)
        assert Comparison.LT.apply(1, 2)
        assert Comparison.LTE.apply(2, 2)
        assert Comparison.EQ.apply(3, 3)
        assert Comparison.NE.apply(3, 4)

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_condition_renders_expression(self) -> None:
        """Conditions render as metric, operator and threshold."""
        assert str(ERROR_RATE_RULE.condition) == "error_rate > 5"


class TestSLOStatus:
    """Tests for SLO checks against recorded metrics."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_availability_without_traffic_is_healthy(
        self, slo_store: MetricsStore
    ) -> None:
        """No requests in the window count as fully available."""
        status = slo_store.check_slo("api_availability")
        assert status is not None
        assert status.current == 100.0
        assert status.status is HealthStatus.HEALTHY

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_availability_from_request_counts(self, slo_store: MetricsStore) -> None:
        """Availability is successful over total requests in the window."""
        for i in range(10):
            slo_store.record("api_requests_total", 1)
            if i < 9:
                slo_store.record("api_requests_successful", 1)
        status = slo_store.check_slo("api_availability")
        assert status is not None
        assert status.current == pytest.approx(90.0)
        assert status.status is HealthStatus.WARNING
        assert status.error_budget == 0.0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_latency_slo_degrades_past_threshold(
        self, slo_store: MetricsStore
    ) -> None:
        """A p95 50% over the threshold scores 50."""
        slo_store.record_histogram("api_response_time", 3000)
        status = slo_store.check_slo("api_latency_p95")
        assert status is not None
        assert status.current == pytest.approx(50.0)
        assert status.status is HealthStatus.CRITICAL

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_error_rate_slo(self, slo_store: MetricsStore) -> None:
        """Error rate SLO is 100 minus the average error rate."""
        slo_store.set_gauge("error_rate", 0.5)
        status = slo_store.check_slo("error_rate")
        assert status is not None
        assert status.current == pytest.approx(99.5)

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_unknown_slo_is_none(self, slo_store: MetricsStore) -> None:
        """Unknown SLOs are reported as None."""
        assert slo_store.check_slo("missing") is None

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_evaluate_counts_violations(
        self, slo_store: MetricsStore, clock: ManualClock
    ) -> None:
        """Every evaluation below target counts one violation."""
        slo_store.set_gauge("error_rate", 5)
        slo_store.evaluate_slos()
        statuses = {s.name: s for s in slo_store.evaluate_slos()}
        assert statuses["error_rate"].violations == 2
        assert statuses["error_rate"].last_violation == clock.time()
        assert statuses["api_availability"].violations == 0

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_add_slo(self, metrics: MetricsStore) -> None:
        """Custom throughput SLOs average their metric."""
        metrics.add_slo(
            SLOConfig(
                name="quality",
                description="Response quality",
                target=85,
                window_seconds=3600,
                indicator=SLOIndicator.THROUGHPUT,
                metric="ai_response_quality",
            )
        )
        metrics.record("ai_response_quality", 80)
        metrics.record("ai_response_quality", 100)
        statuses = metrics.all_slo_statuses()
        assert [s.name for s in statuses] == ["quality"]
        assert statuses[0].current == 90


class TestAlertRules:
    """Tests for alert rule evaluation."""

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_rule_fires_when_condition_holds(self, slo_store: MetricsStore) -> None:
        """A holding condition fires one alert with a rendered message."""
        slo_store.set_gauge("error_rate", 7)
        fired = slo_store.evaluate_alerts()
        assert len(fired) == 1
        assert fired[0].message == "High Error Rate: error_rate > 5 (current: 7)"
        assert fired[0].severity is Severity.HIGH
        assert slo_store.alert_history("high_error_rate") == fired

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_rule_does_not_fire_below_threshold(
        self, slo_store: MetricsStore
    ) -> None:
        """A condition that does not hold fires nothing."""
        slo_store.set_gauge("error_rate", 5)
        assert slo_store.evaluate_alerts() == []

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_cooldown_suppresses_refiring(
        self, slo_store: MetricsStore, clock: ManualClock
    ) -> None:
        """A rule is skipped until its cooldown has elapsed."""
        slo_store.set_gauge("error_rate", 7)
        slo_store.evaluate_alerts()
        clock.advance(299)
        assert slo_store.evaluate_alerts() == []
        clock.advance(1)
        assert len(slo_store.evaluate_alerts()) == 1
        assert len(slo_store.alert_history("high_error_rate")) == 2

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_disabled_rule_never_fires(self, metrics: MetricsStore) -> None:
        """Disabled rules are not evaluated."""
        metrics.add_alert_rule(
            AlertRule(
                id="off",
                name="Off",
                description="",
                condition=AlertCondition("error_rate", Comparison.GT, 0),
                severity=Severity.LOW,
                enabled=False,
            )
        )
        metrics.set_gauge("error_rate", 50)
        assert metrics.evaluate_alerts() == []

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_recent_alerts_newest_first(
        self, slo_store: MetricsStore, clock: ManualClock
    ) -> None:
        """recent_alerts lists alerts within the window, newest first."""
        slo_store.set_gauge("error_rate", 7)
        slo_store.evaluate_alerts()
        clock.advance(600)
        slo_store.evaluate_alerts()
        alerts = slo_store.recent_alerts()
        assert len(alerts) == 2
        assert alerts[0].timestamp > alerts[1].timestamp
        clock.advance(25 * 3600)
        assert slo_store.recent_alerts() == []

    @pytest.mark.tier(1)
    async def test_scheduled_evaluation_fires_alerts(
        self, slo_store: MetricsStore, scheduler: ManualScheduler
    ) -> None:
        """The evaluation job fires rules every alert interval."""
        slo_store.set_gauge("error_rate", 9)
        slo_store.start()
        await scheduler.advance(60)
        assert len(slo_store.alert_history("high_error_rate")) == 1

    @pytest.mark.core
    @pytest.mark.tier(0)
    def test_default_rules_are_configured(self) -> None:
        """The default rule set covers the production alerts."""
        assert {r.id for r in DEFAULT_ALERT_RULES} == {
            "high_error_rate",
            "slow_api_responses",
            "high_memory_usage",
            "ai_cost_spike",
            "health_data_sync_failure",
        }
