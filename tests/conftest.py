"""Shared test fixtures for all test modules."""

from datetime import datetime

import pytest

from vigilpy.adapters.clock import ManualClock
from vigilpy.adapters.scheduling import ManualScheduler
from vigilpy.core.config import MetricsConfig
from vigilpy.core.costs import CostLedger
from vigilpy.core.metrics import MetricsStore
from vigilpy.core.resilience import CircuitBreakerRegistry, DegradationController
from vigilpy.core.security import SecurityDetector
from vigilpy.core.tracing import TracingStore

# Local noon, so day/week/month boundaries are hours away in any timezone.
START = datetime(2024, 5, 15, 12, 0, 0).timestamp()


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at local noon on a Wednesday."""
    return ManualClock(START)


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    """Scheduler that only runs jobs when the test advances time."""
    return ManualScheduler(clock)


@pytest.fixture
def metrics(clock: ManualClock, scheduler: ManualScheduler) -> MetricsStore:
    """Metrics store without default SLOs or alert rules."""
    return MetricsStore(clock, scheduler, MetricsConfig(slos=(), alert_rules=()))


@pytest.fixture
def tracing(clock: ManualClock) -> TracingStore:
    return TracingStore(clock, service_name="test-service")


@pytest.fixture
def security(clock: ManualClock, scheduler: ManualScheduler) -> SecurityDetector:
    return SecurityDetector(clock, scheduler)


@pytest.fixture
def ledger(clock: ManualClock, scheduler: ManualScheduler) -> CostLedger:
    return CostLedger(clock, scheduler)


@pytest.fixture
def breakers(clock: ManualClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock)


@pytest.fixture
def degradation() -> DegradationController:
    return DegradationController()
