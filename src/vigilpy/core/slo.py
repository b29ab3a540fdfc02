"""SLO and alert-rule value types.

Alert conditions are built as values at configuration time and evaluated
against a metric's current value without any string parsing.
"""

import operator
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from vigilpy.core.models import Severity


class SLOIndicator(str, Enum):
    AVAILABILITY = "availability"
    LATENCY = "latency"
    ERROR_RATE = "error_rate"
    THROUGHPUT = "throughput"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SLOConfig:
    """A service level objective.

    Attributes:
        name: SLO identifier.
        description: Human-readable description.
        target: Target percentage (0-100).
        window_seconds: Aggregation window.
        indicator: How the current percentage is measured.
        threshold: Latency threshold in ms for latency SLOs.
        metric: Metric averaged by throughput SLOs. Defaults to ``name``.
    """

    name: str
    description: str
    target: float
    window_seconds: float
    indicator: SLOIndicator
    threshold: float | None = None
    metric: str | None = None


@dataclass(frozen=True)
class SLOStatus:
    name: str
    current: float
    target: float
    status: HealthStatus
    error_budget: float
    violations: int = 0
    last_violation: float | None = None


def classify(current: float, target: float) -> HealthStatus:
    """Healthy at or above target, warning within 90% of it, else critical."""
    if current >= target:
        return HealthStatus.HEALTHY
    if current >= target * 0.9:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


def error_budget(current: float, target: float) -> float:
    """Remaining error budget in percentage points, rounded to 2 decimals."""
    return round(max(0.0, 100 - target - (100 - current)), 2)


class Comparison(str, Enum):
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    EQ = "=="
    NE = "!="

    def apply(self, left: float, right: float) -> bool:
        return _OPERATORS[self](left, right)


_OPERATORS: dict[Comparison, Callable[[float, float], bool]] = {
    Comparison.GT: operator.gt,
    Comparison.GTE: operator.ge,
    Comparison.LT: operator.lt,
    Comparison.LTE: operator.le,
    Comparison.EQ: operator.eq,
    Comparison.NE: operator.ne,
}


@dataclass(frozen=True)
class AlertCondition:
    """``metric <operator> threshold``."""

    metric: str
    operator: Comparison
    threshold: float

    def holds(self, value: float) -> bool:
        return self.operator.apply(value, self.threshold)

    def __str__(self) -> str:
        return f"{self.metric} {self.operator.value} {self.threshold:g}"


@dataclass(frozen=True)
class AlertRule:
    """A threshold rule evaluated on a fixed interval.

    Attributes:
        id: Rule identifier, also the key of its alert history.
        name: Display name.
        description: Human-readable description.
        condition: The condition that fires the rule.
        severity: Severity of fired alerts.
        enabled: Disabled rules are never evaluated.
        channels: Notification channels (informational).
        cooldown: Seconds after a firing during which the rule is skipped.
    """

    id: str
    name: str
    description: str
    condition: AlertCondition
    severity: Severity
    enabled: bool = True
    channels: tuple[str, ...] = ()
    cooldown: float = 300.0


@dataclass(frozen=True)
class FiredAlert:
    """One entry in a rule's alert history."""

    rule_id: str
    rule_name: str
    severity: Severity
    message: str
    value: float
    timestamp: float
