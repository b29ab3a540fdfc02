"""Core domain models for the observability and cost-control core."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MetricKind(str, Enum):
    """Kind of a recorded metric sample."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"


class Severity(str, Enum):
    """Severity shared by security events, alerts and cost alerts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MetricSample:
    """A single metric measurement.

    Attributes:
        name: Metric name (e.g., api_response_time).
        value: The metric value.
        timestamp: Unix timestamp in seconds.
        tags: Key-value pairs for metric dimensions.
        kind: Counter, gauge, histogram or summary.
    """

    name: str
    value: float
    timestamp: float
    tags: dict[str, str] = field(default_factory=dict)
    kind: MetricKind = MetricKind.GAUGE


class SpanStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class SpanContext:
    """Identifiers a child span needs from its parent."""

    trace_id: str
    span_id: str


@dataclass
class TraceSpan:
    """A timed unit of work.

    Span times are epoch milliseconds and ``duration`` is in milliseconds.
    A span is created unfinished and mutated exactly once by
    ``TracingStore.finish_span``.
    """

    trace_id: str
    span_id: str
    operation: str
    start_time: float
    parent_span_id: str | None = None
    tags: dict[str, Any] = field(default_factory=dict)
    end_time: float | None = None
    duration: float | None = None
    status: SpanStatus = SpanStatus.SUCCESS
    error: str | None = None

    @property
    def context(self) -> SpanContext:
        return SpanContext(trace_id=self.trace_id, span_id=self.span_id)

    @property
    def finished(self) -> bool:
        return self.end_time is not None


class SecurityEventType(str, Enum):
    AUTH_FAILURE = "auth_failure"
    BRUTE_FORCE = "brute_force"
    SUSPICIOUS_IP = "suspicious_ip"
    DATA_ACCESS = "data_access"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    UNUSUAL_ACTIVITY = "unusual_activity"


class EventStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


@dataclass
class SecurityEvent:
    """A recorded security event.

    Only ``status`` changes after creation.
    """

    id: str
    type: SecurityEventType
    severity: Severity
    timestamp: float
    ip_address: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    user_agent: str | None = None
    endpoint: str | None = None
    status: EventStatus = EventStatus.OPEN


class SyntheticTestType(str, Enum):
    HTTP = "http"
    API = "api"
    DATABASE = "database"
    EXTERNAL_SERVICE = "external_service"


@dataclass(frozen=True)
class ProbeConfig:
    """What a synthetic test calls and what it expects back.

    Attributes:
        url: Target URL for HTTP-like probes.
        method: HTTP method.
        headers: Request headers.
        body: JSON request body.
        expected_status: Status code that counts as success.
        expected_response_time_ms: Latency ceiling for success.
        timeout_ms: Hard limit before the probe is abandoned.
    """

    url: str | None = None
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    expected_status: int = 200
    expected_response_time_ms: float = 5000.0
    timeout_ms: float = 10000.0


@dataclass
class SyntheticTest:
    id: str
    name: str
    type: SyntheticTestType
    config: ProbeConfig
    schedule: str | float
    enabled: bool = True
    description: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TestResult:
    """Outcome of one synthetic test run.

    Attributes:
        test_id: The test that produced this result.
        timestamp: Unix timestamp in seconds.
        success: Whether status and latency matched expectations.
        response_time_ms: Measured latency in milliseconds.
        status_code: HTTP status, if the probe got a response.
        error: Error message when the probe failed outright.
        metrics: Extra probe measurements.
    """

    __test__ = False

    test_id: str
    timestamp: float
    success: bool
    response_time_ms: float
    status_code: int | None = None
    error: str | None = None
    metrics: dict[str, float] = field(default_factory=dict)


class Tier(str, Enum):
    """Accuracy/cost class of an AI request."""

    LEVEL1 = "level1"
    LEVEL2 = "level2"


class BudgetPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class UsageRecord:
    timestamp: float
    provider: str
    model: str
    cost: float
    tokens: int
    requests: int = 1
    user_id: str | None = None


class CostAlertType(str, Enum):
    BUDGET_EXCEEDED = "budget_exceeded"
    SPIKE_DETECTED = "spike_detected"
    QUOTA_WARNING = "quota_warning"
    UNUSUAL_USAGE = "unusual_usage"


@dataclass
class CostAlert:
    id: str
    type: CostAlertType
    severity: Severity
    message: str
    threshold: float
    current_value: float
    timestamp: float
    subject: str = ""
    resolved: bool = False


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerStats:
    name: str
    state: CircuitState
    failures: int
    successes: int
    requests: int
    last_failure_time: float | None = None
    next_attempt_time: float | None = None
