"""vigilpy: in-process observability and cost control for AI-backed services.

Example:
    ```python
    from vigilpy import AIUsage, ObservabilityCore, Tier

    core = ObservabilityCore()
    core.start()

    async def call(selection):
        reply = await client.complete(selection.model, prompt)
        return AIUsage(response=reply.text, tokens=reply.usage.total_tokens)

    result = await core.guarded_ai_call(Tier.LEVEL2, 1500, call)
    ```
"""

from vigilpy.adapters import (
    AsyncioScheduler,
    HttpxProbe,
    ManualClock,
    ManualScheduler,
    MetricsLogHandler,
    PsutilProcessStats,
    SQLiteProbe,
    SystemClock,
)
from vigilpy.core.config import (
    BudgetConfig,
    CoreConfig,
    CostPolicy,
    MetricsConfig,
    ProviderPolicy,
    SecurityThresholds,
)
from vigilpy.core.costs import CostLedger, ProviderSelection
from vigilpy.core.errors import (
    AllFallbacksFailedError,
    CircuitOpenError,
    ConfigurationError,
    OperationTimeoutError,
    VigilError,
)
from vigilpy.core.metrics import AggregateFn, MetricsStore
from vigilpy.core.models import (
    BudgetPeriod,
    CircuitState,
    EventStatus,
    MetricKind,
    MetricSample,
    SecurityEventType,
    Severity,
    SpanStatus,
    SyntheticTestType,
    Tier,
    TraceSpan,
)
from vigilpy.core.resilience import (
    CircuitBreakerRegistry,
    CircuitOptions,
    DegradationController,
    with_timeout,
    with_timeout_all,
)
from vigilpy.core.security import SecurityDetector
from vigilpy.core.synthetic import SyntheticTestRunner
from vigilpy.core.tracing import TraceQuery, TracingStore
from vigilpy.hub import AIUsage, GuardedCallResult, ObservabilityCore

__all__ = [
    "AIUsage",
    "AggregateFn",
    "AllFallbacksFailedError",
    "AsyncioScheduler",
    "BudgetConfig",
    "BudgetPeriod",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitOptions",
    "CircuitState",
    "ConfigurationError",
    "CoreConfig",
    "CostLedger",
    "CostPolicy",
    "DegradationController",
    "EventStatus",
    "GuardedCallResult",
    "HttpxProbe",
    "ManualClock",
    "ManualScheduler",
    "MetricKind",
    "MetricSample",
    "MetricsConfig",
    "MetricsLogHandler",
    "MetricsStore",
    "ObservabilityCore",
    "OperationTimeoutError",
    "ProviderPolicy",
    "PsutilProcessStats",
    "ProviderSelection",
    "SQLiteProbe",
    "SecurityDetector",
    "SecurityEventType",
    "SecurityThresholds",
    "Severity",
    "SpanStatus",
    "SyntheticTestRunner",
    "SyntheticTestType",
    "SystemClock",
    "Tier",
    "TraceQuery",
    "TraceSpan",
    "TracingStore",
    "VigilError",
    "with_timeout",
    "with_timeout_all",
]
