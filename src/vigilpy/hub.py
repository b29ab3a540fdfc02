"""ObservabilityCore: the core components wired to their runtime adapters."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from vigilpy.adapters.clock import SystemClock
from vigilpy.adapters.probes import HttpxProbe, SQLiteProbe
from vigilpy.adapters.process import PsutilProcessStats
from vigilpy.adapters.scheduling import AsyncioScheduler
from vigilpy.core.config import CoreConfig, default_synthetic_tests
from vigilpy.core.costs import CostDashboard, CostLedger, ProviderSelection
from vigilpy.core.encoding.traces import ExportFormat
from vigilpy.core.errors import OperationTimeoutError
from vigilpy.core.metrics import MetricsDashboard, MetricsStore
from vigilpy.core.models import (
    MetricKind,
    MetricSample,
    SecurityEventType,
    Severity,
    SpanContext,
    SpanStatus,
    Tier,
    TraceSpan,
    UsageRecord,
)
from vigilpy.core.ports import (
    ClockPort,
    DatabaseProbePort,
    HttpProbePort,
    ProcessStatsPort,
    SchedulerPort,
)
from vigilpy.core.resilience import (
    CircuitBreakerRegistry,
    DegradationController,
    with_timeout,
)
from vigilpy.core.security import SecurityDashboard, SecurityDetector
from vigilpy.core.slo import SLOStatus
from vigilpy.core.synthetic import HealthDashboard, SyntheticTestRunner
from vigilpy.core.tracing import TracingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AIUsage:
    """What a provider call reports back.

    Attributes:
        response: The provider's response, passed through untouched.
        tokens: Tokens consumed.
        cost: Dollars spent; derived from the model price when omitted.
    """

    response: Any
    tokens: int = 0
    cost: float | None = None


@dataclass(frozen=True)
class GuardedCallResult:
    selection: ProviderSelection
    response: Any
    tokens: int
    cost: float
    latency_ms: float
    span_id: str
    fallback: bool = False


class ObservabilityCore:
    """Entry point for the request-handling code around the core.

    Components are public attributes; the methods here are the ingress and
    egress contracts plus ``guarded_ai_call``, which performs the whole
    select, trace, guard and record sequence for one AI request.

    Args:
        config: Core configuration (default: ``CoreConfig()``).
        clock: Time source shared by every component.
        scheduler: Scheduler shared by every component's periodic jobs.
        http_probe: Probe for HTTP-like synthetic tests.
        database_probe: Probe for database synthetic tests.
        process_stats: Source of the system gauges (default: psutil on
            the current process).
    """

    def __init__(
        self,
        config: CoreConfig | None = None,
        clock: ClockPort | None = None,
        scheduler: SchedulerPort | None = None,
        http_probe: HttpProbePort | None = None,
        database_probe: DatabaseProbePort | None = None,
        process_stats: ProcessStatsPort | None = None,
    ) -> None:
        self.config = config or CoreConfig()
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or AsyncioScheduler()
        self._owned_http_probe = HttpxProbe() if http_probe is None else None
        self.metrics = MetricsStore(
            self.clock,
            self.scheduler,
            self.config.metrics,
            process_stats=process_stats or PsutilProcessStats(),
        )
        self.tracing = TracingStore(
            self.clock, self.config.service_name, self.config.max_traces
        )
        self.security = SecurityDetector(self.clock, self.scheduler, self.config.security)
        self.costs = CostLedger(self.clock, self.scheduler, self.config.costs)
        self.synthetic = SyntheticTestRunner(
            self.clock,
            self.scheduler,
            http_probe=http_probe or self._owned_http_probe,
            database_probe=database_probe or SQLiteProbe(self.config.database_path),
        )
        self.circuit_breakers = CircuitBreakerRegistry(self.clock)
        self.degradation = DegradationController()

        if self.config.register_default_tests:
            for spec in default_synthetic_tests(self.config.api_base_url):
                self.synthetic.add_test(
                    spec.name,
                    spec.type,
                    spec.config,
                    spec.schedule,
                    enabled=spec.enabled,
                    description=spec.description,
                    tags=spec.tags,
                )

    # --- lifecycle ---

    def start(self) -> None:
        """Register every periodic job on the scheduler."""
        self.metrics.start()
        self.security.start()
        self.costs.start()
        self.synthetic.start()
        logger.info("Observability core started for %s", self.config.service_name)

    async def shutdown(self) -> None:
        """Cancel every periodic job and close owned probes."""
        self.synthetic.shutdown()
        self.costs.shutdown()
        self.security.shutdown()
        self.metrics.shutdown()
        self.scheduler.shutdown()
        if self._owned_http_probe is not None:
            await self._owned_http_probe.aclose()
        logger.info("Observability core shut down")

    def reset(self) -> None:
        """Administrative reset of all recorded state."""
        self.metrics.reset()
        self.tracing.reset()
        self.security.reset()
        self.costs.reset()
        self.synthetic.reset()
        self.circuit_breakers.reset_all()
        self.degradation.reset_all()

    # --- ingress ---

    def record_metric(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
        kind: MetricKind = MetricKind.GAUGE,
    ) -> MetricSample:
        return self.metrics.record(name, value, tags, kind)

    def start_span(
        self,
        operation: str,
        parent: SpanContext | TraceSpan | None = None,
        tags: dict[str, Any] | None = None,
    ) -> TraceSpan:
        return self.tracing.start_span(operation, parent, tags)

    def finish_span(
        self,
        span_id: str,
        status: SpanStatus = SpanStatus.SUCCESS,
        error: str | None = None,
        extra_tags: dict[str, Any] | None = None,
    ) -> TraceSpan | None:
        return self.tracing.finish_span(span_id, status, error, extra_tags)

    def record_security_event(
        self,
        type: SecurityEventType,
        severity: Severity,
        ip_address: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        user_id: str | None = None,
        user_agent: str | None = None,
        endpoint: str | None = None,
    ) -> str:
        return self.security.record(
            type,
            severity,
            ip_address,
            description,
            metadata,
            user_id=user_id,
            user_agent=user_agent,
            endpoint=endpoint,
        )

    def record_usage(
        self,
        provider: str,
        model: str,
        tokens: int,
        cost: float,
        requests: int = 1,
        user_id: str | None = None,
    ) -> UsageRecord:
        """Record spend in the ledger and mirror it into the metrics store."""
        record = self.costs.record_usage(provider, model, tokens, cost, requests, user_id)
        tags = {"provider": provider, "model": model}
        self.metrics.increment_counter("ai_tokens_total", tags, tokens)
        self.metrics.record_histogram("ai_cost", cost, tags)
        self.metrics.set_gauge("ai_cost_hourly", self._hourly_cost())
        return record

    def _hourly_cost(self) -> float:
        return sum(p.cost for p in self.costs.provider_breakdown(window_seconds=3600))

    # --- egress ---

    def health_dashboard(self) -> HealthDashboard:
        return self.synthetic.health_dashboard()

    def security_dashboard(self) -> SecurityDashboard:
        return self.security.security_dashboard()

    def cost_dashboard(self) -> CostDashboard:
        return self.costs.cost_dashboard()

    def metrics_dashboard(self) -> MetricsDashboard:
        return self.metrics.dashboard()

    def all_slo_statuses(self) -> list[SLOStatus]:
        return self.metrics.all_slo_statuses()

    def export_traces(
        self, format: ExportFormat | str = ExportFormat.OPENTELEMETRY
    ) -> list[dict[str, Any]]:
        return self.tracing.export_traces(format)

    # --- selection and resilience ---

    def select_provider(
        self,
        tier: Tier | str,
        estimated_tokens: int,
        user_budget: float | None = None,
    ) -> ProviderSelection:
        return self.costs.select_provider(tier, estimated_tokens, user_budget)

    with_timeout = staticmethod(with_timeout)

    def _price(self, selection: ProviderSelection) -> float:
        policy = self.config.costs.providers.get(selection.provider)
        if policy is not None and selection.model in policy.cost_per_token:
            return policy.cost_per_token[selection.model]
        return self.config.costs.default_cost_per_token

    async def guarded_ai_call(
        self,
        tier: Tier | str,
        estimated_tokens: int,
        invoke: Callable[[ProviderSelection], Awaitable[AIUsage]],
        *,
        user_budget: float | None = None,
        user_id: str | None = None,
        timeout: float = 30.0,
        fallback: Callable[[], Awaitable[AIUsage]] | None = None,
        parent: SpanContext | TraceSpan | None = None,
    ) -> GuardedCallResult:
        """Run one AI request through selection, tracing, guards and ledger.

        The provider call runs inside the circuit breaker named
        ``ai:<provider>`` and under ``timeout`` seconds. When ``fallback``
        answers instead, the call is counted in ``ai_fallbacks_total``, the
        span is tagged ``fallback`` and no usage is billed to the provider.

        Raises:
            CircuitOpenError: The provider's circuit is OPEN and no fallback
                was given.
            OperationTimeoutError: The call timed out and no fallback was given.
            Exception: Whatever ``invoke`` raised, when no fallback was given.
        """
        selection = self.select_provider(tier, estimated_tokens, user_budget)
        tier_value = Tier(tier).value
        span = self.tracing.start_span(
            "ai.request",
            parent,
            {
                "targetService": selection.provider,
                "model": selection.model,
                "tier": tier_value,
            },
        )
        tags = {"provider": selection.provider, "model": selection.model}
        started = self.clock.time()

        def elapsed_ms() -> float:
            return max(0.0, (self.clock.time() - started) * 1000)

        answered_by_fallback = False

        async def run_fallback() -> AIUsage:
            nonlocal answered_by_fallback
            answered_by_fallback = True
            return await fallback()

        try:
            usage = await self.circuit_breakers.execute(
                f"ai:{selection.provider}",
                lambda: with_timeout(invoke(selection), timeout),
                fallback=run_fallback if fallback is not None else None,
            )
        except OperationTimeoutError as exc:
            self.metrics.increment_counter("ai_errors_total", tags)
            self.metrics.record_histogram("ai_response_time", elapsed_ms(), tags)
            self.tracing.finish_span(span.span_id, SpanStatus.TIMEOUT, str(exc))
            raise
        except Exception as exc:
            self.metrics.increment_counter("ai_errors_total", tags)
            self.metrics.record_histogram("ai_response_time", elapsed_ms(), tags)
            self.tracing.finish_span(span.span_id, SpanStatus.ERROR, str(exc))
            raise

        latency = elapsed_ms()
        if answered_by_fallback:
            # The selected provider did not answer; nothing is billed to it.
            cost = usage.cost or 0.0
            self.metrics.increment_counter("ai_fallbacks_total", tags)
            logger.info(
                "AI request to %s:%s answered by fallback",
                selection.provider,
                selection.model,
            )
        else:
            cost = (
                usage.cost
                if usage.cost is not None
                else usage.tokens * self._price(selection)
            )
            self.metrics.increment_counter("ai_requests_total", tags)
            self.metrics.record_histogram("ai_response_time", latency, tags)
            if usage.tokens or cost:
                self.record_usage(
                    selection.provider,
                    selection.model,
                    usage.tokens,
                    cost,
                    user_id=user_id,
                )
        self.tracing.finish_span(
            span.span_id,
            extra_tags={
                "tokens": usage.tokens,
                "cost": cost,
                "fallback": answered_by_fallback,
            },
        )
        return GuardedCallResult(
            selection=selection,
            response=usage.response,
            tokens=usage.tokens,
            cost=cost,
            latency_ms=latency,
            span_id=span.span_id,
            fallback=answered_by_fallback,
        )
