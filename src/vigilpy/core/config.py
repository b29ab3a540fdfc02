"""Immutable configuration values for the core components.

Policy data (provider tables, budgets, thresholds, SLOs, alert rules) is
passed in as frozen dataclasses; runtime state lives in the components.
Defaults reproduce the production policy of the health backend.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from vigilpy.core.errors import ConfigurationError
from vigilpy.core.models import (
    BudgetPeriod,
    ProbeConfig,
    Severity,
    SyntheticTestType,
    Tier,
)
from vigilpy.core.slo import (
    AlertCondition,
    AlertRule,
    Comparison,
    SLOConfig,
    SLOIndicator,
)


def _frozen(mapping: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ProviderPolicy:
    """Models a provider offers per tier, and what they cost.

    Attributes:
        level1_models: Models eligible for level1 requests, in preference order.
        level2_models: Models eligible for level2 requests, in preference order.
        cost_per_token: Price in dollars per token, keyed by model.
        daily_token_limits: Daily token cap per model (quota warnings).
        bias: Score bonus added to every model of this provider.
    """

    level1_models: tuple[str, ...] = ()
    level2_models: tuple[str, ...] = ()
    cost_per_token: Mapping[str, float] = field(default_factory=_frozen)
    daily_token_limits: Mapping[str, int] = field(default_factory=_frozen)
    bias: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "level1_models", tuple(self.level1_models))
        object.__setattr__(self, "level2_models", tuple(self.level2_models))
        object.__setattr__(self, "cost_per_token", _frozen(self.cost_per_token))
        object.__setattr__(
            self, "daily_token_limits", _frozen(self.daily_token_limits)
        )

    def models_for(self, tier: Tier) -> tuple[str, ...]:
        return self.level1_models if tier is Tier.LEVEL1 else self.level2_models

    def tier_of(self, model: str) -> Tier:
        return Tier.LEVEL1 if model in self.level1_models else Tier.LEVEL2


@dataclass(frozen=True)
class BudgetConfig:
    name: str
    period: BudgetPeriod
    limit: float
    alert_threshold: float = 80.0
    enabled: bool = True


DEFAULT_PROVIDERS: Mapping[str, ProviderPolicy] = _frozen(
    {
        "openai": ProviderPolicy(
            level1_models=("gpt-3.5-turbo", "gpt-3.5-turbo-16k"),
            level2_models=("gpt-4", "gpt-4-turbo-preview", "gpt-4-32k"),
            cost_per_token={
                "gpt-3.5-turbo": 0.00002,
                "gpt-3.5-turbo-16k": 0.00003,
                "gpt-4": 0.00006,
                "gpt-4-turbo-preview": 0.00010,
                "gpt-4-32k": 0.00012,
            },
            daily_token_limits={"gpt-3.5-turbo": 1_000_000, "gpt-4": 100_000},
            bias=10.0,
        ),
        "anthropic": ProviderPolicy(
            level1_models=("claude-3-haiku",),
            level2_models=("claude-3-sonnet", "claude-3-opus"),
            cost_per_token={
                "claude-3-haiku": 0.000025,
                "claude-3-sonnet": 0.000030,
                "claude-3-opus": 0.000150,
            },
            daily_token_limits={"claude-3-haiku": 500_000, "claude-3-sonnet": 200_000},
            bias=5.0,
        ),
    }
)

DEFAULT_BUDGETS: tuple[BudgetConfig, ...] = (
    BudgetConfig("Daily AI Costs", BudgetPeriod.DAILY, 50.0, 80.0),
    BudgetConfig("Weekly AI Costs", BudgetPeriod.WEEKLY, 300.0, 85.0),
    BudgetConfig("Monthly AI Costs", BudgetPeriod.MONTHLY, 1000.0, 90.0),
)


@dataclass(frozen=True)
class CostPolicy:
    """Provider tables and alerting rules for the cost ledger.

    Attributes:
        providers: Provider policies; iteration order breaks score ties.
        budgets: Budgets evaluated by the periodic budget check.
        default_provider: Provider used when no candidate matches a tier.
        default_model: Model used when no candidate matches a tier.
        default_cost_per_token: Price assumed for the default model.
        spike_multiplier: A cost above this multiple of the trailing-hour
            average is a spike.
        spike_min_cost: Spikes below this absolute amount are ignored.
        quota_warning_ratio: Fraction of a daily token cap that warns.
        ledger_size: Usage records kept per provider:model.
    """

    providers: Mapping[str, ProviderPolicy] = field(
        default_factory=lambda: DEFAULT_PROVIDERS
    )
    budgets: tuple[BudgetConfig, ...] = DEFAULT_BUDGETS
    default_provider: str = "openai"
    default_model: str = "gpt-3.5-turbo"
    default_cost_per_token: float = 0.00002
    spike_multiplier: float = 3.0
    spike_min_cost: float = 1.0
    quota_warning_ratio: float = 0.9
    ledger_size: int = 10_000

    def __post_init__(self) -> None:
        object.__setattr__(self, "providers", _frozen(self.providers))
        object.__setattr__(self, "budgets", tuple(self.budgets))
        for provider, policy in self.providers.items():
            for model in policy.level1_models + policy.level2_models:
                if model not in policy.cost_per_token:
                    raise ConfigurationError(
                        f"No cost_per_token configured for {provider}/{model}"
                    )


@dataclass(frozen=True)
class AnomalyPattern:
    """A longer-horizon pattern evaluated by the periodic security sweep.

    Attributes:
        name: Pattern identifier, recorded in synthesized event metadata.
        description: Human-readable description.
        event_types: Event types (values) counted toward the threshold.
        group_by: "ip" or "user".
        threshold: Count within ``window_seconds`` that triggers.
        window_seconds: Look-back window.
        severity: Severity of the synthesized event.
        enabled: Disabled patterns are skipped.
    """

    name: str
    description: str
    event_types: tuple[str, ...]
    group_by: str
    threshold: int
    window_seconds: float
    severity: Severity
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.group_by not in ("ip", "user"):
            raise ConfigurationError(
                f"AnomalyPattern {self.name}: group_by must be 'ip' or 'user'"
            )


@dataclass(frozen=True)
class SecurityThresholds:
    login_attempts_per_ip: int = 10
    login_window_seconds: float = 15 * 60
    unusual_endpoints_per_user: int = 15
    requests_per_ip: int = 1000
    activity_window_seconds: float = 60 * 60
    activity_retention_seconds: float = 24 * 60 * 60
    event_retention_seconds: float = 30 * 24 * 60 * 60
    patterns: tuple[AnomalyPattern, ...] = (
        AnomalyPattern(
            name="data_exfiltration",
            description="Potential data exfiltration pattern",
            event_types=("data_access",),
            group_by="user",
            threshold=50,
            window_seconds=30 * 60,
            severity=Severity.CRITICAL,
        ),
        AnomalyPattern(
            name="privilege_escalation_burst",
            description="Repeated privilege escalation attempts",
            event_types=("privilege_escalation",),
            group_by="user",
            threshold=3,
            window_seconds=60 * 60,
            severity=Severity.CRITICAL,
        ),
    )


DEFAULT_SLOS: tuple[SLOConfig, ...] = (
    SLOConfig(
        name="api_availability",
        description="API should be available 99.9% of the time",
        target=99.9,
        window_seconds=86400,
        indicator=SLOIndicator.AVAILABILITY,
    ),
    SLOConfig(
        name="api_latency_p95",
        description="P95 API response time should be under 2 seconds",
        target=95.0,
        window_seconds=3600,
        indicator=SLOIndicator.LATENCY,
        threshold=2000.0,
    ),
    SLOConfig(
        name="error_rate",
        description="Error rate should be under 1%",
        target=99.0,
        window_seconds=3600,
        indicator=SLOIndicator.ERROR_RATE,
    ),
    SLOConfig(
        name="ai_response_quality",
        description="AI response quality should be above 85%",
        target=85.0,
        window_seconds=7200,
        indicator=SLOIndicator.THROUGHPUT,
    ),
    SLOConfig(
        name="health_data_sync_success",
        description="Health data sync success rate should be above 95%",
        target=95.0,
        window_seconds=86400,
        indicator=SLOIndicator.AVAILABILITY,
    ),
)

DEFAULT_ALERT_RULES: tuple[AlertRule, ...] = (
    AlertRule(
        id="high_error_rate",
        name="High Error Rate",
        description="Error rate exceeds 5% for 5 minutes",
        condition=AlertCondition("error_rate", Comparison.GT, 5),
        severity=Severity.HIGH,
        channels=("email", "slack"),
        cooldown=300,
    ),
    AlertRule(
        id="slow_api_responses",
        name="Slow API Responses",
        description="P95 response time exceeds 3 seconds",
        condition=AlertCondition("api_response_time_p95", Comparison.GT, 3000),
        severity=Severity.MEDIUM,
        channels=("slack",),
        cooldown=600,
    ),
    AlertRule(
        id="high_memory_usage",
        name="High Memory Usage",
        description="Memory usage exceeds 90%",
        condition=AlertCondition("memory_usage", Comparison.GT, 90),
        severity=Severity.HIGH,
        channels=("email", "slack"),
        cooldown=300,
    ),
    AlertRule(
        id="ai_cost_spike",
        name="AI Cost Spike",
        description="AI costs spike above threshold",
        condition=AlertCondition("ai_cost_hourly", Comparison.GT, 100),
        severity=Severity.MEDIUM,
        channels=("email",),
        cooldown=1800,
    ),
    AlertRule(
        id="health_data_sync_failure",
        name="Health Data Sync Failures",
        description="Health data sync failure rate exceeds 10%",
        condition=AlertCondition("health_sync_error_rate", Comparison.GT, 10),
        severity=Severity.MEDIUM,
        channels=("slack",),
        cooldown=900,
    ),
)


@dataclass(frozen=True)
class MetricsConfig:
    buffer_size: int = 1000
    alert_history_size: int = 100
    collect_interval: float = 30.0
    alert_interval: float = 60.0
    slos: tuple[SLOConfig, ...] = DEFAULT_SLOS
    alert_rules: tuple[AlertRule, ...] = DEFAULT_ALERT_RULES


@dataclass(frozen=True)
class SyntheticTestSpec:
    """Definition of a synthetic test before it is registered."""

    name: str
    type: SyntheticTestType
    config: ProbeConfig
    schedule: str | float
    enabled: bool = True
    description: str = ""
    tags: tuple[str, ...] = ()


def default_synthetic_tests(base_url: str) -> tuple[SyntheticTestSpec, ...]:
    """The health-backend probes, pointed at ``base_url``."""
    base_url = base_url.rstrip("/")
    return (
        SyntheticTestSpec(
            name="Health Check Endpoint",
            description="Verify main health check endpoint is responding",
            type=SyntheticTestType.HTTP,
            config=ProbeConfig(
                url=f"{base_url}/health",
                expected_status=200,
                expected_response_time_ms=1000,
                timeout_ms=5000,
            ),
            schedule="*/2 * * * *",
            tags=("health", "critical"),
        ),
        SyntheticTestSpec(
            name="User Authentication API",
            description="Test user authentication endpoint",
            type=SyntheticTestType.API,
            config=ProbeConfig(
                url=f"{base_url}/auth/login",
                method="POST",
                headers={"Content-Type": "application/json"},
                body={"email": "test@example.com", "password": "testpass"},
                # Test credentials are expected to be rejected.
                expected_status=401,
                expected_response_time_ms=2000,
                timeout_ms=10000,
            ),
            schedule="*/5 * * * *",
            tags=("auth", "api"),
        ),
        SyntheticTestSpec(
            name="AI Prompt Optimization API",
            description="Test AI prompt optimization endpoint",
            type=SyntheticTestType.API,
            config=ProbeConfig(
                url=f"{base_url}/ai-prompt-optimization/templates",
                expected_status=200,
                expected_response_time_ms=3000,
                timeout_ms=15000,
            ),
            schedule="*/10 * * * *",
            tags=("ai", "api"),
        ),
        SyntheticTestSpec(
            name="Performance Metrics API",
            description="Test performance monitoring endpoint",
            type=SyntheticTestType.API,
            config=ProbeConfig(
                url=f"{base_url}/performance/health",
                expected_status=200,
                expected_response_time_ms=2000,
                timeout_ms=10000,
            ),
            schedule="*/15 * * * *",
            tags=("performance", "monitoring"),
        ),
        SyntheticTestSpec(
            name="Database Connectivity",
            description="Test database connection and basic query",
            type=SyntheticTestType.DATABASE,
            config=ProbeConfig(expected_response_time_ms=500, timeout_ms=5000),
            schedule="*/5 * * * *",
            tags=("database", "critical"),
        ),
    )


@dataclass(frozen=True)
class CoreConfig:
    """Top-level configuration for ObservabilityCore.

    Attributes:
        service_name: Reported in span tags and trace exports.
        api_base_url: Base URL the default synthetic tests probe.
        database_path: SQLite database the connectivity probe opens.
        max_traces: Traces kept before oldest-first eviction.
        register_default_tests: Register the default synthetic tests.
    """

    service_name: str = "health-ai-backend"
    api_base_url: str = "http://localhost:3000"
    database_path: str = ":memory:"
    max_traces: int = 1000
    register_default_tests: bool = True
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    security: SecurityThresholds = field(default_factory=SecurityThresholds)
    costs: CostPolicy = field(default_factory=CostPolicy)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CoreConfig":
        """Build a config from ``VIGIL_*`` environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            service_name=env.get("VIGIL_SERVICE_NAME", defaults.service_name),
            api_base_url=env.get("VIGIL_API_BASE_URL", defaults.api_base_url),
            database_path=env.get("VIGIL_DATABASE_PATH", defaults.database_path),
        )
