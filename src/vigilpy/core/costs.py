"""Cost/usage ledger, budget alerts and provider selection.

Provider tables and budgets come from an immutable CostPolicy. Running
period totals are reset by a polling rollover check, so a reset can lag
the calendar boundary by up to one poll interval.
"""

import logging
import secrets
from collections import deque
from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from vigilpy.core.config import BudgetConfig, CostPolicy
from vigilpy.core.models import (
    BudgetPeriod,
    CostAlert,
    CostAlertType,
    Severity,
    Tier,
    UsageRecord,
)
from vigilpy.core.ports import ClockPort, SchedulerPort

logger = logging.getLogger(__name__)

ROLLOVER_JOB = "costs.rollover"
BUDGET_JOB = "costs.budgets"
ROLLOVER_INTERVAL = 60.0
BUDGET_INTERVAL = 15 * 60.0


def period_key(period: BudgetPeriod, timestamp: float) -> Hashable:
    """Identify the local-time period containing ``timestamp``.

    Days start at local midnight, weeks on Sunday and months on the 1st.
    """
    day = datetime.fromtimestamp(timestamp).date()
    if period is BudgetPeriod.DAILY:
        return day
    if period is BudgetPeriod.WEEKLY:
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return (day.year, day.month)


@dataclass(frozen=True)
class ProviderSelection:
    provider: str
    model: str
    estimated_cost: float
    reasoning: str


@dataclass(frozen=True)
class _Candidate:
    provider: str
    model: str
    cost: float
    score: float


@dataclass(frozen=True)
class BudgetStatus:
    name: str
    period: BudgetPeriod
    limit: float
    spent: float
    remaining: float
    alert_threshold: float
    enabled: bool

    @property
    def percent_used(self) -> float:
        return self.spent / self.limit * 100 if self.limit > 0 else 0.0


@dataclass(frozen=True)
class ProviderCost:
    provider: str
    model: str
    requests: int
    tokens: int
    cost: float
    avg_cost_per_request: float
    tier: Tier


@dataclass(frozen=True)
class CostTrendPoint:
    """Spend on one local calendar day; efficiency is cost per 1000 tokens."""

    date: str
    cost: float
    requests: int
    tokens: int
    efficiency: float


@dataclass(frozen=True)
class CostTotals:
    daily: float = 0.0
    weekly: float = 0.0
    monthly: float = 0.0


@dataclass(frozen=True)
class OptimizationOpportunity:
    description: str
    potential_savings: float
    priority: Severity


@dataclass(frozen=True)
class EfficiencyMetrics:
    """Cost efficiency over the retained ledger.

    Attributes:
        token_efficiency: Dollars per 1000 tokens.
        request_efficiency: Dollars per request.
        user_cost_average: Dollars per distinct user.
        provider_efficiency: Dollars per 1000 tokens, per provider.
        opportunities: Savings available by re-routing traffic.
    """

    token_efficiency: float = 0.0
    request_efficiency: float = 0.0
    user_cost_average: float = 0.0
    provider_efficiency: dict[str, float] = field(default_factory=dict)
    opportunities: list[OptimizationOpportunity] = field(default_factory=list)


@dataclass(frozen=True)
class CostDashboard:
    totals: CostTotals = field(default_factory=CostTotals)
    budgets: list[BudgetStatus] = field(default_factory=list)
    provider_breakdown: list[ProviderCost] = field(default_factory=list)
    trends: list[CostTrendPoint] = field(default_factory=list)
    alerts: list[CostAlert] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, budgets: list[BudgetStatus] | None = None) -> "CostDashboard":
        return cls(budgets=list(budgets or []))


def _priority(savings: float) -> Severity:
    if savings > 100:
        return Severity.HIGH
    if savings > 10:
        return Severity.MEDIUM
    return Severity.LOW


class CostLedger:
    """Usage ledger with running totals, alerts and model selection.

    Args:
        clock: Time source for record timestamps and period boundaries.
        scheduler: Runs the rollover and budget checks once started.
        policy: Provider tables, default budgets and alert thresholds.
    """

    def __init__(
        self,
        clock: ClockPort,
        scheduler: SchedulerPort | None = None,
        policy: CostPolicy | None = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._policy = policy or CostPolicy()
        self._ledger: dict[str, deque[UsageRecord]] = {}
        self._budgets: dict[str, BudgetConfig] = {
            b.name: b for b in self._policy.budgets
        }
        self._alerts: dict[str, CostAlert] = {}
        self._alert_keys: dict[tuple[Hashable, ...], str] = {}
        self._totals = {period: 0.0 for period in BudgetPeriod}
        now = self._clock.time()
        self._period_keys = {period: period_key(period, now) for period in BudgetPeriod}

    @property
    def policy(self) -> CostPolicy:
        return self._policy

    # --- recording ---

    def record_usage(
        self,
        provider: str,
        model: str,
        tokens: int,
        cost: float,
        requests: int = 1,
        user_id: str | None = None,
    ) -> UsageRecord:
        """Append usage, add it to the period totals and check alerts.

        Raises:
            ValueError: If tokens, cost or requests is negative.
        """
        if tokens < 0 or cost < 0 or requests < 0:
            raise ValueError("tokens, cost and requests must be non-negative")
        record = UsageRecord(
            timestamp=self._clock.time(),
            provider=provider,
            model=model,
            cost=cost,
            tokens=tokens,
            requests=requests,
            user_id=user_id,
        )
        key = f"{provider}:{model}"
        history = self._ledger.get(key)
        if history is None:
            history = deque(maxlen=self._policy.ledger_size)
            self._ledger[key] = history
        history.append(record)
        for period in BudgetPeriod:
            self._totals[period] += cost
        self.check_cost_alerts(record)
        logger.info(
            "AI usage recorded: %s/%s - $%.4f (%d tokens)", provider, model, cost, tokens
        )
        return record

    def usage(self, provider: str, model: str) -> list[UsageRecord]:
        return list(self._ledger.get(f"{provider}:{model}", ()))

    def _records(self) -> list[UsageRecord]:
        return [r for history in self._ledger.values() for r in history]

    def totals(self) -> CostTotals:
        return CostTotals(
            daily=self._totals[BudgetPeriod.DAILY],
            weekly=self._totals[BudgetPeriod.WEEKLY],
            monthly=self._totals[BudgetPeriod.MONTHLY],
        )

    def check_rollover(self) -> list[BudgetPeriod]:
        """Reset the totals of every period that has ended since last check."""
        now = self._clock.time()
        rolled = []
        for period in BudgetPeriod:
            key = period_key(period, now)
            if key != self._period_keys[period]:
                self._period_keys[period] = key
                self._totals[period] = 0.0
                rolled.append(period)
                logger.info("%s costs reset", period.value.capitalize())
        return rolled

    # --- alerts ---

    def _create_alert(
        self,
        type: CostAlertType,
        severity: Severity,
        message: str,
        threshold: float,
        current_value: float,
        subject: str,
        period: Hashable,
    ) -> CostAlert | None:
        dedupe_key = (type, subject, severity, period)
        existing = self._alert_keys.get(dedupe_key)
        if existing is not None and not self._alerts[existing].resolved:
            return None
        alert = CostAlert(
            id=f"alert_{secrets.token_hex(6)}",
            type=type,
            severity=severity,
            message=message,
            threshold=threshold,
            current_value=current_value,
            timestamp=self._clock.time(),
            subject=subject,
        )
        self._alerts[alert.id] = alert
        self._alert_keys[dedupe_key] = alert.id
        logger.warning("Cost alert created: %s", message)
        return alert

    def check_cost_alerts(self, record: UsageRecord) -> list[CostAlert]:
        """Spike and quota checks for a freshly recorded usage."""
        created: list[CostAlert] = []
        subject = f"{record.provider}:{record.model}"
        history = self._ledger.get(subject, ())

        cutoff = record.timestamp - 3600
        recent = [r.cost for r in history if r.timestamp > cutoff]
        hourly_avg = sum(recent) / max(1, len(recent))
        if (
            record.cost > hourly_avg * self._policy.spike_multiplier
            and record.cost > self._policy.spike_min_cost
        ):
            alert = self._create_alert(
                CostAlertType.SPIKE_DETECTED,
                Severity.HIGH,
                f"Cost spike detected for {record.provider}/{record.model}: "
                f"${record.cost:.4f} ({self._policy.spike_multiplier:g}x hourly average)",
                hourly_avg,
                record.cost,
                subject,
                int(record.timestamp // 3600),
            )
            if alert is not None:
                created.append(alert)

        provider = self._policy.providers.get(record.provider)
        limit = provider.daily_token_limits.get(record.model) if provider else None
        if limit:
            today = period_key(BudgetPeriod.DAILY, record.timestamp)
            daily_tokens = sum(
                r.tokens
                for r in history
                if period_key(BudgetPeriod.DAILY, r.timestamp) == today
            )
            if daily_tokens > limit * self._policy.quota_warning_ratio:
                alert = self._create_alert(
                    CostAlertType.QUOTA_WARNING,
                    Severity.MEDIUM,
                    f"Approaching daily token limit for {record.provider}/{record.model}: "
                    f"{daily_tokens}/{limit}",
                    limit,
                    daily_tokens,
                    subject,
                    today,
                )
                if alert is not None:
                    created.append(alert)
        return created

    def check_budgets(self) -> list[CostAlert]:
        """Raise medium alerts past a budget's threshold and high past 100%."""
        created: list[CostAlert] = []
        now = self._clock.time()
        for budget in self._budgets.values():
            if not budget.enabled or budget.limit <= 0:
                continue
            spent = self._totals[budget.period]
            percentage = spent / budget.limit * 100
            if percentage >= 100:
                severity = Severity.HIGH
                message = f"{budget.name} budget exceeded: ${spent:.2f}/${budget.limit:g}"
            elif percentage >= budget.alert_threshold:
                severity = Severity.MEDIUM
                message = (
                    f"{budget.name} budget {percentage:.1f}% used: "
                    f"${spent:.2f}/${budget.limit:g}"
                )
            else:
                continue
            alert = self._create_alert(
                CostAlertType.BUDGET_EXCEEDED,
                severity,
                message,
                budget.limit,
                spent,
                budget.name,
                period_key(budget.period, now),
            )
            if alert is not None:
                created.append(alert)
        return created

    def alerts(self, include_resolved: bool = False) -> list[CostAlert]:
        """Alerts, newest first."""
        alerts = [a for a in self._alerts.values() if include_resolved or not a.resolved]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def resolve_alert(self, alert_id: str) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None:
            logger.warning("Cost alert %s not found", alert_id)
            return False
        alert.resolved = True
        return True

    # --- budgets ---

    def set_budget(
        self,
        name: str,
        period: BudgetPeriod,
        limit: float,
        alert_threshold: float = 80.0,
    ) -> BudgetConfig:
        budget = BudgetConfig(
            name=name,
            period=BudgetPeriod(period),
            limit=limit,
            alert_threshold=alert_threshold,
        )
        self._budgets[name] = budget
        logger.info(
            "Budget set: %s - $%g %s (alert at %g%%)",
            name,
            limit,
            budget.period.value,
            alert_threshold,
        )
        return budget

    def budget_statuses(self) -> list[BudgetStatus]:
        statuses = []
        for budget in self._budgets.values():
            spent = self._totals[budget.period]
            statuses.append(
                BudgetStatus(
                    name=budget.name,
                    period=budget.period,
                    limit=budget.limit,
                    spent=spent,
                    remaining=max(0.0, budget.limit - spent),
                    alert_threshold=budget.alert_threshold,
                    enabled=budget.enabled,
                )
            )
        return statuses

    # --- selection ---

    def select_provider(
        self,
        tier: Tier | str,
        estimated_tokens: int,
        user_budget: float | None = None,
    ) -> ProviderSelection:
        """Pick the best-scoring model for a request tier.

        score = 100 - cost*1000 - (50 if cost exceeds user_budget) + bias.
        Ties go to the earlier provider, then the earlier model. Never
        raises for a tier without candidates; the default model is used.
        """
        tier = Tier(tier)
        candidates: list[_Candidate] = []
        for provider, policy in self._policy.providers.items():
            for model in policy.models_for(tier):
                cost = estimated_tokens * policy.cost_per_token[model]
                score = 100 - cost * 1000 + policy.bias
                if user_budget is not None and cost > user_budget:
                    score -= 50
                candidates.append(_Candidate(provider, model, cost, score))

        if not candidates:
            cost = estimated_tokens * self._policy.default_cost_per_token
            return ProviderSelection(
                provider=self._policy.default_provider,
                model=self._policy.default_model,
                estimated_cost=cost,
                reasoning=(
                    f"Default fallback: no configured models for {tier.value}. "
                    f"Estimated cost: ${cost:.4f}."
                ),
            )

        best = _first_best(candidates)
        rest = [c for c in candidates if c is not best]
        reasoning = (
            f"Selected {best.provider}/{best.model} for {tier.value} request. "
            f"Estimated cost: ${best.cost:.4f}."
        )
        if rest:
            runner_up = _first_best(rest)
            delta = runner_up.cost - best.cost
            direction = "more" if delta >= 0 else "less"
            reasoning += (
                f" Next best {runner_up.provider}/{runner_up.model} "
                f"costs ${abs(delta):.4f} {direction}."
            )
        logger.debug(reasoning)
        return ProviderSelection(
            provider=best.provider,
            model=best.model,
            estimated_cost=best.cost,
            reasoning=reasoning,
        )

    # --- reporting ---

    def _tier_of(self, provider: str, model: str) -> Tier:
        policy = self._policy.providers.get(provider)
        return policy.tier_of(model) if policy is not None else Tier.LEVEL1

    def provider_breakdown(self, window_seconds: float = 24 * 3600) -> list[ProviderCost]:
        cutoff = self._clock.time() - window_seconds
        breakdown = []
        for key, history in self._ledger.items():
            recent = [r for r in history if r.timestamp > cutoff]
            if not recent:
                continue
            provider, model = key.split(":", 1)
            cost = sum(r.cost for r in recent)
            requests = sum(r.requests for r in recent)
            breakdown.append(
                ProviderCost(
                    provider=provider,
                    model=model,
                    requests=requests,
                    tokens=sum(r.tokens for r in recent),
                    cost=cost,
                    avg_cost_per_request=cost / requests if requests else 0.0,
                    tier=self._tier_of(provider, model),
                )
            )
        return sorted(breakdown, key=lambda p: p.cost, reverse=True)

    def cost_trends(self, days: int = 7) -> list[CostTrendPoint]:
        """Per-day spend from the ledger, oldest day first."""
        today = period_key(BudgetPeriod.DAILY, self._clock.time())
        by_day: dict[date, list[UsageRecord]] = {}
        for record in self._records():
            by_day.setdefault(period_key(BudgetPeriod.DAILY, record.timestamp), []).append(
                record
            )
        points = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            records = by_day.get(day, [])
            cost = sum(r.cost for r in records)
            tokens = sum(r.tokens for r in records)
            points.append(
                CostTrendPoint(
                    date=day.isoformat(),
                    cost=cost,
                    requests=sum(r.requests for r in records),
                    tokens=tokens,
                    efficiency=cost / tokens * 1000 if tokens else 0.0,
                )
            )
        return points

    def _opportunities(self, records: list[UsageRecord]) -> list[OptimizationOpportunity]:
        opportunities = []
        by_model: dict[tuple[str, str], list[UsageRecord]] = {}
        for record in records:
            by_model.setdefault((record.provider, record.model), []).append(record)

        for (provider, model), usage in by_model.items():
            policy = self._policy.providers.get(provider)
            if policy is None or model not in policy.cost_per_token:
                continue
            tier = policy.tier_of(model)
            price = policy.cost_per_token[model]
            cheapest = min(
                (
                    (p.cost_per_token[m], name, m)
                    for name, p in self._policy.providers.items()
                    for m in p.models_for(tier)
                ),
                default=None,
            )
            if cheapest is None or cheapest[0] >= price:
                continue
            tokens = sum(r.tokens for r in usage)
            savings = round(tokens * (price - cheapest[0]), 2)
            if savings <= 0:
                continue
            opportunities.append(
                OptimizationOpportunity(
                    description=(
                        f"Route {tier.value} traffic from {provider}/{model} "
                        f"to {cheapest[1]}/{cheapest[2]}"
                    ),
                    potential_savings=savings,
                    priority=_priority(savings),
                )
            )

        level2_cost = sum(
            r.cost for r in records if self._tier_of(r.provider, r.model) is Tier.LEVEL2
        )
        level2_tokens = sum(
            r.tokens for r in records if self._tier_of(r.provider, r.model) is Tier.LEVEL2
        )
        level1_prices = [
            p.cost_per_token[m]
            for p in self._policy.providers.values()
            for m in p.level1_models
        ]
        if level2_tokens and level1_prices:
            level2_price = level2_cost / level2_tokens
            ratio = min(level1_prices) / level2_price if level2_price else 1.0
            savings = round(0.3 * level2_cost * max(0.0, 1 - ratio), 2)
            if savings > 0:
                opportunities.append(
                    OptimizationOpportunity(
                        description=(
                            "Switch 30% of level2 requests to level1 models "
                            "where appropriate"
                        ),
                        potential_savings=savings,
                        priority=_priority(savings),
                    )
                )
        return sorted(opportunities, key=lambda o: o.potential_savings, reverse=True)

    def efficiency_metrics(self) -> EfficiencyMetrics:
        records = self._records()
        if not records:
            return EfficiencyMetrics()
        total_cost = sum(r.cost for r in records)
        total_tokens = sum(r.tokens for r in records)
        total_requests = sum(r.requests for r in records)
        users = {r.user_id for r in records if r.user_id}

        provider_efficiency = {}
        for provider in self._policy.providers:
            usage = [r for r in records if r.provider == provider]
            tokens = sum(r.tokens for r in usage)
            provider_efficiency[provider] = (
                round(sum(r.cost for r in usage) / tokens * 1000, 5) if tokens else 0.0
            )

        return EfficiencyMetrics(
            token_efficiency=(
                round(total_cost / total_tokens * 1000, 5) if total_tokens else 0.0
            ),
            request_efficiency=(
                round(total_cost / total_requests, 2) if total_requests else 0.0
            ),
            user_cost_average=round(total_cost / len(users), 2) if users else 0.0,
            provider_efficiency=provider_efficiency,
            opportunities=self._opportunities(records),
        )

    def recommendations(self, efficiency: EfficiencyMetrics | None = None) -> list[str]:
        efficiency = efficiency or self.efficiency_metrics()
        recommendations = []
        if efficiency.token_efficiency > 0.1:
            recommendations.append(
                "Consider switching to more cost-effective models for level1 requests"
            )
        if self._totals[BudgetPeriod.DAILY] > 30:
            recommendations.append(
                "Daily costs are high: review AI usage patterns and batch requests"
            )
        recommendations.extend(o.description for o in efficiency.opportunities[:3])
        return recommendations

    def cost_dashboard(self) -> CostDashboard:
        if not self._ledger:
            return CostDashboard.empty(self.budget_statuses())
        return CostDashboard(
            totals=self.totals(),
            budgets=self.budget_statuses(),
            provider_breakdown=self.provider_breakdown(),
            trends=self.cost_trends(),
            alerts=self.alerts(),
            recommendations=self.recommendations(),
        )

    # --- lifecycle ---

    def start(self) -> None:
        if self._scheduler is None:
            logger.warning("CostLedger has no scheduler; rollover and budget checks disabled")
            return
        self._scheduler.every(ROLLOVER_JOB, ROLLOVER_INTERVAL, self.check_rollover)
        self._scheduler.every(BUDGET_JOB, BUDGET_INTERVAL, self.check_budgets)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(ROLLOVER_JOB)
            self._scheduler.cancel(BUDGET_JOB)

    def reset(self) -> None:
        """Drop the ledger, totals and alerts; budgets are kept."""
        self._ledger.clear()
        self._alerts.clear()
        self._alert_keys.clear()
        self._totals = {period: 0.0 for period in BudgetPeriod}
        logger.info("Cost data reset")


def _first_best(candidates: list[_Candidate]) -> _Candidate:
    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.score > best.score:
            best = candidate
    return best
