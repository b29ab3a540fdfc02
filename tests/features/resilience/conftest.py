"""BDD step definitions for circuit breaker and degradation features."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from vigilpy.adapters.clock import ManualClock
from vigilpy.core.errors import CircuitOpenError
from vigilpy.core.models import CircuitState
from vigilpy.core.resilience import (
    CircuitBreakerRegistry,
    CircuitOptions,
    DegradationController,
)


def run_async(coro: Any) -> Any:
    """Run an async function synchronously."""
    return asyncio.run(coro)


class Provider:
    """Async callable standing in for a provider; counts its calls."""

    def __init__(self, name: str, failing: bool = False) -> None:
        self.name = name
        self.failing = failing
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failing:
            raise ConnectionError(f"{self.name} unavailable")
        return "ok"


@dataclass
class ResilienceScenarioContext:
    """Shared state between steps in a resilience scenario."""

    clock: ManualClock = field(default_factory=ManualClock)
    breakers: CircuitBreakerRegistry | None = None
    degradation: DegradationController | None = None
    providers: dict[str, Provider] = field(default_factory=dict)
    result: Any = None
    error: Exception | None = None

    def provider(self, name: str) -> Provider:
        if name not in self.providers:
            self.providers[name] = Provider(name)
        return self.providers[name]


@pytest.fixture
def ctx() -> ResilienceScenarioContext:
    """Fresh scenario context for each test."""
    return ResilienceScenarioContext()


async def _cached() -> str:
    return "cached"


def _fallback(label: str) -> Any:
    async def fallback() -> str:
        return label

    return fallback


# === Circuit breaker steps ===
@given(parsers.parse("a circuit breaker registry with a failure threshold of {n:d}"))
def step_registry(ctx: ResilienceScenarioContext, n: int) -> None:
    ctx.breakers = CircuitBreakerRegistry(
        ctx.clock, CircuitOptions(failure_threshold=n, reset_timeout=60)
    )


@given(parsers.parse('the provider "{name}" is failing'))
def step_provider_failing(ctx: ResilienceScenarioContext, name: str) -> None:
    ctx.provider(name).failing = True


@given(parsers.parse('the provider "{name}" is healthy'))
@given(parsers.parse('the provider "{name}" recovers'))
def step_provider_healthy(ctx: ResilienceScenarioContext, name: str) -> None:
    ctx.provider(name).failing = False


@given(parsers.parse("{seconds:d} seconds pass"))
def step_time_passes(ctx: ResilienceScenarioContext, seconds: int) -> None:
    ctx.clock.advance(seconds)


@given(parsers.parse('{n:d} calls are made to "{name}"'))
@when(parsers.parse('{n:d} calls are made to "{name}"'))
def step_calls(ctx: ResilienceScenarioContext, n: int, name: str) -> None:
    assert ctx.breakers is not None
    for _ in range(n):
        try:
            ctx.result = run_async(ctx.breakers.execute(name, ctx.provider(name)))
            ctx.error = None
        except Exception as e:
            ctx.error = e


@when(parsers.parse('a call with a fallback is made to "{name}"'))
def step_call_with_fallback(ctx: ResilienceScenarioContext, name: str) -> None:
    assert ctx.breakers is not None
    ctx.result = run_async(
        ctx.breakers.execute(name, ctx.provider(name), fallback=_cached)
    )


@then(parsers.parse('the circuit "{name}" is "{state}"'))
def step_circuit_state(ctx: ResilienceScenarioContext, name: str, state: str) -> None:
    assert ctx.breakers is not None
    stats = ctx.breakers.get_stats(name)
    assert stats is not None
    assert stats.state is CircuitState(state)


@then(parsers.parse('the provider "{name}" was called {n:d} times'))
def step_provider_calls(ctx: ResilienceScenarioContext, name: str, n: int) -> None:
    assert ctx.provider(name).calls == n


@then("the last error is a circuit open error")
def step_circuit_open_error(ctx: ResilienceScenarioContext) -> None:
    assert isinstance(ctx.error, CircuitOpenError)


@then(parsers.parse('the result is "{expected}"'))
def step_result(ctx: ResilienceScenarioContext, expected: str) -> None:
    assert ctx.result == expected


# === Degradation steps ===
@given("a degradation controller")
def step_degradation(ctx: ResilienceScenarioContext) -> None:
    ctx.degradation = DegradationController()


@given(parsers.parse('the primary for "{service}" is failing'))
def step_primary_failing(ctx: ResilienceScenarioContext, service: str) -> None:
    ctx.provider(service).failing = True


@given(parsers.parse('the primary for "{service}" recovers'))
def step_primary_recovers(ctx: ResilienceScenarioContext, service: str) -> None:
    ctx.provider(service).failing = False


@given(parsers.parse('the service "{service}" is called with {n:d} fallbacks'))
@when(parsers.parse('the service "{service}" is called with {n:d} fallbacks'))
def step_degraded_call(ctx: ResilienceScenarioContext, service: str, n: int) -> None:
    assert ctx.degradation is not None
    fallbacks = [_fallback(f"fallback-{i}") for i in range(1, n + 1)]
    ctx.result = run_async(
        ctx.degradation.execute_with_degradation(ctx.provider(service), fallbacks, service)
    )


@when(parsers.parse('the primary for "{service}" is probed'))
def step_probe_primary(ctx: ResilienceScenarioContext, service: str) -> None:
    assert ctx.degradation is not None
    ctx.result = run_async(ctx.degradation.probe_primary(service, ctx.provider(service)))


@then(parsers.parse('the degradation level of "{service}" is {level:d}'))
def step_degradation_level(
    ctx: ResilienceScenarioContext, service: str, level: int
) -> None:
    assert ctx.degradation is not None
    assert ctx.degradation.level(service) == level


@then(parsers.parse('the degradation status of "{service}" is "{status}"'))
def step_degradation_status(
    ctx: ResilienceScenarioContext, service: str, status: str
) -> None:
    assert ctx.degradation is not None
    assert ctx.degradation.degradation_status()[service].status == status


@then(parsers.parse('the primary for "{service}" was called {n:d} times'))
def step_primary_calls(ctx: ResilienceScenarioContext, service: str, n: int) -> None:
    assert ctx.provider(service).calls == n
