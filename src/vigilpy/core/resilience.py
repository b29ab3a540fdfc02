"""Resilience primitives: circuit breakers, timeouts and graded degradation.

These are the only components where a failure is meant to surface to the
caller as an exception (an OPEN circuit without fallback, a timeout, or
every degradation path failing).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from vigilpy.core.errors import (
    AllFallbacksFailedError,
    CircuitOpenError,
    OperationTimeoutError,
)
from vigilpy.core.models import CircuitBreakerStats, CircuitState
from vigilpy.core.ports import ClockPort

logger = logging.getLogger(__name__)

T = TypeVar("T")

AsyncFn = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class CircuitOptions:
    """Per-circuit settings.

    Attributes:
        failure_threshold: Cumulative failures that open the circuit.
        reset_timeout: Seconds an OPEN circuit rejects calls.
        monitoring_period: Reported only; failures are cumulative.
    """

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    monitoring_period: float = 10.0


@dataclass
class _Circuit:
    name: str
    options: CircuitOptions
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    successes: int = 0
    requests: int = 0
    last_failure_time: float | None = None
    next_attempt_time: float | None = None

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            name=self.name,
            state=self.state,
            failures=self.failures,
            successes=self.successes,
            requests=self.requests,
            last_failure_time=self.last_failure_time,
            next_attempt_time=self.next_attempt_time,
        )


class CircuitBreakerRegistry:
    """Circuit breakers keyed by call-site name, created on first use.

    Args:
        clock: Time source for reset timeouts.
        defaults: Options that per-call overrides are merged over.
    """

    def __init__(self, clock: ClockPort, defaults: CircuitOptions | None = None) -> None:
        self._clock = clock
        self._defaults = defaults or CircuitOptions()
        self._circuits: dict[str, _Circuit] = {}

    def _circuit(
        self, name: str, options: CircuitOptions | Mapping[str, Any] | None
    ) -> _Circuit:
        circuit = self._circuits.get(name)
        if circuit is None:
            if isinstance(options, CircuitOptions):
                merged = options
            else:
                merged = replace(self._defaults, **dict(options or {}))
            circuit = _Circuit(name=name, options=merged)
            self._circuits[name] = circuit
        return circuit

    async def execute(
        self,
        name: str,
        fn: AsyncFn[T],
        fallback: AsyncFn[T] | None = None,
        options: CircuitOptions | Mapping[str, Any] | None = None,
    ) -> T:
        """Call ``fn`` through the named circuit.

        Args:
            name: Circuit name; one per external call site.
            fn: Zero-argument coroutine function to protect.
            fallback: Called instead of ``fn`` while OPEN, and after a failure.
            options: Overrides merged over the registry defaults on first use.

        Returns:
            The result of ``fn``, or of ``fallback`` when it was used.

        Raises:
            CircuitOpenError: The circuit is OPEN and no fallback was given.
            Exception: Whatever ``fn`` raised, when no fallback was given.
        """
        circuit = self._circuit(name, options)
        now = self._clock.time()

        if circuit.state is CircuitState.OPEN:
            if now < (circuit.next_attempt_time or 0.0):
                logger.warning("Circuit breaker %s is OPEN, using fallback", name)
                if fallback is not None:
                    return await fallback()
                raise CircuitOpenError(name)
            circuit.state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker %s transitioning to HALF_OPEN", name)

        circuit.requests += 1
        try:
            result = await fn()
        except Exception as exc:
            self._record_failure(circuit, exc)
            if fallback is not None:
                return await fallback()
            raise

        circuit.successes += 1
        if circuit.state is CircuitState.HALF_OPEN:
            circuit.state = CircuitState.CLOSED
            circuit.failures = 0
            logger.info("Circuit breaker %s closed after successful test", name)
        return result

    def _record_failure(self, circuit: _Circuit, exc: Exception) -> None:
        now = self._clock.time()
        circuit.failures += 1
        circuit.last_failure_time = now
        logger.error("Circuit breaker %s recorded failure: %s", circuit.name, exc)
        if (
            circuit.state is CircuitState.HALF_OPEN
            or circuit.failures >= circuit.options.failure_threshold
        ):
            circuit.state = CircuitState.OPEN
            circuit.next_attempt_time = now + circuit.options.reset_timeout
            logger.warning("Circuit breaker %s opened due to failures", circuit.name)

    def get_stats(self, name: str) -> CircuitBreakerStats | None:
        circuit = self._circuits.get(name)
        if circuit is None:
            logger.warning("Circuit breaker %s not found", name)
            return None
        return circuit.stats()

    def all_stats(self) -> dict[str, CircuitBreakerStats]:
        return {name: circuit.stats() for name, circuit in self._circuits.items()}

    def reset(self, name: str) -> bool:
        circuit = self._circuits.get(name)
        if circuit is None:
            logger.warning("Circuit breaker %s not found", name)
            return False
        self._circuits[name] = _Circuit(name=name, options=circuit.options)
        logger.info("Circuit breaker %s manually reset", name)
        return True

    def reset_all(self) -> None:
        for name in list(self._circuits):
            self.reset(name)


def _retrieve_exception(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


async def with_timeout(
    operation: Awaitable[T],
    timeout: float,
    message: str | None = None,
) -> T:
    """Wait for ``operation`` at most ``timeout`` seconds.

    The operation is not cancelled when the timer wins; it keeps running
    and its eventual outcome is discarded.

    Raises:
        OperationTimeoutError: If the operation did not finish in time.
    """
    task = asyncio.ensure_future(operation)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()
    task.add_done_callback(_retrieve_exception)
    text = message or f"Operation timed out after {timeout * 1000:g}ms"
    logger.error("Timeout error: %s", text)
    raise OperationTimeoutError(text, timeout)


@dataclass(frozen=True)
class TimeoutOutcome(Generic[T]):
    success: bool
    result: T | None = None
    error: str | None = None


async def with_timeout_all(
    operations: Iterable[Awaitable[T]], timeout: float
) -> list[TimeoutOutcome[T]]:
    """Run operations concurrently, each under its own timeout."""

    async def settle(operation: Awaitable[T]) -> TimeoutOutcome[T]:
        try:
            return TimeoutOutcome(success=True, result=await with_timeout(operation, timeout))
        except Exception as exc:
            return TimeoutOutcome(success=False, error=str(exc))

    return list(await asyncio.gather(*(settle(op) for op in operations)))


MAX_DEGRADATION_LEVEL = 5

LEVEL_STATUS = {
    0: "HEALTHY",
    1: "MINOR_DEGRADATION",
    2: "MODERATE_DEGRADATION",
    3: "MAJOR_DEGRADATION",
    4: "SEVERE_DEGRADATION",
    5: "CRITICAL_DEGRADATION",
}
LEVEL_DESCRIPTION = {
    0: "Service operating normally",
    1: "Minor issues, using simple fallbacks",
    2: "Moderate issues, reduced functionality",
    3: "Major issues, basic functionality only",
    4: "Severe issues, minimal functionality",
    5: "Critical issues, emergency mode",
}


@dataclass(frozen=True)
class DegradationStatus:
    level: int
    status: str
    description: str


class DegradationController:
    """Per-service degradation level between 0 (healthy) and 5.

    Failures raise the level. Only a primary-path success lowers it, so a
    working fallback never masks an outage of the primary.
    """

    def __init__(self) -> None:
        self._levels: dict[str, int] = {}

    def level(self, service_name: str) -> int:
        return self._levels.get(service_name, 0)

    def _record_success(self, service_name: str) -> None:
        level = self.level(service_name)
        if level > 0:
            self._levels[service_name] = level - 1
            logger.info(
                "Service %s degradation level improved to %d", service_name, level - 1
            )

    def _record_failure(self, service_name: str) -> None:
        level = min(MAX_DEGRADATION_LEVEL, self.level(service_name) + 1)
        self._levels[service_name] = level
        logger.warning("Service %s degradation level increased to %d", service_name, level)

    async def execute_with_degradation(
        self,
        primary: AsyncFn[T],
        fallbacks: Sequence[AsyncFn[T]],
        service_name: str,
    ) -> T:
        """Run the primary when healthy, else the fallbacks for the level.

        Fallbacks are tried in order from index ``max(0, level - 1)``,
        where ``level`` is the level on entry.

        Raises:
            AllFallbacksFailedError: If every eligible function failed.
        """
        level = self.level(service_name)

        if level == 0:
            try:
                result = await primary()
            except Exception as exc:
                logger.warning("Primary function failed for %s: %s", service_name, exc)
                self._record_failure(service_name)
            else:
                self._record_success(service_name)
                return result

        for index in range(max(0, level - 1), len(fallbacks)):
            try:
                result = await fallbacks[index]()
            except Exception as exc:
                logger.warning(
                    "Fallback level %d failed for %s: %s", index + 1, service_name, exc
                )
                self._record_failure(service_name)
                continue
            logger.info("Using fallback level %d for %s", index + 1, service_name)
            return result

        raise AllFallbacksFailedError(service_name)

    async def probe_primary(self, service_name: str, primary: AsyncFn[T]) -> T:
        """Call the primary regardless of level to test for recovery.

        A success lowers the level by one; a failure raises it and
        propagates.
        """
        try:
            result = await primary()
        except Exception:
            self._record_failure(service_name)
            raise
        self._record_success(service_name)
        return result

    def degradation_status(self) -> dict[str, DegradationStatus]:
        return {
            name: DegradationStatus(
                level=level,
                status=LEVEL_STATUS[level],
                description=LEVEL_DESCRIPTION[level],
            )
            for name, level in self._levels.items()
        }

    def reset_service(self, service_name: str) -> None:
        self._levels[service_name] = 0
        logger.info("Service %s degradation level reset to 0", service_name)

    def reset_all(self) -> None:
        for name in list(self._levels):
            self.reset_service(name)
