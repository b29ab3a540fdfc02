"""Synthetic test runner: scheduled black-box probes with rolling history."""

import logging
import re
import secrets
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from vigilpy.core.errors import ConfigurationError
from vigilpy.core.metrics import percentile
from vigilpy.core.models import ProbeConfig, SyntheticTest, SyntheticTestType, TestResult
from vigilpy.core.ports import ClockPort, DatabaseProbePort, HttpProbePort, SchedulerPort
from vigilpy.core.resilience import with_timeout

logger = logging.getLogger(__name__)

HTTP_TYPES = frozenset(
    {SyntheticTestType.HTTP, SyntheticTestType.API, SyntheticTestType.EXTERNAL_SERVICE}
)

SCHEDULE_PRESETS = {
    "every_2m": 2 * 60.0,
    "every_5m": 5 * 60.0,
    "every_10m": 10 * 60.0,
    "every_15m": 15 * 60.0,
}
_EVERY_N_MINUTES = re.compile(r"^\*/(\d+) \* \* \* \*$")


def parse_schedule(schedule: str | float) -> float:
    """Convert a schedule to an interval in seconds.

    Accepts ``*/N * * * *`` (every N minutes), a preset name such as
    ``every_5m``, or a number of seconds.

    Returns:
        The interval, or 0.0 if the schedule is not understood.
    """
    if isinstance(schedule, bool):
        return 0.0
    if isinstance(schedule, (int, float)):
        return float(schedule) if schedule > 0 else 0.0
    text = schedule.strip()
    if text in SCHEDULE_PRESETS:
        return SCHEDULE_PRESETS[text]
    match = _EVERY_N_MINUTES.match(text)
    if match:
        return int(match.group(1)) * 60.0
    try:
        seconds = float(text)
    except ValueError:
        return 0.0
    return seconds if seconds > 0 else 0.0


@dataclass(frozen=True)
class TestSummary:
    """Statistics over a test's retained history. Latencies are in ms."""

    __test__ = False

    test_id: str
    name: str
    success_rate: float
    avg_response_time: float
    p95_response_time: float
    last_run: float
    last_success: float | None
    total_runs: int
    recent_results: list[TestResult] = field(default_factory=list)


@dataclass(frozen=True)
class HealthOverview:
    total_tests: int = 0
    active_tests: int = 0
    success_rate: float = 0.0
    avg_response_time: float = 0.0


@dataclass(frozen=True)
class FailureEntry:
    test_id: str
    test_name: str
    error: str
    timestamp: float


@dataclass(frozen=True)
class TrendBucket:
    hour: int
    avg_response_time: float
    success_rate: float
    runs: int = 0


@dataclass(frozen=True)
class HealthDashboard:
    overview: HealthOverview = field(default_factory=HealthOverview)
    test_summaries: list[TestSummary] = field(default_factory=list)
    recent_failures: list[FailureEntry] = field(default_factory=list)
    trends: list[TrendBucket] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "HealthDashboard":
        return cls(
            trends=[TrendBucket(hour=i, avg_response_time=0.0, success_rate=100.0) for i in range(24)]
        )


class SyntheticTestRunner:
    """Runs synthetic tests on their schedules and keeps their results.

    Args:
        clock: Time source for result timestamps and latency measurement.
        scheduler: Runs each enabled test on its interval once started.
        http_probe: Issues http, api and external_service probes.
        database_probe: Issues database connectivity probes.
        history_size: Results retained per test.
    """

    def __init__(
        self,
        clock: ClockPort,
        scheduler: SchedulerPort | None = None,
        http_probe: HttpProbePort | None = None,
        database_probe: DatabaseProbePort | None = None,
        history_size: int = 1000,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._http_probe = http_probe
        self._database_probe = database_probe
        self._history_size = history_size
        self._tests: dict[str, SyntheticTest] = {}
        self._results: dict[str, deque[TestResult]] = {}
        self._started = False

    # --- registration ---

    def add_test(
        self,
        name: str,
        type: SyntheticTestType,
        config: ProbeConfig,
        schedule: str | float,
        enabled: bool = True,
        description: str = "",
        tags: Iterable[str] = (),
    ) -> str:
        """Register a test and schedule it if enabled.

        Raises:
            ConfigurationError: If an HTTP-like test has no URL.
        """
        test_type = SyntheticTestType(type)
        if test_type in HTTP_TYPES and not config.url:
            raise ConfigurationError(f"Synthetic test {name} requires a url")
        test = SyntheticTest(
            id=f"test_{secrets.token_hex(6)}",
            name=name,
            type=test_type,
            config=config,
            schedule=schedule,
            enabled=enabled,
            description=description,
            tags=list(tags),
        )
        self._tests[test.id] = test
        self._results[test.id] = deque(maxlen=self._history_size)
        if enabled and self._started:
            self._schedule(test)
        logger.info("Added synthetic test: %s (%s)", name, test.id)
        return test.id

    def get_test(self, test_id: str) -> SyntheticTest | None:
        return self._tests.get(test_id)

    def tests(self) -> list[SyntheticTest]:
        return list(self._tests.values())

    def toggle_test(self, test_id: str, enabled: bool) -> bool:
        """Start or stop a test's recurring run; its history is kept."""
        test = self._tests.get(test_id)
        if test is None:
            logger.warning("Synthetic test %s not found", test_id)
            return False
        test.enabled = enabled
        if enabled:
            if self._started:
                self._schedule(test)
        else:
            self._unschedule(test_id)
        logger.info("Test %s %s", test.name, "enabled" if enabled else "disabled")
        return True

    # --- scheduling ---

    @staticmethod
    def _job_name(test_id: str) -> str:
        return f"synthetic.{test_id}"

    def _schedule(self, test: SyntheticTest) -> None:
        if self._scheduler is None:
            return
        interval = parse_schedule(test.schedule)
        if interval <= 0:
            logger.warning(
                "Synthetic test %s has unrecognised schedule %r; not scheduled",
                test.name,
                test.schedule,
            )
            return
        test_id = test.id

        async def tick() -> None:
            await self.run_test(test_id)

        self._scheduler.every(self._job_name(test_id), interval, tick)

    def _unschedule(self, test_id: str) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(self._job_name(test_id))

    def start(self) -> None:
        self._started = True
        for test in self._tests.values():
            if test.enabled:
                self._schedule(test)

    def shutdown(self) -> None:
        """Stop every scheduled test."""
        for test_id in self._tests:
            self._unschedule(test_id)
        self._started = False
        logger.info("Synthetic test runner shut down")

    # --- execution ---

    async def run_test(self, test_id: str) -> TestResult | None:
        """Run a test once and record its result.

        Probe and timeout failures become failed results.

        Returns:
            The result, or None if ``test_id`` is unknown.

        Raises:
            ConfigurationError: If no probe is configured for the test type.
        """
        test = self._tests.get(test_id)
        if test is None:
            logger.warning("Synthetic test %s not found", test_id)
            return None

        started = self._clock.time()
        try:
            if test.type in HTTP_TYPES:
                result = await self._run_http(test, started)
            else:
                result = await self._run_database(test, started)
        except ConfigurationError:
            raise
        except Exception as exc:
            result = TestResult(
                test_id=test.id,
                timestamp=self._clock.time(),
                success=False,
                response_time_ms=self._elapsed_ms(started),
                error=str(exc) or type(exc).__name__,
            )
            logger.error("Test %s failed: %s", test.name, result.error)

        self._results[test.id].append(result)
        logger.info(
            "Test %s completed: %s (%.0fms)",
            test.name,
            "PASS" if result.success else "FAIL",
            result.response_time_ms,
        )
        return result

    def _elapsed_ms(self, started: float) -> float:
        return max(0.0, (self._clock.time() - started) * 1000)

    async def _run_http(self, test: SyntheticTest, started: float) -> TestResult:
        if self._http_probe is None:
            raise ConfigurationError(f"No HTTP probe configured for test {test.name}")
        config = test.config
        response = await with_timeout(
            self._http_probe.request(
                config.method,
                config.url or "",
                headers=dict(config.headers),
                body=config.body,
                timeout=config.timeout_ms / 1000,
            ),
            config.timeout_ms / 1000,
            f"Test {test.name} timed out after {config.timeout_ms:g}ms",
        )
        elapsed = self._elapsed_ms(started)
        return TestResult(
            test_id=test.id,
            timestamp=self._clock.time(),
            success=(
                response.status_code == config.expected_status
                and elapsed <= config.expected_response_time_ms
            ),
            response_time_ms=elapsed,
            status_code=response.status_code,
            metrics=dict(response.metrics),
        )

    async def _run_database(self, test: SyntheticTest, started: float) -> TestResult:
        if self._database_probe is None:
            raise ConfigurationError(f"No database probe configured for test {test.name}")
        config = test.config
        metrics = await with_timeout(
            self._database_probe.ping(),
            config.timeout_ms / 1000,
            f"Test {test.name} timed out after {config.timeout_ms:g}ms",
        )
        elapsed = self._elapsed_ms(started)
        return TestResult(
            test_id=test.id,
            timestamp=self._clock.time(),
            success=elapsed <= config.expected_response_time_ms,
            response_time_ms=elapsed,
            metrics=dict(metrics),
        )

    # --- queries ---

    def get_test_results(self, test_id: str, limit: int | None = None) -> list[TestResult]:
        """Retained results, oldest first; ``limit`` keeps the newest."""
        results = list(self._results.get(test_id, ()))
        return results[-limit:] if limit else results

    def get_test_summary(self, test_id: str) -> TestSummary | None:
        test = self._tests.get(test_id)
        results = self._results.get(test_id)
        if test is None or not results:
            return None
        latencies = [r.response_time_ms for r in results]
        successes = [r for r in results if r.success]
        return TestSummary(
            test_id=test_id,
            name=test.name,
            success_rate=round(len(successes) / len(results) * 100, 2),
            avg_response_time=round(sum(latencies) / len(latencies), 2),
            p95_response_time=percentile(latencies, 0.95),
            last_run=results[-1].timestamp,
            last_success=successes[-1].timestamp if successes else None,
            total_runs=len(results),
            recent_results=list(results)[-10:],
        )

    def all_test_summaries(self) -> list[TestSummary]:
        """Summaries of every test with history, most recently run first."""
        summaries = (self.get_test_summary(test_id) for test_id in self._tests)
        return sorted(
            (s for s in summaries if s is not None),
            key=lambda s: s.last_run,
            reverse=True,
        )

    def health_dashboard(self) -> HealthDashboard:
        if not self._tests:
            return HealthDashboard.empty()
        now = self._clock.time()
        summaries = self.all_test_summaries()
        overview = HealthOverview(
            total_tests=len(self._tests),
            active_tests=sum(1 for t in self._tests.values() if t.enabled),
            success_rate=(
                round(sum(s.success_rate for s in summaries) / len(summaries), 2)
                if summaries
                else 0.0
            ),
            avg_response_time=(
                round(sum(s.avg_response_time for s in summaries) / len(summaries), 2)
                if summaries
                else 0.0
            ),
        )

        cutoff = now - 24 * 3600
        failures = [
            FailureEntry(
                test_id=test_id,
                test_name=self._tests[test_id].name,
                error=result.error or _expectation_message(self._tests[test_id], result),
                timestamp=result.timestamp,
            )
            for test_id, results in self._results.items()
            for result in results
            if not result.success and result.timestamp >= cutoff
        ]
        failures.sort(key=lambda f: f.timestamp, reverse=True)

        trends = []
        for hour in range(24):
            bucket_start = now - (24 - hour) * 3600
            bucket_end = bucket_start + 3600
            bucket = [
                r
                for results in self._results.values()
                for r in results
                if bucket_start < r.timestamp <= bucket_end
            ]
            if bucket:
                trends.append(
                    TrendBucket(
                        hour=hour,
                        avg_response_time=sum(r.response_time_ms for r in bucket) / len(bucket),
                        success_rate=sum(1 for r in bucket if r.success) / len(bucket) * 100,
                        runs=len(bucket),
                    )
                )
            else:
                trends.append(TrendBucket(hour=hour, avg_response_time=0.0, success_rate=100.0))

        return HealthDashboard(
            overview=overview,
            test_summaries=summaries,
            recent_failures=failures[:20],
            trends=trends,
        )

    def reset(self) -> None:
        """Drop every retained result; tests stay registered."""
        for results in self._results.values():
            results.clear()


def _expectation_message(test: SyntheticTest, result: TestResult) -> str:
    config = test.config
    if result.status_code is not None and result.status_code != config.expected_status:
        return f"Expected status {config.expected_status}, got {result.status_code}"
    return (
        f"Response time {result.response_time_ms:.0f}ms exceeded "
        f"{config.expected_response_time_ms:g}ms"
    )
