"""Port interfaces for runtime seams.

These protocols define the contracts that adapters must implement.
The core components depend only on these interfaces, not concrete
implementations, so tests can swap in a manual clock and scheduler.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None] | None]


@runtime_checkable
class ClockPort(Protocol):
    """Port for reading the current time.

    Examples: SystemClock, ManualClock.
    """

    def time(self) -> float:
        """Return the current Unix timestamp in seconds."""
        ...


@runtime_checkable
class SchedulerPort(Protocol):
    """Port for periodic background jobs.

    Jobs are identified by name. Registering a name that already exists
    replaces the previous job. A failing tick must be logged and must not
    stop later ticks.
    """

    def every(self, name: str, interval: float, callback: TickCallback) -> None:
        """Run ``callback`` every ``interval`` seconds."""
        ...

    def cancel(self, name: str) -> bool:
        """Stop a job. Returns False if no job has that name."""
        ...

    def jobs(self) -> list[str]:
        """Names of the currently registered jobs."""
        ...

    def shutdown(self) -> None:
        """Cancel every registered job."""
        ...


@dataclass(frozen=True)
class ProbeResponse:
    """What an HTTP probe saw.

    Attributes:
        status_code: HTTP status of the response.
        metrics: Extra measurements (body size, header count).
    """

    status_code: int
    metrics: dict[str, float] = field(default_factory=dict)


@runtime_checkable
class HttpProbePort(Protocol):
    """Port for issuing a synthetic HTTP call."""

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> ProbeResponse:
        """Issue the request and return its status.

        Transport errors are raised; the runner turns them into results.
        """
        ...


@runtime_checkable
class DatabaseProbePort(Protocol):
    """Port for a lightweight database connectivity check."""

    async def ping(self) -> dict[str, float]:
        """Run a trivial query and return probe measurements."""
        ...


@dataclass(frozen=True)
class ProcessStats:
    """One reading of the host process.

    Attributes:
        memory_percent: Resident memory as a percentage of system memory.
        rss_bytes: Resident set size.
        cpu_seconds: User plus system CPU time consumed so far.
        create_time: Unix timestamp the process started at.
    """

    memory_percent: float
    rss_bytes: int
    cpu_seconds: float
    create_time: float


@runtime_checkable
class ProcessStatsPort(Protocol):
    """Port for reading resource usage of the running process.

    Examples: PsutilProcessStats.
    """

    def read(self) -> ProcessStats:
        """Sample the process once."""
        ...
