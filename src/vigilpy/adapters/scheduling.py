"""Scheduler adapters implementing SchedulerPort.

AsyncioScheduler runs each job as its own asyncio task, so a slow or
failing job never blocks the others. ManualScheduler runs jobs only when
a test advances virtual time.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass

from vigilpy.adapters.clock import ManualClock
from vigilpy.core.ports import TickCallback

logger = logging.getLogger(__name__)


async def run_tick(name: str, callback: TickCallback) -> None:
    """Run one tick of a job, logging instead of raising on failure."""
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Scheduled job %s failed", name)


class AsyncioScheduler:
    """Periodic jobs backed by asyncio tasks.

    ``every`` must be called while an event loop is running.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    async def _loop(self, name: str, interval: float, callback: TickCallback) -> None:
        while True:
            await asyncio.sleep(interval)
            await run_tick(name, callback)

    def every(self, name: str, interval: float, callback: TickCallback) -> None:
        """Run ``callback`` every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.cancel(name)
        loop = asyncio.get_running_loop()
        self._tasks[name] = loop.create_task(
            self._loop(name, interval, callback), name=f"vigilpy:{name}"
        )
        logger.debug("Scheduled job %s every %ss", name, interval)

    def cancel(self, name: str) -> bool:
        """Stop a job. Returns False if no job has that name."""
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        task.cancel()
        return True

    def jobs(self) -> list[str]:
        return list(self._tasks)

    def shutdown(self) -> None:
        """Cancel every registered job."""
        for name in list(self._tasks):
            self.cancel(name)


@dataclass
class _ManualJob:
    interval: float
    next_due: float
    callback: TickCallback


class ManualScheduler:
    """Scheduler driven by a ManualClock.

    Jobs run only inside ``advance``, in due-time order, with the clock
    set to each job's due time while it runs.

    Args:
        clock: The clock the components under test read.
    """

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._jobs: dict[str, _ManualJob] = {}

    def every(self, name: str, interval: float, callback: TickCallback) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._jobs[name] = _ManualJob(
            interval=interval,
            next_due=self._clock.time() + interval,
            callback=callback,
        )

    def cancel(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def jobs(self) -> list[str]:
        return list(self._jobs)

    def shutdown(self) -> None:
        self._jobs.clear()

    async def advance(self, seconds: float) -> int:
        """Move virtual time forward, running every job that falls due.

        Returns:
            Number of ticks executed.
        """
        target = self._clock.time() + seconds
        ticks = 0
        while True:
            due = [
                (job.next_due, name, job)
                for name, job in self._jobs.items()
                if job.next_due <= target
            ]
            if not due:
                break
            next_due, name, job = min(due, key=lambda item: item[0])
            if next_due > self._clock.time():
                self._clock.set(next_due)
            job.next_due = next_due + job.interval
            await run_tick(name, job.callback)
            ticks += 1
        self._clock.set(target)
        return ticks

    async def run_now(self, name: str) -> bool:
        """Run one tick of a job immediately without moving time."""
        job = self._jobs.get(name)
        if job is None:
            return False
        await run_tick(name, job.callback)
        return True
