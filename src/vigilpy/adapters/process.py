"""Process statistics adapter backed by psutil."""

import psutil

from vigilpy.core.ports import ProcessStats


class PsutilProcessStats:
    """Reads memory and CPU usage of a process through psutil.

    Args:
        process: Process to inspect (default: the current one).
    """

    def __init__(self, process: psutil.Process | None = None) -> None:
        self._process = process or psutil.Process()

    def read(self) -> ProcessStats:
        with self._process.oneshot():
            memory_percent = self._process.memory_percent()
            rss = self._process.memory_info().rss
            cpu = self._process.cpu_times()
            created = self._process.create_time()
        return ProcessStats(
            memory_percent=memory_percent,
            rss_bytes=rss,
            cpu_seconds=cpu.user + cpu.system,
            create_time=created,
        )
