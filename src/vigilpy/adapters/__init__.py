"""Adapters implementing core ports."""

from vigilpy.adapters.clock import ManualClock, SystemClock
from vigilpy.adapters.logging import MetricsLogHandler
from vigilpy.adapters.probes import HttpxProbe, SQLiteProbe
from vigilpy.adapters.process import PsutilProcessStats
from vigilpy.adapters.scheduling import AsyncioScheduler, ManualScheduler

__all__ = [
    "AsyncioScheduler",
    "HttpxProbe",
    "ManualClock",
    "ManualScheduler",
    "MetricsLogHandler",
    "PsutilProcessStats",
    "SQLiteProbe",
    "SystemClock",
]
