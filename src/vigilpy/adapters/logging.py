"""Python logging handler adapter for vigilpy.

This adapter bridges Python's standard library logging module to the
MetricsStore, counting log records per level and logger so that error
bursts show up next to the other service metrics.
"""

import logging

from vigilpy.core.metrics import MetricsStore

LOG_RECORDS_METRIC = "log_records_total"


class MetricsLogHandler(logging.Handler):
    """Logging handler that counts records into a MetricsStore.

    Each record increments ``log_records_total`` tagged with its level and
    logger name, and records at ERROR or above also increment
    ``log_errors_total``.

    Example:
        ```python
        from vigilpy import MetricsLogHandler, MetricsStore, SystemClock

        store = MetricsStore(SystemClock())
        logging.getLogger().addHandler(MetricsLogHandler(store))
        ```
    """

    def __init__(
        self,
        store: MetricsStore,
        level: int = logging.NOTSET,
        metric_name: str = LOG_RECORDS_METRIC,
    ) -> None:
        """Initialize the handler with a metrics store.

        Args:
            store: Store the counters are recorded into.
            level: Minimum level handled.
            metric_name: Name of the per-record counter.
        """
        super().__init__(level)
        self._store = store
        self._metric_name = metric_name

    def emit(self, record: logging.LogRecord) -> None:
        """Count a log record.

        Args:
            record: The log record to count.
        """
        try:
            tags = {"level": record.levelname, "logger": record.name}
            self._store.increment_counter(self._metric_name, tags)
            if record.levelno >= logging.ERROR:
                self._store.increment_counter("log_errors_total", tags)
        except Exception:
            self.handleError(record)
