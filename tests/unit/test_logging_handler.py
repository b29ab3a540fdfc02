"""Tests for MetricsLogHandler."""

import logging
from collections.abc import Iterator

import pytest

from vigilpy.adapters.logging import MetricsLogHandler
from vigilpy.core.metrics import MetricsStore


@pytest.fixture
def app_logger(metrics: MetricsStore) -> Iterator[logging.Logger]:
    logger = logging.getLogger("vigilpy.tests.app")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = MetricsLogHandler(metrics)
    logger.addHandler(handler)
    yield logger
    logger.removeHandler(handler)


class TestMetricsLogHandler:
    """Tests for counting log records as metrics."""

    @pytest.mark.tier(1)
    def test_counts_every_record(
        self, app_logger: logging.Logger, metrics: MetricsStore
    ) -> None:
        """Each record increments the running total."""
        app_logger.info("started")
        app_logger.debug("details")
        assert metrics.current_value("log_records_total") == 2
        latest = metrics.latest("log_records_total")
        assert latest is not None
        assert latest.tags == {"level": "DEBUG", "logger": "vigilpy.tests.app"}
        assert latest.value == 1
        info = {"level": "INFO", "logger": "vigilpy.tests.app"}
        assert metrics.counter_value("log_records_total", info) == 1

    @pytest.mark.tier(1)
    def test_errors_counted_separately(
        self, app_logger: logging.Logger, metrics: MetricsStore
    ) -> None:
        """ERROR and CRITICAL records also count as errors."""
        app_logger.warning("slow")
        app_logger.error("failed")
        app_logger.critical("down")
        assert metrics.current_value("log_records_total") == 3
        assert metrics.current_value("log_errors_total") == 2

    @pytest.mark.tier(1)
    def test_respects_level_and_metric_name(self, metrics: MetricsStore) -> None:
        """Records below the handler level are ignored."""
        logger = logging.getLogger("vigilpy.tests.level")
        logger.propagate = False
        logger.setLevel(logging.DEBUG)
        handler = MetricsLogHandler(metrics, level=logging.WARNING, metric_name="app_logs")
        logger.addHandler(handler)
        try:
            logger.info("ignored")
            logger.warning("counted")
        finally:
            logger.removeHandler(handler)
        assert metrics.current_value("app_logs") == 1
        assert metrics.current_value("log_records_total") is None
