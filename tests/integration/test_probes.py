"""Integration tests for the httpx and aiosqlite probe adapters."""

import json
from pathlib import Path

import httpx
import pytest

from vigilpy.adapters.clock import ManualClock
from vigilpy.adapters.probes import HttpxProbe, SQLiteProbe
from vigilpy.core.models import ProbeConfig, SyntheticTestType
from vigilpy.core.ports import DatabaseProbePort, HttpProbePort
from vigilpy.core.synthetic import SyntheticTestRunner

pytestmark = [pytest.mark.tier(2), pytest.mark.probes]

HEALTH_URL = "http://backend.test/health"


class TestHttpxProbe:
    """Tests for HttpxProbe against a mock transport."""

    async def test_reports_status_and_body_size(self) -> None:
        """The probe returns the status and response measurements."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"ok"))
        async with HttpxProbe(transport=transport) as probe:
            assert isinstance(probe, HttpProbePort)
            response = await probe.request("GET", HEALTH_URL, timeout=1.0)
        assert response.status_code == 200
        assert response.metrics["data_size"] == 2.0
        assert response.metrics["header_count"] >= 1

    async def test_sends_method_headers_and_json_body(self) -> None:
        """Method, headers and JSON body reach the server."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(401)

        async with HttpxProbe(transport=httpx.MockTransport(handler)) as probe:
            response = await probe.request(
                "POST",
                "http://backend.test/auth/login",
                headers={"X-Probe": "synthetic"},
                body={"email": "test@example.com"},
                timeout=1.0,
            )
        assert response.status_code == 401
        [request] = seen
        assert request.method == "POST"
        assert request.headers["X-Probe"] == "synthetic"
        assert json.loads(request.content) == {"email": "test@example.com"}

    async def test_transport_errors_propagate(self) -> None:
        """Connection failures surface as httpx errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with HttpxProbe(transport=httpx.MockTransport(handler)) as probe:
            with pytest.raises(httpx.ConnectError):
                await probe.request("GET", HEALTH_URL, timeout=1.0)

    async def test_borrowed_client_left_open(self) -> None:
        """A client passed in is not closed by the probe."""
        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        async with httpx.AsyncClient(transport=transport) as client:
            probe = HttpxProbe(client=client)
            await probe.aclose()
            assert not client.is_closed
            response = await probe.request("GET", HEALTH_URL)
            assert response.status_code == 204


class TestSyntheticWithHttpx:
    """Tests for synthetic tests running through HttpxProbe."""

    async def test_slow_response_fails_test(self) -> None:
        """A 200 that takes 1.5s fails a test expecting 1000ms."""
        clock = ManualClock()

        def handler(request: httpx.Request) -> httpx.Response:
            clock.advance(1.5)
            return httpx.Response(200, content=b"{}")

        async with HttpxProbe(transport=httpx.MockTransport(handler)) as probe:
            runner = SyntheticTestRunner(clock, http_probe=probe)
            test_id = runner.add_test(
                "Health Check Endpoint",
                SyntheticTestType.HTTP,
                ProbeConfig(url=HEALTH_URL, expected_response_time_ms=1000),
                "*/2 * * * *",
            )
            result = await runner.run_test(test_id)
        assert result is not None
        assert result.status_code == 200
        assert result.success is False
        assert result.response_time_ms == pytest.approx(1500.0, abs=1e-3)

    async def test_connection_error_recorded(self) -> None:
        """Transport errors become failed results with the error text."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with HttpxProbe(transport=httpx.MockTransport(handler)) as probe:
            runner = SyntheticTestRunner(ManualClock(), http_probe=probe)
            test_id = runner.add_test(
                "Health Check Endpoint",
                SyntheticTestType.HTTP,
                ProbeConfig(url=HEALTH_URL),
                60,
            )
            result = await runner.run_test(test_id)
        assert result is not None
        assert not result.success
        assert result.error == "connection refused"


class TestSQLiteProbe:
    """Tests for SQLiteProbe."""

    async def test_ping_file_database(self, tmp_path: Path) -> None:
        """A ping against a file database reports its timings."""
        probe = SQLiteProbe(str(tmp_path / "app.db"))
        assert isinstance(probe, DatabaseProbePort)
        metrics = await probe.ping()
        assert set(metrics) == {"connect_time_ms", "query_time_ms"}
        assert all(v >= 0 for v in metrics.values())

    async def test_ping_memory_database(self) -> None:
        """The default in-memory database answers."""
        metrics = await SQLiteProbe().ping()
        assert metrics["query_time_ms"] >= 0

    async def test_unreachable_database_fails_test(self, tmp_path: Path) -> None:
        """A database that cannot be opened fails the synthetic test."""
        probe = SQLiteProbe(str(tmp_path / "missing" / "app.db"))
        runner = SyntheticTestRunner(ManualClock(), database_probe=probe)
        test_id = runner.add_test(
            "Database Connectivity",
            SyntheticTestType.DATABASE,
            ProbeConfig(expected_response_time_ms=500, timeout_ms=5000),
            "*/5 * * * *",
        )
        result = await runner.run_test(test_id)
        assert result is not None
        assert not result.success
        assert result.error
