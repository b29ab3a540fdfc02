"""Probe adapters for synthetic tests.

HttpxProbe implements HttpProbePort on an httpx.AsyncClient; SQLiteProbe
implements DatabaseProbePort with an aiosqlite ``SELECT 1``.
"""

import time
from types import TracebackType
from typing import Any

import aiosqlite
import httpx

from vigilpy.core.ports import ProbeResponse


class HttpxProbe:
    """HTTP probe backed by httpx.

    Example:
        ```python
        async with HttpxProbe() as probe:
            response = await probe.request("GET", "http://localhost:3000/health")
        ```

    Args:
        client: Client to issue requests with. If omitted, the probe
            creates one and closes it in ``aclose``.
        transport: Transport for the owned client (e.g. httpx.MockTransport).
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport)

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> ProbeResponse:
        """Issue the request; transport errors propagate as httpx exceptions."""
        response = await self._client.request(
            method,
            url,
            headers=headers,
            json=body,
            timeout=timeout,
        )
        return ProbeResponse(
            status_code=response.status_code,
            metrics={
                "data_size": float(len(response.content)),
                "header_count": float(len(response.headers)),
            },
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxProbe":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class SQLiteProbe:
    """Database connectivity probe running ``SELECT 1`` through aiosqlite.

    Args:
        db_path: Path to the SQLite database, or ":memory:".
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path

    async def ping(self) -> dict[str, float]:
        started = time.perf_counter()
        async with aiosqlite.connect(self._db_path) as db:
            connected = time.perf_counter()
            async with db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
        if row is None or row[0] != 1:
            raise RuntimeError("Connectivity query returned no rows")
        finished = time.perf_counter()
        return {
            "connect_time_ms": (connected - started) * 1000,
            "query_time_ms": (finished - connected) * 1000,
        }
