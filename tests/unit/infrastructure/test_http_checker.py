"""Unit tests for the httpx endpoint checker."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from rollout.domain.models.health import Endpoint, HealthStatus
from rollout.infrastructure.probing.http_checker import HttpEndpointChecker


ENDPOINT = Endpoint(id="shop-staging-v2-0", url="http://shop-staging-v2-0.local/")


def _checker(handler: Callable[[httpx.Request], httpx.Response], requests: int = 4) -> HttpEndpointChecker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpEndpointChecker(client=client, requests_per_window=requests)


class TestHttpEndpointChecker:
    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"status": "ok"})

        sample = await _checker(handler).check(ENDPOINT, window_seconds=0)

        assert sample.status == HealthStatus.HEALTHY
        assert sample.error_rate == 0.0
        assert sample.requests == 4
        assert len(sample.latencies_ms) == 4
        assert seen[0] == "http://shop-staging-v2-0.local/healthz"

    @pytest.mark.asyncio
    async def test_some_server_errors_degrade(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(503 if calls["n"] == 1 else 200)

        sample = await _checker(handler).check(ENDPOINT, window_seconds=0)

        assert sample.status == HealthStatus.DEGRADED
        assert sample.error_rate == 0.25
        assert sample.message == "HTTP 503"

    @pytest.mark.asyncio
    async def test_client_errors_are_not_failures(self) -> None:
        sample = await _checker(lambda r: httpx.Response(404)).check(ENDPOINT, window_seconds=0)
        assert sample.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_connection_refused_is_unhealthy(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        sample = await _checker(handler, requests=2).check(ENDPOINT, window_seconds=0)

        assert sample.status == HealthStatus.UNHEALTHY
        assert sample.error_rate == 1.0
        assert "ConnectError" in sample.message
        assert sample.latencies_ms == []

    @pytest.mark.asyncio
    async def test_endpoint_without_url(self) -> None:
        checker = HttpEndpointChecker(requests_per_window=1)
        sample = await checker.check(Endpoint(id="e-0"), window_seconds=0)
        assert sample.status == HealthStatus.UNHEALTHY
        assert sample.message == "endpoint has no url"
        await checker.close()
