"""HTTP endpoint checker sampling health endpoints with httpx."""

from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from rollout.domain.models.health import Endpoint, EndpointSample, HealthStatus
from rollout.domain.ports.services import EndpointChecker
from rollout.infrastructure.observability.metrics import PROBE_DURATION


logger = structlog.get_logger(__name__)


class HttpEndpointChecker(EndpointChecker):
    """Sends ``requests_per_window`` GETs to an endpoint spread over the window.

    5xx responses and transport errors count as errors. Every request
    failing makes the endpoint unhealthy; some failing makes it degraded.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        health_path: str = "/healthz",
        requests_per_window: int = 5,
        request_timeout_seconds: float = 2.0,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._health_path = health_path
        self._requests_per_window = max(1, requests_per_window)
        self._request_timeout_seconds = request_timeout_seconds

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._request_timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def check(self, endpoint: Endpoint, window_seconds: float) -> EndpointSample:
        if not endpoint.url:
            return EndpointSample(
                status=HealthStatus.UNHEALTHY, error_rate=1.0, message="endpoint has no url"
            )

        url = endpoint.url.rstrip("/") + self._health_path
        interval = window_seconds / self._requests_per_window
        latencies: list[float] = []
        errors = 0
        last_error = ""

        started = time.monotonic()
        for i in range(self._requests_per_window):
            if i > 0 and interval > 0:
                await asyncio.sleep(interval)
            began = time.monotonic()
            try:
                response = await self._get_client().get(url)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                errors += 1
                last_error = f"{type(e).__name__}: {e}"
                continue
            except httpx.HTTPError as e:
                errors += 1
                last_error = str(e)
                continue
            latencies.append((time.monotonic() - began) * 1000)
            if response.status_code >= 500:
                errors += 1
                last_error = f"HTTP {response.status_code}"

        error_rate = errors / self._requests_per_window
        if errors == self._requests_per_window:
            status = HealthStatus.UNHEALTHY
        elif errors:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        PROBE_DURATION.labels(status=status.value).observe(time.monotonic() - started)
        if status != HealthStatus.HEALTHY:
            logger.info(
                "endpoint_check_errors",
                endpoint_id=endpoint.id,
                url=url,
                errors=errors,
                last_error=last_error,
            )
        return EndpointSample(
            status=status,
            error_rate=error_rate,
            latencies_ms=latencies,
            requests=self._requests_per_window,
            message=last_error,
        )
