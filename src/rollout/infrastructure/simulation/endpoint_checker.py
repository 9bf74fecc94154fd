"""Scripted endpoint checker for development and testing."""

from __future__ import annotations

import asyncio

from rollout.domain.models.health import Endpoint, EndpointSample, HealthStatus
from rollout.domain.models.workload import Workload
from rollout.domain.ports.services import EndpointChecker


HEALTHY_SAMPLE = EndpointSample(
    status=HealthStatus.HEALTHY, error_rate=0.0, latencies_ms=[25.0, 30.0, 35.0], requests=3
)


def unhealthy_sample(message: str = "simulated failure") -> EndpointSample:
    return EndpointSample(status=HealthStatus.UNHEALTHY, error_rate=1.0, requests=3, message=message)


def error_rate_sample(error_rate: float, latency_ms: float = 30.0) -> EndpointSample:
    """A reachable endpoint answering with ``error_rate`` failures."""
    status = HealthStatus.HEALTHY if error_rate == 0 else HealthStatus.DEGRADED
    return EndpointSample(
        status=status, error_rate=error_rate, latencies_ms=[latency_ms] * 3, requests=100
    )


class ScriptedEndpointChecker(EndpointChecker):
    """Returns configured samples; healthy unless told otherwise.

    Samples are looked up by endpoint id first, then by workload name.
    ``delay_seconds`` is slept per check (capped by the window) so probe
    deadlines can be exercised.
    """

    def __init__(
        self,
        default: EndpointSample = HEALTHY_SAMPLE,
        delay_seconds: float = 0.0,
    ) -> None:
        self._default = default
        self._delay_seconds = delay_seconds
        self._by_endpoint: dict[str, EndpointSample] = {}
        self._by_workload: dict[str, EndpointSample] = {}
        self._failing: set[str] = set()
        self.checked: list[str] = []

    def set_workload(self, workload: Workload, sample: EndpointSample) -> None:
        self._by_workload[workload.name] = sample

    def set_endpoint(self, endpoint_id: str, sample: EndpointSample) -> None:
        self._by_endpoint[endpoint_id] = sample

    def fail_workload(self, workload: Workload) -> None:
        """Make checks against ``workload`` raise, as if it were unreachable."""
        self._failing.add(workload.name)

    def set_delay(self, seconds: float) -> None:
        self._delay_seconds = seconds

    def reset(self) -> None:
        self._by_endpoint.clear()
        self._by_workload.clear()
        self._failing.clear()

    async def check(self, endpoint: Endpoint, window_seconds: float) -> EndpointSample:
        self.checked.append(endpoint.id)
        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)
        if endpoint.workload in self._failing:
            raise ConnectionRefusedError(f"{endpoint.id} refused connection")
        if endpoint.id in self._by_endpoint:
            return self._by_endpoint[endpoint.id]
        return self._by_workload.get(endpoint.workload, self._default)
