"""Simulated control plane for development and testing."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from rollout.domain.models.health import Endpoint
from rollout.domain.models.workload import Workload
from rollout.domain.ports.services import ControlPlane


logger = structlog.get_logger(__name__)

_Pair = tuple[str, str]


class ControlPlaneUnavailableError(ConnectionError):
    """Raised by the simulator when an outage has been injected."""


class SimulatedControlPlane(ControlPlane):
    """Keeps replica counts and traffic weights in memory.

    Traffic weights are whole percentages per version summing to 100 (or
    empty before anything serves). Every call is appended to ``history`` so
    tests can assert on the exact sequence of actions.
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._latency_seconds = latency_seconds
        self._replicas: dict[_Pair, dict[str, int]] = {}
        self._weights: dict[_Pair, dict[str, int]] = {}
        self._outages: set[str] = set()
        self.history: list[tuple[str, str, Any]] = []

    # ------------------------------------------------------------------
    # Test and demo helpers
    # ------------------------------------------------------------------

    def seed(self, workload: Workload, replicas: int) -> None:
        """Make ``workload`` the only running version, serving all traffic."""
        pair = (workload.application, workload.environment)
        self._replicas[pair] = {workload.version: replicas}
        self._weights[pair] = {workload.version: 100}

    def inject_outage(self, *operations: str) -> None:
        """Make the named operations (e.g. ``"list_endpoints"``) raise."""
        self._outages.update(operations)

    def clear_outages(self) -> None:
        self._outages.clear()

    def weights(self, application: str, environment: str) -> dict[str, int]:
        return dict(self._weights.get((application, environment), {}))

    def replica_counts(self, application: str, environment: str) -> dict[str, int]:
        return dict(self._replicas.get((application, environment), {}))

    def actions(self, operation: str | None = None) -> list[tuple[str, str, Any]]:
        return [a for a in self.history if operation is None or a[0] == operation]

    # ------------------------------------------------------------------
    # ControlPlane
    # ------------------------------------------------------------------

    async def _call(self, operation: str, target: str, value: Any = None) -> None:
        if operation in self._outages:
            raise ControlPlaneUnavailableError(f"control plane unavailable for {operation}")
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        if operation in ("scale", "shift_traffic", "swap"):
            self.history.append((operation, target, value))

    async def scale(self, workload: Workload, replicas: int) -> None:
        await self._call("scale", workload.name, replicas)
        pair = (workload.application, workload.environment)
        self._replicas.setdefault(pair, {})[workload.version] = replicas
        logger.debug("sim_scaled", workload=workload.name, replicas=replicas)

    async def shift_traffic(self, workload: Workload, percent: int) -> None:
        await self._call("shift_traffic", workload.name, percent)
        pair = (workload.application, workload.environment)
        current = self._weights.get(pair, {})
        others = {v: w for v, w in current.items() if v != workload.version}
        remaining = 100 - percent

        weights = {workload.version: percent}
        total_other = sum(others.values())
        if total_other > 0:
            # Split the remainder in proportion to the other versions' current share.
            assigned = 0
            ordered = sorted(others.items(), key=lambda kv: kv[1], reverse=True)
            for i, (version, weight) in enumerate(ordered):
                share = remaining - assigned if i == len(ordered) - 1 else remaining * weight // total_other
                weights[version] = share
                assigned += share
        elif remaining > 0:
            running = {
                v: r for v, r in self._replicas.get(pair, {}).items()
                if v != workload.version and r > 0
            }
            if running:
                weights[max(running, key=lambda v: running[v])] = remaining
            else:
                weights[workload.version] = 100

        self._weights[pair] = {v: w for v, w in weights.items() if w > 0}
        logger.debug("sim_traffic_shifted", workload=workload.name, weights=self._weights[pair])

    async def swap(self, blue: Workload, green: Workload) -> None:
        await self._call("swap", green.name, blue.name)
        pair = (green.application, green.environment)
        weights = {v: w for v, w in self._weights.get(pair, {}).items() if v != blue.version}
        weights.pop(green.version, None)
        weights[green.version] = 100 - sum(weights.values())
        self._weights[pair] = weights
        logger.debug("sim_swapped", blue=blue.name, green=green.name)

    async def list_endpoints(self, workload: Workload) -> list[Endpoint]:
        await self._call("list_endpoints", workload.name)
        count = await self.get_replicas(workload)
        return [
            Endpoint(
                id=f"{workload.name}-{i}",
                url=f"http://{workload.name}-{i}.sim.local",
                workload=workload.name,
            )
            for i in range(count)
        ]

    async def get_replicas(self, workload: Workload) -> int:
        await self._call("get_replicas", workload.name)
        pair = (workload.application, workload.environment)
        return self._replicas.get(pair, {}).get(workload.version, 0)

    async def serving_version(self, application: str, environment: str) -> str | None:
        await self._call("serving_version", f"{application}-{environment}")
        weights = self._weights.get((application, environment), {})
        if not weights:
            return None
        return max(weights, key=lambda v: weights[v])
