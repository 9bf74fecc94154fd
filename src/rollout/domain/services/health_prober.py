"""Health prober: bounded parallel fan-out over endpoints."""

from __future__ import annotations

import asyncio
from collections.abc import Collection

import structlog

from rollout.domain.errors import ProbeUnavailableError, StageTimeoutError
from rollout.domain.models.health import (
    Endpoint,
    EndpointSample,
    HealthSnapshot,
    HealthStatus,
    percentile,
    TargetHealth,
)
from rollout.domain.models.workload import Workload
from rollout.domain.ports.services import ControlPlane, EndpointChecker


logger = structlog.get_logger(__name__)


class HealthProber:
    """Observes endpoints and aggregates their health.

    Purely observational: it never touches deployment state. A single
    unreachable endpoint is an unhealthy target; only a failure to enumerate
    targets at all is surfaced as ProbeUnavailableError.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        checker: EndpointChecker,
        concurrency: int = 16,
        soft_error_rate_ceiling: float = 0.02,
    ) -> None:
        self._control_plane = control_plane
        self._checker = checker
        self._concurrency = concurrency
        self._soft_error_rate_ceiling = soft_error_rate_ceiling

    async def probe_workload(
        self,
        workload: Workload,
        window_seconds: float,
        timeout_seconds: float,
        only: Collection[str] | None = None,
    ) -> HealthSnapshot:
        """Probe a workload's endpoints, optionally restricted to ``only`` ids."""
        try:
            endpoints = await self._control_plane.list_endpoints(workload)
        except ProbeUnavailableError:
            raise
        except Exception as e:
            logger.warning("probe_target_listing_failed", workload=workload.name, error=str(e))
            raise ProbeUnavailableError(
                f"Cannot list endpoints for {workload.name}: {e}"
            ) from e

        if only is not None:
            wanted = set(only)
            endpoints = [e for e in endpoints if e.id in wanted]
        return await self.probe(endpoints, window_seconds, timeout_seconds)

    async def probe(
        self,
        targets: list[Endpoint],
        window_seconds: float,
        timeout_seconds: float,
    ) -> HealthSnapshot:
        """Probe ``targets`` in parallel and join with a deadline.

        Probes still running at the deadline are cancelled and the whole
        fan-out fails with StageTimeoutError.
        """
        if not targets:
            raise ProbeUnavailableError("No probe targets available; health cannot be determined")

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(endpoint: Endpoint) -> tuple[Endpoint, EndpointSample]:
            async with semaphore:
                return endpoint, await self._sample(endpoint, window_seconds)

        tasks = [asyncio.ensure_future(_bounded(t)) for t in targets]
        try:
            _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "probe_fanout_timed_out",
                pending=len(pending),
                total=len(targets),
                timeout_seconds=timeout_seconds,
            )
            raise StageTimeoutError(
                f"{len(pending)} of {len(targets)} probes did not complete "
                f"within {timeout_seconds}s"
            )

        snapshot = self.aggregate([t.result() for t in tasks], window_seconds)
        logger.debug(
            "probe_completed",
            status=snapshot.status.value,
            targets=len(targets),
            error_rate=snapshot.error_rate,
            p95_latency_ms=snapshot.p95_latency_ms,
        )
        return snapshot

    def aggregate(
        self, samples: list[tuple[Endpoint, EndpointSample]], window_seconds: float
    ) -> HealthSnapshot:
        targets: list[TargetHealth] = []
        latencies: list[float] = []
        total_requests = 0
        weighted_errors = 0.0
        for endpoint, sample in samples:
            targets.append(TargetHealth(
                endpoint_id=endpoint.id,
                status=sample.status,
                error_rate=sample.error_rate,
                p95_latency_ms=percentile(sample.latencies_ms, 95),
                message=sample.message,
            ))
            latencies.extend(sample.latencies_ms)
            total_requests += sample.requests
            weighted_errors += sample.error_rate * sample.requests

        # Weight by request volume when checkers report it, else treat targets equally.
        if total_requests > 0:
            error_rate = weighted_errors / total_requests
        else:
            error_rate = sum(t.error_rate for t in targets) / len(targets) if targets else 0.0

        statuses = {t.status for t in targets}
        if HealthStatus.UNHEALTHY in statuses:
            status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses or error_rate > self._soft_error_rate_ceiling:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return HealthSnapshot(
            status=status,
            targets=targets,
            error_rate=error_rate,
            p95_latency_ms=percentile(latencies, 95),
            window_seconds=window_seconds,
        )

    async def _sample(self, endpoint: Endpoint, window_seconds: float) -> EndpointSample:
        try:
            return await self._checker.check(endpoint, window_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("probe_target_unreachable", endpoint_id=endpoint.id, error=str(e))
            return EndpointSample(
                status=HealthStatus.UNHEALTHY, error_rate=1.0, message=f"unreachable: {e}"
            )
