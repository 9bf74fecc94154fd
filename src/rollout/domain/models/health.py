"""Health observation models produced by the health prober."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from pydantic import Field

from rollout.domain.models.base import utc_now, ValueObject


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Endpoint(ValueObject):
    """A single probe target: one replica or one service endpoint."""

    id: str
    url: str = ""
    workload: str = ""


class EndpointSample(ValueObject):
    """What one endpoint checker observed for one target over a window."""

    status: HealthStatus
    error_rate: float = Field(default=0.0, ge=0, le=1)
    latencies_ms: list[float] = Field(default_factory=list)
    requests: int = 0
    message: str = ""


class TargetHealth(ValueObject):
    endpoint_id: str
    status: HealthStatus
    error_rate: float = 0.0
    p95_latency_ms: float = 0.0
    message: str = ""


class HealthSnapshot(ValueObject):
    status: HealthStatus
    targets: list[TargetHealth] = Field(default_factory=list)
    error_rate: float = 0.0
    p95_latency_ms: float = 0.0
    window_seconds: float = 0.0
    observed_at: datetime = Field(default_factory=utc_now)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @property
    def unhealthy_targets(self) -> list[str]:
        return [t.endpoint_id for t in self.targets if t.status == HealthStatus.UNHEALTHY]


def percentile(values: list[float], pct: float) -> float:
    """Nearest-rank percentile; 0.0 for an empty sample."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]
