"""Prometheus metrics configuration.

Deployment metrics are derived from the domain event stream by
:class:`MetricsEventPublisher`, so domain code never touches Prometheus.
"""

from __future__ import annotations

from typing import Any

from prometheus_client import (
    Counter,
    Histogram,
    Info,
)

from rollout.domain.ports.services import EventPublisher


# Application info
APP_INFO = Info("rollout", "Rollout orchestrator application info")
APP_INFO.info({
    "version": "1.0.0",
    "service": "rollout-orchestrator",
})

# Deployment metrics
DEPLOYMENTS_REQUESTED = Counter(
    "rollout_deployments_requested_total",
    "Total number of deployments requested",
    ["environment"],
)

DEPLOYMENTS_TOTAL = Counter(
    "rollout_deployments_total",
    "Total number of deployments by terminal status",
    ["status"],
)

STAGES_TOTAL = Counter(
    "rollout_stages_total",
    "Total number of strategy stages by outcome",
    ["outcome"],
)

ROLLBACKS_TOTAL = Counter(
    "rollout_rollbacks_total",
    "Total number of rollbacks started",
)

OPERATOR_ALERTS_TOTAL = Counter(
    "rollout_operator_alerts_total",
    "Total operator-facing alerts raised",
    ["severity"],
)

# Probe metrics
PROBE_DURATION = Histogram(
    "rollout_probe_duration_seconds",
    "Time taken to sample one endpoint",
    ["status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# API metrics
API_REQUESTS_TOTAL = Counter(
    "rollout_api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status_code"],
)

_TERMINAL_EVENTS = {
    "deployment.succeeded": "succeeded",
    "deployment.failed": "failed",
    "deployment.cancelled": "cancelled",
    "deployment.rolled_back": "rolled_back",
    "deployment.rollback_failed": "rollback_failed",
}


def record_event_metrics(event_type: str, payload: dict[str, Any]) -> None:
    """Update counters for one published domain event."""
    if event_type == "deployment.requested":
        DEPLOYMENTS_REQUESTED.labels(environment=payload.get("environment", "")).inc()
    elif event_type in _TERMINAL_EVENTS:
        DEPLOYMENTS_TOTAL.labels(status=_TERMINAL_EVENTS[event_type]).inc()
    elif event_type == "deployment.stage_completed":
        STAGES_TOTAL.labels(outcome=payload.get("outcome", "")).inc()
    elif event_type == "deployment.rollback_started":
        ROLLBACKS_TOTAL.inc()
    elif event_type == "deployment.operator_alert":
        OPERATOR_ALERTS_TOTAL.labels(severity=payload.get("severity", "")).inc()


class MetricsEventPublisher(EventPublisher):
    """Decorator that records metrics before forwarding to another publisher."""

    def __init__(self, inner: EventPublisher) -> None:
        self._inner = inner

    @property
    def inner(self) -> EventPublisher:
        return self._inner

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        record_event_metrics(event_type, payload)
        await self._inner.publish(event_type, payload)

    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        for event_type, payload in events:
            record_event_metrics(event_type, payload)
        await self._inner.publish_batch(events)
