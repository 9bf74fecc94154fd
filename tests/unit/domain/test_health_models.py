"""Unit tests for health models and rollback triggers."""

from __future__ import annotations

import pytest

from rollout.domain.models.config import RollbackThresholds
from rollout.domain.models.health import HealthSnapshot, HealthStatus, percentile, TargetHealth
from rollout.domain.models.rollback_trigger import RollbackTrigger


class TestPercentile:
    def test_empty(self) -> None:
        assert percentile([], 95) == 0.0

    def test_nearest_rank(self) -> None:
        values = [float(v) for v in range(1, 101)]
        assert percentile(values, 95) == 95.0
        assert percentile(values, 50) == 50.0

    def test_single_value(self) -> None:
        assert percentile([42.0], 95) == 42.0

    def test_unsorted_input(self) -> None:
        assert percentile([30.0, 10.0, 20.0], 100) == 30.0


class TestHealthSnapshot:
    def test_unhealthy_targets(self) -> None:
        snapshot = HealthSnapshot(
            status=HealthStatus.UNHEALTHY,
            targets=[
                TargetHealth(endpoint_id="a", status=HealthStatus.HEALTHY),
                TargetHealth(endpoint_id="b", status=HealthStatus.UNHEALTHY),
            ],
        )
        assert not snapshot.is_healthy
        assert snapshot.unhealthy_targets == ["b"]


class TestRollbackTrigger:
    @pytest.fixture
    def trigger(self) -> RollbackTrigger:
        return RollbackTrigger(
            deployment_id="d-1",
            thresholds=RollbackThresholds(
                max_error_rate=0.05, max_p95_latency_ms=500, min_quality_score=6.0
            ),
        )

    def test_inactive_by_default(self, trigger: RollbackTrigger) -> None:
        assert not trigger.active
        trigger.activate()
        assert trigger.active
        trigger.deactivate()
        assert not trigger.active

    def test_within_thresholds(self, trigger: RollbackTrigger) -> None:
        snapshot = HealthSnapshot(status=HealthStatus.HEALTHY, error_rate=0.01, p95_latency_ms=100)
        assert trigger.evaluate(snapshot, quality_score=8.0) is None

    def test_unhealthy_breaches(self, trigger: RollbackTrigger) -> None:
        snapshot = HealthSnapshot(status=HealthStatus.UNHEALTHY)
        reason = trigger.evaluate(snapshot)
        assert reason is not None
        assert reason.startswith("health unhealthy")

    def test_error_rate_breaches(self, trigger: RollbackTrigger) -> None:
        snapshot = HealthSnapshot(status=HealthStatus.DEGRADED, error_rate=0.2)
        reason = trigger.evaluate(snapshot)
        assert reason is not None
        assert "error rate" in reason

    def test_latency_breaches(self, trigger: RollbackTrigger) -> None:
        snapshot = HealthSnapshot(status=HealthStatus.HEALTHY, p95_latency_ms=900)
        reason = trigger.evaluate(snapshot)
        assert reason is not None
        assert "p95 latency" in reason

    def test_quality_score_breaches(self, trigger: RollbackTrigger) -> None:
        snapshot = HealthSnapshot(status=HealthStatus.HEALTHY)
        reason = trigger.evaluate(snapshot, quality_score=4.0)
        assert reason is not None
        assert "quality score" in reason

    def test_missing_quality_score_is_ignored(self, trigger: RollbackTrigger) -> None:
        snapshot = HealthSnapshot(status=HealthStatus.HEALTHY)
        assert trigger.evaluate(snapshot, quality_score=None) is None
