"""Unit tests for the rollback trigger monitor."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from rollout.domain.models.config import DeploymentConfig, RollbackThresholds
from rollout.domain.models.quality import QualityCheck
from rollout.domain.models.rollback_trigger import RollbackTrigger
from rollout.domain.models.workload import Workload
from rollout.infrastructure.simulation.control_plane import SimulatedControlPlane
from rollout.infrastructure.simulation.endpoint_checker import (
    error_rate_sample,
    ScriptedEndpointChecker,
)
from rollout.infrastructure.simulation.quality_analyzer import StaticQualityAnalyzer
from rollout.workers.trigger_monitor import RollbackTriggerMonitor


ConfigFactory = Callable[..., DeploymentConfig]


class BreachRecorder:
    def __init__(self) -> None:
        self.reasons: list[str] = []
        self.fired = asyncio.Event()

    async def __call__(self, reason: str) -> None:
        self.reasons.append(reason)
        self.fired.set()


def _trigger(active: bool = True, **thresholds: float) -> RollbackTrigger:
    return RollbackTrigger(
        deployment_id="d-1",
        thresholds=RollbackThresholds(**thresholds),
        active=active,
    )


async def _settle(monitor: RollbackTriggerMonitor, polls: int = 5) -> None:
    for _ in range(polls):
        await monitor.poll_once()


class TestRollbackTriggerMonitor:
    @pytest.mark.asyncio
    async def test_healthy_workload_does_not_fire(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        previous_workload: Workload,
    ) -> None:
        breach = BreachRecorder()
        monitor.watch(_trigger(), previous_workload, make_config(), breach)
        await _settle(monitor)

        assert breach.reasons == []
        assert monitor.watched == ["d-1"]
        assert monitor.get_health()["watched_deployments"] == 1

    @pytest.mark.asyncio
    async def test_error_rate_breach_fires_once(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        checker: ScriptedEndpointChecker,
        previous_workload: Workload,
    ) -> None:
        checker.set_workload(previous_workload, error_rate_sample(0.2))
        breach = BreachRecorder()
        monitor.watch(_trigger(), previous_workload, make_config(), breach)

        await asyncio.wait_for(breach.fired.wait(), timeout=1.0)
        await _settle(monitor)

        assert len(breach.reasons) == 1
        assert breach.reasons[0].startswith("error rate 0.2000 exceeds ceiling")

    @pytest.mark.asyncio
    async def test_inactive_trigger_ignored(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        checker: ScriptedEndpointChecker,
        previous_workload: Workload,
    ) -> None:
        checker.set_workload(previous_workload, error_rate_sample(0.5))
        breach = BreachRecorder()
        monitor.watch(_trigger(active=False), previous_workload, make_config(), breach)
        await _settle(monitor)

        assert breach.reasons == []

    @pytest.mark.asyncio
    async def test_unwatch(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        checker: ScriptedEndpointChecker,
        previous_workload: Workload,
    ) -> None:
        breach = BreachRecorder()
        trigger = _trigger(active=False)
        monitor.watch(trigger, previous_workload, make_config(), breach)
        monitor.unwatch("d-1")
        monitor.unwatch("d-1")

        checker.set_workload(previous_workload, error_rate_sample(0.5))
        trigger.activate()
        await _settle(monitor)

        assert breach.reasons == []
        assert monitor.watched == []

    @pytest.mark.asyncio
    async def test_lost_probe_targets_is_a_breach(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        control_plane: SimulatedControlPlane,
        previous_workload: Workload,
    ) -> None:
        control_plane.inject_outage("list_endpoints")
        breach = BreachRecorder()
        monitor.watch(_trigger(), previous_workload, make_config(), breach)

        await asyncio.wait_for(breach.fired.wait(), timeout=1.0)
        assert breach.reasons[0].startswith("health cannot be determined")

    @pytest.mark.asyncio
    async def test_quality_floor(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        quality_analyzer: StaticQualityAnalyzer,
        previous_workload: Workload,
    ) -> None:
        quality_analyzer.set_check("shop", "v1", QualityCheck(score=3.0, passed=False))
        breach = BreachRecorder()
        monitor.watch(_trigger(min_quality_score=6.0), previous_workload, make_config(), breach)

        await asyncio.wait_for(breach.fired.wait(), timeout=1.0)
        assert breach.reasons == ["quality score 3.0 below minimum 6.0"]

    @pytest.mark.asyncio
    async def test_quality_floor_without_data_is_a_breach(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        previous_workload: Workload,
    ) -> None:
        breach = BreachRecorder()
        monitor.watch(_trigger(min_quality_score=8.0), previous_workload, make_config(), breach)

        await asyncio.wait_for(breach.fired.wait(), timeout=1.0)
        assert breach.reasons == ["quality cannot be determined: no quality data"]

    @pytest.mark.asyncio
    async def test_failing_quality_analyzer_is_a_breach(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        quality_analyzer: StaticQualityAnalyzer,
        previous_workload: Workload,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def _down(application: str, version: str) -> QualityCheck | None:
            raise RuntimeError("analyzer down")

        monkeypatch.setattr(quality_analyzer, "latest_check", _down)
        breach = BreachRecorder()
        monitor.watch(_trigger(min_quality_score=8.0), previous_workload, make_config(), breach)

        await asyncio.wait_for(breach.fired.wait(), timeout=1.0)
        assert breach.reasons == ["quality cannot be determined: RuntimeError: analyzer down"]

    @pytest.mark.asyncio
    async def test_one_failing_watch_does_not_starve_others(
        self,
        monitor: RollbackTriggerMonitor,
        make_config: ConfigFactory,
        checker: ScriptedEndpointChecker,
        previous_workload: Workload,
        target_workload: Workload,
    ) -> None:
        checker.set_workload(previous_workload, error_rate_sample(0.2))
        broken = BreachRecorder()
        degraded = BreachRecorder()

        async def _crash(reason: str) -> None:
            await broken(reason)
            raise RuntimeError("callback bug")

        monitor.watch(_trigger(), target_workload, make_config(), _crash)
        other = RollbackTrigger(deployment_id="d-2", thresholds=RollbackThresholds(), active=True)
        monitor.watch(other, previous_workload, make_config(), degraded)
        await _settle(monitor, polls=1)

        assert broken.reasons and broken.reasons[0].startswith("health cannot be determined")
        assert degraded.reasons[0].startswith("error rate 0.2000 exceeds ceiling")
