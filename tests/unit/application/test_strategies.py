"""Unit tests for rollout strategies."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from rollout.domain.errors import DeploymentCancelledError, StageFailureError, StageTimeoutError
from rollout.domain.models.config import DeploymentConfig
from rollout.domain.models.deployment import Deployment, StageOutcome
from rollout.domain.models.health import Endpoint
from rollout.domain.models.quality import QualityCheck
from rollout.domain.models.workload import Workload
from rollout.domain.services.cancellation import CancellationToken
from rollout.domain.services.health_prober import HealthProber
from rollout.domain.services.strategies import (
    BlueGreenStrategy,
    CanaryStrategy,
    RecreateStrategy,
    RollingStrategy,
    select_strategy,
    StageContext,
)
from rollout.infrastructure.simulation.control_plane import SimulatedControlPlane
from rollout.infrastructure.simulation.endpoint_checker import ScriptedEndpointChecker, unhealthy_sample
from rollout.infrastructure.simulation.quality_analyzer import StaticQualityAnalyzer


ConfigFactory = Callable[..., DeploymentConfig]


@pytest.fixture
def build_context(
    control_plane: SimulatedControlPlane,
    prober: HealthProber,
    quality_analyzer: StaticQualityAnalyzer,
) -> Callable[..., StageContext]:
    def _build(config: DeploymentConfig, token: CancellationToken | None = None) -> StageContext:
        deployment = Deployment.for_config(config)
        deployment.start_validation()
        deployment.previous_version = "v1"
        deployment.start_rollout(select_strategy(config).stage_count(config))

        async def _persist() -> None:
            deployment.collect_events()

        return StageContext(
            deployment=deployment,
            control_plane=control_plane,
            prober=prober,
            quality_analyzer=quality_analyzer,
            token=token or CancellationToken(),
            persist=_persist,
        )

    return _build


def _canary(*steps: tuple[int, float]) -> dict[str, Any]:
    return {"kind": "canary", "steps": [{"traffic_percent": p, "hold_seconds": h} for p, h in steps]}


def _shifts(control_plane: SimulatedControlPlane, target: str) -> list[Any]:
    return [v for _, t, v in control_plane.actions("shift_traffic") if t == target]


class LaggingControlPlane(SimulatedControlPlane):
    """Serves ``stale_listings`` outdated endpoint listings after every scale."""

    def __init__(self, stale_listings: int) -> None:
        super().__init__()
        self._stale_listings = stale_listings
        self._stale: dict[str, tuple[int, list[Endpoint]]] = {}

    async def scale(self, workload: Workload, replicas: int) -> None:
        current = await super().list_endpoints(workload)
        self._stale[workload.name] = (self._stale_listings, current)
        await super().scale(workload, replicas)

    async def list_endpoints(self, workload: Workload) -> list[Endpoint]:
        remaining, endpoints = self._stale.get(workload.name, (0, []))
        if remaining > 0:
            self._stale[workload.name] = (remaining - 1, endpoints)
            return endpoints
        return await super().list_endpoints(workload)


def _lagging_context(
    config: DeploymentConfig,
    control_plane: SimulatedControlPlane,
    checker: ScriptedEndpointChecker,
    quality_analyzer: StaticQualityAnalyzer,
    previous_workload: Workload,
) -> StageContext:
    control_plane.seed(previous_workload, config.replicas)
    deployment = Deployment.for_config(config)
    deployment.start_validation()
    deployment.previous_version = "v1"
    deployment.start_rollout(select_strategy(config).stage_count(config))

    async def _persist() -> None:
        deployment.collect_events()

    return StageContext(
        deployment=deployment,
        control_plane=control_plane,
        prober=HealthProber(control_plane, checker, concurrency=8),
        quality_analyzer=quality_analyzer,
        token=CancellationToken(),
        persist=_persist,
    )


class TestSelectStrategy:
    def test_selects_by_kind(self, make_config: ConfigFactory) -> None:
        assert isinstance(select_strategy(make_config()), RollingStrategy)
        assert isinstance(select_strategy(make_config(strategy={"kind": "blue_green"})), BlueGreenStrategy)
        assert isinstance(select_strategy(make_config(strategy=_canary((10, 0)))), CanaryStrategy)
        assert isinstance(select_strategy(make_config(strategy={"kind": "recreate"})), RecreateStrategy)


class TestRollingStrategy:
    @pytest.mark.parametrize(
        ("surge", "unavailable", "stages"),
        [(1, 0, 4), ("50%", "25%", 2), (2, 2, 2)],
    )
    @pytest.mark.asyncio
    async def test_fleet_stays_within_bounds(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
        surge: int | str,
        unavailable: int | str,
        stages: int,
    ) -> None:
        config = make_config(strategy={"kind": "rolling", "max_surge": surge, "max_unavailable": unavailable})
        strategy = RollingStrategy(config.strategy)  # type: ignore[arg-type]
        max_surge, max_unavailable = config.strategy.resolve(config.replicas)  # type: ignore[union-attr]
        ctx = build_context(config)

        await strategy.execute(ctx)

        counts = {"shop-staging-v1": 4, "shop-staging-v2": 0}
        for _, target, value in control_plane.actions("scale"):
            counts[target] = value
            total = sum(counts.values())
            assert total <= config.replicas + max_surge
            assert total >= config.replicas - max_unavailable
        assert counts == {"shop-staging-v1": 0, "shop-staging-v2": 4}
        assert len(ctx.deployment.stage_results) == stages
        assert control_plane.weights("shop", "staging") == {"v2": 100}

    @pytest.mark.asyncio
    async def test_probes_only_new_replicas(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        checker: ScriptedEndpointChecker,
    ) -> None:
        ctx = build_context(make_config())
        await RollingStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]
        assert checker.checked == [f"shop-staging-v2-{i}" for i in range(4)]

    @pytest.mark.asyncio
    async def test_unhealthy_stage_stops_rollout(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        checker: ScriptedEndpointChecker,
        control_plane: SimulatedControlPlane,
        target_workload: Workload,
    ) -> None:
        checker.set_workload(target_workload, unhealthy_sample())
        ctx = build_context(make_config())

        with pytest.raises(StageFailureError):
            await RollingStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        assert [r.outcome for r in ctx.deployment.stage_results] == [StageOutcome.FAILED]
        assert control_plane.replica_counts("shop", "staging") == {"v1": 4, "v2": 1}

    @pytest.mark.asyncio
    async def test_lagging_listing_is_read_again(
        self,
        make_config: ConfigFactory,
        checker: ScriptedEndpointChecker,
        quality_analyzer: StaticQualityAnalyzer,
        previous_workload: Workload,
    ) -> None:
        plane = LaggingControlPlane(stale_listings=1)
        ctx = _lagging_context(make_config(), plane, checker, quality_analyzer, previous_workload)

        await RollingStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        assert checker.checked == [f"shop-staging-v2-{i}" for i in range(4)]
        assert plane.replica_counts("shop", "staging") == {"v1": 0, "v2": 4}

    @pytest.mark.asyncio
    async def test_persistently_stale_listing_probes_whole_new_fleet(
        self,
        make_config: ConfigFactory,
        checker: ScriptedEndpointChecker,
        quality_analyzer: StaticQualityAnalyzer,
        previous_workload: Workload,
    ) -> None:
        plane = LaggingControlPlane(stale_listings=2)
        ctx = _lagging_context(make_config(), plane, checker, quality_analyzer, previous_workload)

        await RollingStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        expected = [f"shop-staging-v2-{i}" for n in range(1, 5) for i in range(n)]
        assert sorted(checker.checked) == sorted(expected)
        assert plane.weights("shop", "staging") == {"v2": 100}

    @pytest.mark.asyncio
    async def test_stage_deadline(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        checker: ScriptedEndpointChecker,
    ) -> None:
        checker.set_delay(1.0)
        ctx = build_context(make_config(stage_timeout_seconds=0.05))

        with pytest.raises(StageTimeoutError):
            await RollingStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]
        assert ctx.deployment.stage_results[0].outcome == StageOutcome.TIMED_OUT

    @pytest.mark.asyncio
    async def test_cancelled_before_first_action(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
    ) -> None:
        token = CancellationToken()
        token.cancel("stop")
        ctx = build_context(make_config(), token=token)

        with pytest.raises(DeploymentCancelledError):
            await RollingStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]
        assert control_plane.history == []
        assert ctx.deployment.stage_results[0].outcome == StageOutcome.ABORTED
        assert not ctx.deployment.has_side_effects


class TestCanaryStrategy:
    @pytest.mark.asyncio
    async def test_traffic_only_increases(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
    ) -> None:
        ctx = build_context(make_config(strategy=_canary((5, 0), (25, 0), (60, 0))))
        strategy = CanaryStrategy(ctx.config.strategy)  # type: ignore[arg-type]
        assert strategy.stage_count(ctx.config) == 4

        await strategy.execute(ctx)

        assert _shifts(control_plane, "shop-staging-v2") == [5, 25, 60, 100]
        assert control_plane.replica_counts("shop", "staging") == {"v1": 0, "v2": 4}

    @pytest.mark.asyncio
    async def test_failed_step_returns_traffic_to_zero(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
        quality_analyzer: StaticQualityAnalyzer,
    ) -> None:
        quality_analyzer.script("shop", "v2", [
            QualityCheck(score=9.0, passed=True),
            QualityCheck(score=4.0, passed=False),
        ])
        ctx = build_context(make_config(strategy=_canary((10, 0), (50, 0))))

        with pytest.raises(StageFailureError):
            await CanaryStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        assert _shifts(control_plane, "shop-staging-v2") == [10, 50, 0]
        assert ctx.deployment.strategy_state["canary_percent"] == 0
        assert control_plane.weights("shop", "staging") == {"v1": 100}

    @pytest.mark.asyncio
    async def test_cancel_during_hold_returns_traffic(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
    ) -> None:
        token = CancellationToken()
        ctx = build_context(make_config(strategy=_canary((20, 5.0))), token=token)

        strategy = CanaryStrategy(ctx.config.strategy)  # type: ignore[arg-type]
        original_hold = ctx.hold

        async def _hold(seconds: float) -> None:
            token.cancel("operator abort")
            await original_hold(seconds)

        ctx.hold = _hold  # type: ignore[method-assign]
        with pytest.raises(DeploymentCancelledError):
            await strategy.execute(ctx)

        assert _shifts(control_plane, "shop-staging-v2") == [20, 0]
        assert ctx.deployment.stage_results[-1].outcome == StageOutcome.ABORTED


class TestBlueGreenStrategy:
    @pytest.mark.asyncio
    async def test_cutover(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
    ) -> None:
        strategy_params = {"kind": "blue_green", "validation_timeout_seconds": 0.02, "health_check_interval_seconds": 0.01}
        ctx = build_context(make_config(strategy=strategy_params))

        await BlueGreenStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        assert control_plane.actions("swap") == [("swap", "shop-staging-v2", "shop-staging-v1")]
        assert control_plane.weights("shop", "staging") == {"v2": 100}
        state = ctx.deployment.strategy_state
        assert state["green_ready"] and state["cutover_done"]
        assert state["blue_warm"] is False

    @pytest.mark.asyncio
    async def test_unhealthy_green_blocks_cutover(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
        checker: ScriptedEndpointChecker,
        target_workload: Workload,
    ) -> None:
        checker.set_workload(target_workload, unhealthy_sample())
        strategy_params = {"kind": "blue_green", "validation_timeout_seconds": 0.02, "health_check_interval_seconds": 0.01}
        ctx = build_context(make_config(strategy=strategy_params))

        with pytest.raises(StageFailureError):
            await BlueGreenStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        assert control_plane.actions("swap") == []
        assert "cutover_done" not in ctx.deployment.strategy_state
        assert control_plane.weights("shop", "staging") == {"v1": 100}


class TestRecreateStrategy:
    @pytest.mark.asyncio
    async def test_recreate(
        self,
        make_config: ConfigFactory,
        build_context: Callable[..., StageContext],
        control_plane: SimulatedControlPlane,
    ) -> None:
        ctx = build_context(make_config(strategy={"kind": "recreate"}))

        await RecreateStrategy(ctx.config.strategy).execute(ctx)  # type: ignore[arg-type]

        assert control_plane.history == [
            ("scale", "shop-staging-v1", 0),
            ("scale", "shop-staging-v2", 4),
            ("shift_traffic", "shop-staging-v2", 100),
        ]
        assert ctx.deployment.stage_results[0].outcome == StageOutcome.PASSED
