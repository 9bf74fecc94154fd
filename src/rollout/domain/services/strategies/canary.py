"""Canary strategy."""

from __future__ import annotations

import math

import structlog

from rollout.domain.errors import StageFailureError
from rollout.domain.models.config import CanaryParams, CanaryStep, DeploymentConfig, StrategyKind
from rollout.domain.services.strategies.base import StageContext, Strategy


logger = structlog.get_logger(__name__)


class CanaryStrategy(Strategy):
    """Shift live traffic to the new version step by step.

    Traffic only ever increases while the canary advances. Any failed step
    shifts new-version traffic back to exactly 0% before the failure
    propagates, so an abort never leaves traffic split.
    """

    kind = StrategyKind.CANARY

    def __init__(self, params: CanaryParams) -> None:
        self._params = params

    def _steps(self) -> list[CanaryStep]:
        steps = list(self._params.steps)
        if steps[-1].traffic_percent < 100:
            steps.append(CanaryStep(traffic_percent=100, hold_seconds=0))
        return steps

    def stage_count(self, config: DeploymentConfig) -> int:
        return len(self._steps())

    def stage_budget(self, config: DeploymentConfig) -> float:
        longest_hold = max(s.hold_seconds for s in self._steps())
        return config.stage_timeout_seconds + longest_hold

    async def execute(self, ctx: StageContext) -> None:
        steps = self._steps()
        budget = self.stage_budget(ctx.config)
        try:
            for index, step in enumerate(steps):
                await ctx.run_stage(
                    index,
                    f"canary-{step.traffic_percent}pct",
                    lambda step=step: self._step(ctx, step),
                    budget,
                )
        except Exception:
            await self._abort(ctx)
            raise

    async def _step(self, ctx: StageContext, step: CanaryStep) -> None:
        replicas = ctx.config.replicas
        wanted = max(1, math.ceil(replicas * step.traffic_percent / 100))
        if await ctx.replicas(ctx.target) < wanted:
            await ctx.scale(ctx.target, wanted)
        await ctx.shift_traffic(ctx.target, step.traffic_percent)
        ctx.deployment.update_strategy_state(canary_percent=step.traffic_percent)

        await ctx.hold(step.hold_seconds)

        snapshot = await ctx.probe(ctx.target)
        ctx.require_healthy(snapshot, f"canary at {step.traffic_percent}%")

        gate = await ctx.check_quality(min_score=self._params.success_threshold)
        if not gate.passed:
            raise StageFailureError(
                f"canary at {step.traffic_percent}%: {'; '.join(gate.reasons)}"
            )

        if step.traffic_percent == 100 and ctx.previous is not None:
            await ctx.scale(ctx.previous, 0)

    async def _abort(self, ctx: StageContext) -> None:
        """Return new-version traffic to 0%, even after cancellation."""
        if ctx.deployment.strategy_state.get("canary_percent", 0) == 0:
            return
        await ctx.control_plane.shift_traffic(ctx.target, 0)
        ctx.deployment.update_strategy_state(canary_percent=0)
        logger.info("canary_aborted", target=ctx.target.name)
