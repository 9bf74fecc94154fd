"""Recreate strategy."""

from __future__ import annotations

from rollout.domain.models.config import DeploymentConfig, RecreateParams, StrategyKind
from rollout.domain.services.strategies.base import StageContext, Strategy


class RecreateStrategy(Strategy):
    """Tear the old version down, then bring the new one up in one stage."""

    kind = StrategyKind.RECREATE

    def __init__(self, params: RecreateParams) -> None:
        self._params = params

    def stage_count(self, config: DeploymentConfig) -> int:
        return 1

    def stage_budget(self, config: DeploymentConfig) -> float:
        return config.stage_timeout_seconds + self._params.drain_seconds

    async def execute(self, ctx: StageContext) -> None:
        await ctx.run_stage(0, "recreate", lambda: self._recreate(ctx), self.stage_budget(ctx.config))

    async def _recreate(self, ctx: StageContext) -> None:
        if ctx.previous is not None:
            await ctx.scale(ctx.previous, 0)
            ctx.deployment.update_strategy_state(old_replicas=0)
        await ctx.hold(self._params.drain_seconds)
        await ctx.scale(ctx.target, ctx.config.replicas)
        await ctx.shift_traffic(ctx.target, 100)
        ctx.deployment.update_strategy_state(new_replicas=ctx.config.replicas)

        snapshot = await ctx.probe(ctx.target)
        ctx.require_healthy(snapshot, "recreated fleet")
        if ctx.config.quality.required:
            ctx.require_quality(await ctx.check_quality())
