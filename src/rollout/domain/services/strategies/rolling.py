"""Rolling update strategy."""

from __future__ import annotations

import math

import structlog

from rollout.domain.models.config import DeploymentConfig, RollingParams, StrategyKind
from rollout.domain.services.strategies.base import StageContext, Strategy


logger = structlog.get_logger(__name__)


class RollingStrategy(Strategy):
    """Replace the fleet ``max_surge`` replicas at a time.

    Per stage: retire up to ``max_unavailable`` old replicas, add up to
    ``max_surge`` new ones, probe only the replicas just added, then scale
    the old version down to make room. With ``old + new == replicas`` at
    every stage boundary, the fleet never exceeds ``replicas + max_surge``
    and never drops below ``replicas - max_unavailable`` available.
    """

    kind = StrategyKind.ROLLING

    def __init__(self, params: RollingParams) -> None:
        self._params = params

    def stage_count(self, config: DeploymentConfig) -> int:
        surge, _ = self._params.resolve(config.replicas)
        return math.ceil(config.replicas / surge)

    async def execute(self, ctx: StageContext) -> None:
        replicas = ctx.config.replicas
        surge, unavailable = self._params.resolve(replicas)
        new_count = await ctx.replicas(ctx.target)
        old_count = await ctx.replicas(ctx.previous)
        stages = self.stage_count(ctx.config)

        for index in range(stages):
            async def _stage(index: int = index) -> None:
                nonlocal new_count, old_count
                desired_new = min(replicas, new_count + surge)

                if ctx.previous is not None and unavailable and old_count:
                    early_old = max(0, replicas - new_count - unavailable)
                    if early_old < old_count:
                        await ctx.scale(ctx.previous, early_old)
                        old_count = early_old

                before = await ctx.endpoint_ids(ctx.target)
                await ctx.scale(ctx.target, desired_new)
                new_count = desired_new
                ctx.deployment.update_strategy_state(new_replicas=new_count, old_replicas=old_count)

                added = (await ctx.endpoint_ids(ctx.target)) - before
                if not added:
                    # Endpoint listings can trail a scale call; look once more.
                    added = (await ctx.endpoint_ids(ctx.target)) - before
                if not added:
                    logger.debug(
                        "rolling_probe_scope_widened",
                        stage_index=index,
                        new_replicas=desired_new,
                    )
                snapshot = await ctx.probe(ctx.target, only=added or None)
                ctx.require_healthy(snapshot, f"{len(added) or desired_new} new replica(s)")
                if ctx.config.quality.required:
                    ctx.require_quality(await ctx.check_quality())

                if ctx.previous is not None and old_count:
                    settled_old = max(0, replicas - new_count)
                    if settled_old < old_count:
                        await ctx.scale(ctx.previous, settled_old)
                        old_count = settled_old
                ctx.deployment.update_strategy_state(new_replicas=new_count, old_replicas=old_count)

                if index == stages - 1:
                    await ctx.shift_traffic(ctx.target, 100)

            await ctx.run_stage(index, f"rolling-{index + 1}-of-{stages}", _stage, self.stage_budget(ctx.config))
            logger.debug("rolling_stage_done", stage_index=index, new=new_count, old=old_count)
