"""Blue-green strategy."""

from __future__ import annotations

import asyncio

from rollout.domain.models.config import BlueGreenParams, DeploymentConfig, StrategyKind
from rollout.domain.services.strategies.base import StageContext, Strategy


class BlueGreenStrategy(Strategy):
    """Stand up green beside blue, validate, then cut over atomically.

    Strategy state tracks ``green_ready``, ``cutover_done`` and
    ``blue_warm`` so that a rollback can take the cheap path: discard green
    before cutover, or swap back to blue while it is still warm.
    """

    kind = StrategyKind.BLUE_GREEN

    def __init__(self, params: BlueGreenParams) -> None:
        self._params = params

    def stage_count(self, config: DeploymentConfig) -> int:
        return 2

    def stage_budget(self, config: DeploymentConfig) -> float:
        return config.stage_timeout_seconds + self._params.validation_timeout_seconds

    async def execute(self, ctx: StageContext) -> None:
        budget = self.stage_budget(ctx.config)
        await ctx.run_stage(0, "provision-and-validate-green", lambda: self._provision(ctx), budget)
        await ctx.run_stage(1, "cutover", lambda: self._cutover(ctx), budget)

    async def _provision(self, ctx: StageContext) -> None:
        ctx.deployment.update_strategy_state(blue_warm=ctx.previous is not None)
        await ctx.scale(ctx.target, ctx.config.replicas)
        ctx.deployment.update_strategy_state(green_ready=True)
        await self._validate(ctx, "green")

    async def _cutover(self, ctx: StageContext) -> None:
        if ctx.previous is not None:
            await ctx.swap(ctx.previous, ctx.target)
        else:
            await ctx.shift_traffic(ctx.target, 100)
        ctx.deployment.update_strategy_state(cutover_done=True)

        # Blue stays warm for another validation window before teardown.
        await self._validate(ctx, "green under live traffic")
        if ctx.previous is not None:
            await ctx.scale(ctx.previous, 0)
        ctx.deployment.update_strategy_state(blue_warm=False)

    async def _validate(self, ctx: StageContext, subject: str) -> None:
        """Probe green every interval until the validation window closes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._params.validation_timeout_seconds
        interval = self._params.health_check_interval_seconds
        while True:
            snapshot = await ctx.probe(ctx.target)
            ctx.require_healthy(snapshot, subject)
            if ctx.config.quality.required:
                ctx.require_quality(await ctx.check_quality())
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await ctx.hold(min(interval, remaining))
