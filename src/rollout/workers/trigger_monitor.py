"""Background monitor evaluating rollback triggers during monitoring windows."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from rollout.domain.errors import ProbeUnavailableError, StageTimeoutError
from rollout.domain.models.config import DeploymentConfig
from rollout.domain.models.rollback_trigger import RollbackTrigger
from rollout.domain.models.workload import Workload
from rollout.domain.ports.services import BreachCallback, QualityAnalyzer, RollbackMonitor
from rollout.domain.services.health_prober import HealthProber
from rollout.workers.base import PollingWorker


logger = structlog.get_logger(__name__)


@dataclass
class _Watch:
    trigger: RollbackTrigger
    workload: Workload
    config: DeploymentConfig
    on_breach: BreachCallback
    fired: bool = False


class RollbackTriggerMonitor(PollingWorker, RollbackMonitor):
    """Polls the health of every watched workload and reports breaches.

    The monitor only reads triggers; the orchestrator activates and
    deactivates them. Each watch reports at most one breach. Losing sight
    of a workload (no probe targets, probe deadline) is reported as a
    breach since health can no longer be shown to hold; so is a quality
    floor with no quality data behind it. An error evaluating one watch
    fires that watch and leaves the others alone.
    """

    def __init__(
        self,
        prober: HealthProber,
        quality_analyzer: QualityAnalyzer,
        poll_interval: float = 5.0,
        worker_id: str | None = None,
    ) -> None:
        super().__init__(worker_id=worker_id, poll_interval=poll_interval)
        self._prober = prober
        self._quality_analyzer = quality_analyzer
        self._watches: dict[str, _Watch] = {}

    @property
    def watched(self) -> list[str]:
        return list(self._watches)

    def watch(
        self,
        trigger: RollbackTrigger,
        workload: Workload,
        config: DeploymentConfig,
        on_breach: BreachCallback,
    ) -> None:
        self._watches[trigger.deployment_id] = _Watch(
            trigger=trigger, workload=workload, config=config, on_breach=on_breach
        )
        logger.info("trigger_watch_started", deployment_id=trigger.deployment_id)
        self.ensure_started()

    def unwatch(self, deployment_id: str) -> None:
        if self._watches.pop(deployment_id, None) is not None:
            logger.info("trigger_watch_stopped", deployment_id=deployment_id)

    async def poll_once(self) -> None:
        watches = [w for w in self._watches.values() if w.trigger.active and not w.fired]
        if watches:
            await asyncio.gather(*(self._evaluate(w) for w in watches))

    async def _evaluate(self, watch: _Watch) -> None:
        try:
            await self._check(watch)
        except Exception as e:
            logger.exception(
                "trigger_evaluation_error", deployment_id=watch.trigger.deployment_id
            )
            await self._fire(watch, f"health cannot be determined: {type(e).__name__}: {e}")

    async def _check(self, watch: _Watch) -> None:
        deployment_id = watch.trigger.deployment_id
        try:
            snapshot = await self._prober.probe_workload(
                watch.workload,
                window_seconds=watch.config.probe_window_seconds,
                timeout_seconds=watch.config.stage_timeout_seconds,
            )
        except (ProbeUnavailableError, StageTimeoutError) as e:
            await self._fire(watch, f"health cannot be determined: {e}")
            return

        score: float | None = None
        if watch.trigger.thresholds.min_quality_score is not None:
            try:
                check = await self._quality_analyzer.latest_check(
                    watch.workload.application, watch.workload.version
                )
            except Exception as e:
                logger.warning("trigger_quality_lookup_failed", deployment_id=deployment_id, error=str(e))
                await self._fire(watch, f"quality cannot be determined: {type(e).__name__}: {e}")
                return
            if check is None:
                await self._fire(watch, "quality cannot be determined: no quality data")
                return
            score = check.score

        # The window may have closed while the probe was in flight.
        if not watch.trigger.active or watch.fired:
            return
        reason = watch.trigger.evaluate(snapshot, quality_score=score)
        if reason is None:
            logger.debug(
                "trigger_evaluated",
                deployment_id=deployment_id,
                status=snapshot.status.value,
                error_rate=snapshot.error_rate,
                p95_latency_ms=snapshot.p95_latency_ms,
            )
            return
        await self._fire(watch, reason)

    async def _fire(self, watch: _Watch, reason: str) -> None:
        if watch.fired or not watch.trigger.active:
            return
        watch.fired = True
        logger.warning(
            "rollback_trigger_breached",
            deployment_id=watch.trigger.deployment_id,
            reason=reason,
        )
        await watch.on_breach(reason)

    def get_health(self) -> dict[str, Any]:
        health = super().get_health()
        health["watched_deployments"] = len(self._watches)
        return health
