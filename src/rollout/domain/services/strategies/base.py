"""Strategy capability and the per-run stage context it drives."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Collection

import structlog
from opentelemetry import trace

from rollout.domain.errors import (
    DeploymentCancelledError,
    MigrationError,
    ProbeUnavailableError,
    StageFailureError,
    StageTimeoutError,
)
from rollout.domain.models.config import DeploymentConfig, StrategyKind
from rollout.domain.models.deployment import (
    ActionKind,
    Deployment,
    StageAction,
    StageOutcome,
    StageResult,
)
from rollout.domain.models.health import HealthSnapshot
from rollout.domain.models.quality import GateResult
from rollout.domain.models.workload import Workload
from rollout.domain.ports.services import ControlPlane, QualityAnalyzer
from rollout.domain.services.cancellation import CancellationToken
from rollout.domain.services.health_prober import HealthProber
from rollout.domain.services.quality_gate import evaluate_quality_gate


logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

PersistHook = Callable[[], Awaitable[None]]


class StageContext:
    """Everything a strategy may touch while executing stages.

    Control-plane calls go through here so that each one is recorded on the
    current stage, checked against the cancellation token first, and counted
    as a side effect on the deployment.
    """

    def __init__(
        self,
        deployment: Deployment,
        control_plane: ControlPlane,
        prober: HealthProber,
        quality_analyzer: QualityAnalyzer,
        token: CancellationToken,
        persist: PersistHook,
    ) -> None:
        self.deployment = deployment
        self.control_plane = control_plane
        self.prober = prober
        self.quality_analyzer = quality_analyzer
        self.token = token
        self._persist = persist
        self._actions: list[StageAction] = []
        self._health: HealthSnapshot | None = None
        self._quality: GateResult | None = None

    @property
    def config(self) -> DeploymentConfig:
        return self.deployment.config

    @property
    def target(self) -> Workload:
        return self.deployment.target_workload

    @property
    def previous(self) -> Workload | None:
        return self.deployment.previous_workload

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _issue(self, kind: ActionKind, target: str, value: float | None = None, detail: str = "") -> None:
        self.token.raise_if_cancelled()
        self._actions.append(StageAction(kind=kind, target=target, value=value, detail=detail))
        if kind != ActionKind.WAIT:
            issued = self.deployment.strategy_state.get("actions_issued", 0)
            self.deployment.update_strategy_state(actions_issued=issued + 1)

    async def scale(self, workload: Workload, replicas: int) -> None:
        self._issue(ActionKind.SCALE, workload.name, replicas)
        await self.control_plane.scale(workload, replicas)

    async def shift_traffic(self, workload: Workload, percent: int) -> None:
        self._issue(ActionKind.SHIFT_TRAFFIC, workload.name, percent)
        await self.control_plane.shift_traffic(workload, percent)

    async def swap(self, blue: Workload, green: Workload) -> None:
        self._issue(ActionKind.SWAP, green.name, 100, detail=f"from {blue.name}")
        await self.control_plane.swap(blue, green)

    async def hold(self, seconds: float) -> None:
        if seconds > 0:
            self._issue(ActionKind.WAIT, self.target.name, seconds)
        await self.token.wait(seconds)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def replicas(self, workload: Workload | None) -> int:
        if workload is None:
            return 0
        return await self.control_plane.get_replicas(workload)

    async def endpoint_ids(self, workload: Workload) -> set[str]:
        try:
            endpoints = await self.control_plane.list_endpoints(workload)
        except Exception as e:
            raise ProbeUnavailableError(f"Cannot list endpoints for {workload.name}: {e}") from e
        return {e.id for e in endpoints}

    async def probe(
        self, workload: Workload, only: Collection[str] | None = None
    ) -> HealthSnapshot:
        snapshot = await self.token.guard(self.prober.probe_workload(
            workload,
            window_seconds=self.config.probe_window_seconds,
            timeout_seconds=self.config.stage_timeout_seconds,
            only=only,
        ))
        self._health = snapshot
        return snapshot

    async def check_quality(self, min_score: float | None = None) -> GateResult:
        check = await self.token.guard(self.quality_analyzer.latest_check(
            self.deployment.application, self.deployment.target_version
        ))
        gate = evaluate_quality_gate(check, self.config.quality, min_score=min_score)
        if check is not None:
            self.deployment.quality_check_id = check.id
        self._quality = gate
        return gate

    def require_healthy(self, snapshot: HealthSnapshot, subject: str) -> None:
        if not snapshot.is_healthy:
            detail = ", ".join(snapshot.unhealthy_targets)
            raise StageFailureError(
                f"{subject} is {snapshot.status.value}"
                + (f" (unhealthy: {detail})" if detail else "")
                + f", error rate {snapshot.error_rate:.4f}"
            )

    def require_quality(self, gate: GateResult) -> None:
        if not gate.passed:
            raise StageFailureError(f"quality gate failed: {'; '.join(gate.reasons)}")

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def run_stage(
        self,
        index: int,
        name: str,
        body: Callable[[], Awaitable[None]],
        budget_seconds: float,
    ) -> None:
        """Run one stage under its deadline and append its result.

        A deadline expiry is recorded and raised as StageTimeoutError, the
        same escalation as an explicit failure.
        """
        self._actions = []
        self._health = None
        self._quality = None
        logger.info("stage_started", stage_index=index, stage_name=name)

        with tracer.start_as_current_span(
            "rollout.stage",
            attributes={"stage.index": index, "stage.name": name},
        ):
            try:
                await asyncio.wait_for(body(), timeout=budget_seconds)
            except asyncio.TimeoutError as e:
                message = f"stage {index} ({name}) exceeded its {budget_seconds}s deadline"
                await self._record(index, name, StageOutcome.TIMED_OUT, message)
                raise StageTimeoutError(message, stage_index=index) from e
            except StageTimeoutError as e:
                e.stage_index = index if e.stage_index is None else e.stage_index
                await self._record(index, name, StageOutcome.TIMED_OUT, str(e))
                raise
            except StageFailureError as e:
                e.stage_index = index if e.stage_index is None else e.stage_index
                await self._record(index, name, StageOutcome.FAILED, str(e))
                raise
            except (ProbeUnavailableError, MigrationError) as e:
                await self._record(index, name, StageOutcome.FAILED, str(e))
                raise
            except DeploymentCancelledError as e:
                await self._record(index, name, StageOutcome.ABORTED, str(e) or "cancelled")
                raise

        await self._record(index, name, StageOutcome.PASSED, "")
        logger.info("stage_completed", stage_index=index, stage_name=name)

    async def _record(self, index: int, name: str, outcome: StageOutcome, message: str) -> None:
        if self.deployment.is_terminal:
            return
        self.deployment.record_stage_result(StageResult(
            stage_index=index,
            name=name,
            actions=list(self._actions),
            health=self._health,
            quality=self._quality,
            outcome=outcome,
            message=message,
        ))
        if outcome != StageOutcome.PASSED:
            logger.warning("stage_failed", stage_index=index, stage_name=name,
                           outcome=outcome.value, message=message)
        await self._persist()


class Strategy(ABC):
    """One rollout strategy; selected once per deployment."""

    kind: StrategyKind

    @abstractmethod
    def stage_count(self, config: DeploymentConfig) -> int:
        """Number of stages this strategy will run for ``config``."""

    @abstractmethod
    async def execute(self, ctx: StageContext) -> None:
        """Run every stage in order. Raises on the first failed stage."""

    def stage_budget(self, config: DeploymentConfig) -> float:
        """Deadline for a single stage: decision time plus planned waits."""
        return config.stage_timeout_seconds
