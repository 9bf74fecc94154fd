"""Rollback coordinator: restore the last known good version."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from opentelemetry import trace

from rollout.domain.errors import (
    MigrationError,
    ProbeUnavailableError,
    RollbackFailedError,
    StageFailureError,
)
from rollout.domain.models.config import StrategyKind
from rollout.domain.models.deployment import (
    ActionKind,
    Deployment,
    MANUAL_MIGRATION_INTERVENTION_REQUIRED,
    StageAction,
    StageOutcome,
    StageResult,
)
from rollout.domain.models.health import HealthSnapshot
from rollout.domain.models.workload import Workload
from rollout.domain.ports.services import ControlPlane, MigrationRunner
from rollout.domain.services.health_prober import HealthProber


logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

PersistHook = Callable[[], Awaitable[None]]


def needs_inverse_migration(deployment: Deployment) -> bool:
    """A migration was applied, or its apply failed part-way."""
    return deployment.config.migration is not None and (
        deployment.migration_applied
        or deployment.strategy_state.get("migration_attempted", False)
    )


class RollbackCoordinator:
    """Restores service after a failed or rejected deployment.

    Each rollback is its own Deployment record pointing at the original via
    ``rollback_of_deployment_id``; the original's history is never edited.
    Restoration is retried at most ``max_attempts`` times, after which the
    record ends ROLLBACK_FAILED and an operator alert is raised.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        prober: HealthProber,
        migration_runner: MigrationRunner,
        max_attempts: int = 2,
        health_window_seconds: float = 5.0,
        timeout_seconds: float = 600.0,
    ) -> None:
        self._control_plane = control_plane
        self._prober = prober
        self._migration_runner = migration_runner
        self._max_attempts = max_attempts
        self._health_window_seconds = health_window_seconds
        self._timeout_seconds = timeout_seconds

    def prepare(
        self,
        original: Deployment,
        requested_by: str = "",
        target_version: str | None = None,
    ) -> Deployment:
        """Build the rollback record for ``original`` without running it.

        The record's target is ``target_version`` when given, otherwise the
        original's previous version (empty when there was none). Its
        previous version is the one being removed.
        """
        return Deployment(
            config=original.config,
            target_version=target_version or original.previous_version or "",
            previous_version=original.target_version,
            rollback_of_deployment_id=original.id,
            requested_by=requested_by or original.requested_by,
        )

    async def execute(
        self,
        original: Deployment,
        record: Deployment,
        reason: str,
        persist: PersistHook,
    ) -> Deployment:
        """Run restoration on ``record`` until it is terminal."""
        restore_version = record.target_version or None
        record.start_rollback(reason)
        await persist()
        logger.info(
            "rollback_started",
            rollback_id=record.id,
            restore_version=restore_version,
            reason=reason,
        )

        last_error = ""
        with tracer.start_as_current_span(
            "rollout.rollback",
            attributes={"rollback.id": record.id, "rollback.of": original.id},
        ):
            for attempt in range(1, self._max_attempts + 1):
                actions: list[StageAction] = []
                health: HealthSnapshot | None = None
                try:
                    health = await asyncio.wait_for(
                        self._restore(original, record, actions),
                        timeout=self._timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    last_error = f"restoration timed out after {self._timeout_seconds}s"
                except (
                    RollbackFailedError,
                    MigrationError,
                    ProbeUnavailableError,
                    StageFailureError,
                ) as e:
                    last_error = str(e)
                except Exception as e:
                    logger.exception("rollback_attempt_error", rollback_id=record.id, attempt=attempt)
                    last_error = f"{type(e).__name__}: {e}"
                else:
                    record.record_stage_result(StageResult(
                        stage_index=attempt - 1,
                        name=f"restore-attempt-{attempt}",
                        actions=actions,
                        health=health,
                        outcome=StageOutcome.PASSED,
                    ))
                    record.complete_rollback(restore_version)
                    await persist()
                    logger.info("rollback_completed", rollback_id=record.id, attempt=attempt)
                    return record

                record.record_stage_result(StageResult(
                    stage_index=attempt - 1,
                    name=f"restore-attempt-{attempt}",
                    actions=actions,
                    health=health,
                    outcome=StageOutcome.FAILED,
                    message=last_error,
                ))
                await persist()
                logger.warning(
                    "rollback_attempt_failed",
                    rollback_id=record.id,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=last_error,
                )

        record.fail_rollback(f"{last_error} (after {self._max_attempts} attempt(s))")
        await persist()
        logger.error("rollback_failed", rollback_id=record.id, error=last_error)
        return record

    async def _restore(
        self, original: Deployment, record: Deployment, actions: list[StageAction]
    ) -> HealthSnapshot | None:
        await self._revert_schema(original, record, actions)

        new = original.target_workload
        previous = (
            new.with_version(record.target_version) if record.target_version else None
        )
        state = original.strategy_state

        blue_available = (
            original.strategy_kind == StrategyKind.BLUE_GREEN
            and previous is not None
            and previous.version == original.previous_version
            and (not state.get("cutover_done") or state.get("blue_warm"))
        )
        if blue_available and previous is not None:
            if state.get("cutover_done"):
                actions.append(StageAction(kind=ActionKind.SWAP, target=previous.name, value=100))
                await self._control_plane.swap(new, previous)
            # Blue never lost traffic before cutover; green is simply discarded.
            actions.append(StageAction(kind=ActionKind.SCALE, target=new.name, value=0))
            await self._control_plane.scale(new, 0)
        else:
            await self._recreate(original, new, previous, actions)

        if previous is None:
            return None
        return await self._verify(original, previous)

    async def _revert_schema(
        self, original: Deployment, record: Deployment, actions: list[StageAction]
    ) -> None:
        """Inverse migration first, so code never meets an unexpected schema."""
        spec = original.config.migration
        if spec is None or not needs_inverse_migration(original):
            return
        if record.strategy_state.get("schema_settled"):
            return
        if spec.reversible:
            actions.append(StageAction(kind=ActionKind.MIGRATE_ROLLBACK, target=spec.id))
            await self._migration_runner.rollback(spec)
            logger.info("migration_reverted", migration_id=spec.id)
        else:
            message = (
                f"migration {spec.id} has no inverse; schema must be reverted by hand "
                f"before {original.previous_version or 'the previous version'} is trusted"
            )
            record.add_warning(MANUAL_MIGRATION_INTERVENTION_REQUIRED, message)
            logger.warning("manual_migration_intervention_required", migration_id=spec.id)
        record.update_strategy_state(schema_settled=True)

    async def _recreate(
        self,
        original: Deployment,
        new: Workload,
        previous: Workload | None,
        actions: list[StageAction],
    ) -> None:
        if previous is None and not original.has_side_effects:
            serving = await self._control_plane.serving_version(new.application, new.environment)
            if serving == new.version:
                # The fleet was already serving this version; this deployment never touched it.
                logger.warning("rollback_left_serving_fleet", workload=new.name)
                return

        if original.strategy_state.get("canary_percent", 0) > 0:
            actions.append(StageAction(kind=ActionKind.SHIFT_TRAFFIC, target=new.name, value=0))
            await self._control_plane.shift_traffic(new, 0)

        actions.append(StageAction(kind=ActionKind.SCALE, target=new.name, value=0))
        await self._control_plane.scale(new, 0)
        if previous is None:
            return
        replicas = original.config.replicas
        actions.append(StageAction(kind=ActionKind.SCALE, target=previous.name, value=replicas))
        await self._control_plane.scale(previous, replicas)
        actions.append(StageAction(kind=ActionKind.SHIFT_TRAFFIC, target=previous.name, value=100))
        await self._control_plane.shift_traffic(previous, 100)

        displaced = original.previous_workload
        if displaced is not None and displaced.version != previous.version:
            actions.append(StageAction(kind=ActionKind.SCALE, target=displaced.name, value=0))
            await self._control_plane.scale(displaced, 0)

    async def _verify(self, original: Deployment, previous: Workload) -> HealthSnapshot:
        snapshot = await self._prober.probe_workload(
            previous,
            window_seconds=self._health_window_seconds,
            timeout_seconds=original.config.stage_timeout_seconds,
        )
        if not snapshot.is_healthy:
            raise RollbackFailedError(
                f"restored version {previous.version} is {snapshot.status.value}"
            )
        serving = await self._control_plane.serving_version(
            original.application, original.environment
        )
        if serving != previous.version:
            raise RollbackFailedError(
                f"serving version is {serving!r}, expected {previous.version!r}"
            )
        return snapshot
