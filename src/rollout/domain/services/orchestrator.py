"""Deployment orchestrator: the single decision point for state transitions."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog
from opentelemetry import trace
from pydantic import ValidationError

from rollout.domain.errors import (
    DeploymentCancelledError,
    DeploymentConflictError,
    DeploymentNotFoundError,
    DeploymentValidationError,
    InvalidDeploymentStateError,
    MigrationError,
    ProbeUnavailableError,
    StageFailureError,
)
from rollout.domain.models.config import DeploymentConfig
from rollout.domain.models.deployment import Deployment, DeploymentStatus
from rollout.domain.models.rollback_trigger import RollbackTrigger
from rollout.domain.ports.repositories import AuditSink
from rollout.domain.ports.services import (
    ArtifactProvider,
    ControlPlane,
    DistributedLock,
    EventPublisher,
    MigrationRunner,
    QualityAnalyzer,
    RollbackMonitor,
)
from rollout.domain.services.cancellation import CancellationToken
from rollout.domain.services.health_prober import HealthProber
from rollout.domain.services.locking import deployment_lock_key, hold_lock
from rollout.domain.services.quality_gate import evaluate_quality_gate
from rollout.domain.services.rollback import RollbackCoordinator
from rollout.domain.services.strategies import select_strategy, StageContext, Strategy


logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

_FORWARD_FAILURES = (StageFailureError, ProbeUnavailableError, MigrationError)


@dataclass
class _Run:
    """In-process state of one background deployment run."""

    deployment: Deployment
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task[None] | None = None
    force_rollback: bool = False
    rollback_target: str | None = None
    rollback_started: asyncio.Event = field(default_factory=asyncio.Event)


class DeploymentOrchestrator:
    """Owns the deployment state machine.

    Each requested deployment runs as its own asyncio task. Operator calls
    (cancel, rollback) and the run task serialize their state changes behind
    a per-deployment lock; other deployments are never blocked. The
    active-deployment invariant is enforced by the audit sink's atomic claim.
    """

    def __init__(
        self,
        audit_sink: AuditSink,
        control_plane: ControlPlane,
        artifact_provider: ArtifactProvider,
        migration_runner: MigrationRunner,
        quality_analyzer: QualityAnalyzer,
        prober: HealthProber,
        rollback_coordinator: RollbackCoordinator,
        monitor: RollbackMonitor,
        event_publisher: EventPublisher,
        lock_service: DistributedLock,
        lock_ttl_seconds: int = 60,
        lock_wait_seconds: float = 10.0,
        lock_retry_interval: float = 0.05,
    ) -> None:
        self._sink = audit_sink
        self._control_plane = control_plane
        self._artifact_provider = artifact_provider
        self._migration_runner = migration_runner
        self._quality_analyzer = quality_analyzer
        self._prober = prober
        self._coordinator = rollback_coordinator
        self._monitor = monitor
        self._event_publisher = event_publisher
        self._lock_service = lock_service
        self._lock_ttl_seconds = lock_ttl_seconds
        self._lock_wait_seconds = lock_wait_seconds
        self._lock_retry_interval = lock_retry_interval
        self._runs: dict[str, _Run] = {}

    # ------------------------------------------------------------------
    # Operator API
    # ------------------------------------------------------------------

    async def request_deployment(
        self, config: DeploymentConfig | dict[str, Any], requested_by: str = ""
    ) -> str:
        """Claim the application/environment pair and start a run.

        Raises DeploymentConflictError when another deployment is active
        for the same pair, and DeploymentValidationError for a bad config.
        """
        if not isinstance(config, DeploymentConfig):
            try:
                config = DeploymentConfig.model_validate(config)
            except ValidationError as e:
                raise DeploymentValidationError(str(e)) from e

        deployment = Deployment.for_config(config, requested_by=requested_by)
        if not await self._sink.create_claiming(deployment):
            holder = await self._sink.claim_holder(config.application, config.environment)
            logger.info(
                "deployment_rejected_conflict",
                application=config.application,
                environment=config.environment,
                active_deployment_id=holder,
            )
            raise DeploymentConflictError(
                f"Deployment {holder} is already active for "
                f"{config.application}/{config.environment}"
            )
        await self._publish_events(deployment)

        run = _Run(deployment=deployment)
        self._start(run, self._run_deployment(run))
        logger.info(
            "deployment_requested",
            deployment_id=deployment.id,
            application=config.application,
            environment=config.environment,
            target_version=config.version,
            strategy=config.strategy_kind.value,
            dry_run=config.dry_run,
        )
        return deployment.id

    async def get_deployment(self, deployment_id: str) -> Deployment:
        deployment = await self._sink.get_by_id(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    async def list_active(
        self, application: str | None = None, environment: str | None = None
    ) -> list[Deployment]:
        return await self._sink.list_active(application, environment)

    async def list_history(
        self, application: str, environment: str, limit: int = 20
    ) -> list[Deployment]:
        return await self._sink.list_history(application, environment, limit)

    async def cancel(
        self, deployment_id: str, reason: str = "cancelled by operator"
    ) -> Deployment:
        """Cancel a deployment.

        Before any side effect the deployment ends CANCELLED at once. Once
        the control plane or schema has been touched, cancellation becomes a
        rollback. Terminal deployments are left untouched.
        """
        async with self._guard(deployment_id):
            deployment = await self._current(deployment_id)
            if deployment.is_terminal:
                raise InvalidDeploymentStateError(
                    f"Deployment {deployment_id} is already {deployment.status.value}"
                )
            if deployment.status == DeploymentStatus.ROLLING_BACK or deployment.is_rollback:
                raise InvalidDeploymentStateError(
                    f"Deployment {deployment_id} is rolling back and cannot be cancelled"
                )

            run = self._runs.get(deployment_id)
            if deployment.status in (DeploymentStatus.PENDING, DeploymentStatus.VALIDATING) or (
                deployment.status == DeploymentStatus.IN_PROGRESS
                and not deployment.has_side_effects
            ):
                deployment.cancel(reason)
                if run is not None:
                    run.token.cancel(reason)
                await self._persist(deployment)
                await self._release(deployment, deployment.id)
                logger.info("deployment_cancelled", deployment_id=deployment_id, reason=reason)
                return deployment.model_copy(deep=True)

            logger.info("deployment_cancel_escalated_to_rollback", deployment_id=deployment_id)
            self._signal_rollback(deployment, run, f"cancelled: {reason}")
            return deployment.model_copy(deep=True)

    async def rollback(
        self,
        deployment_id: str,
        requested_by: str = "",
        reason: str = "rollback requested by operator",
        target_version: str | None = None,
    ) -> str:
        """Roll a deployment back and return the rollback record's id.

        An active deployment is aborted and restored in its own run. A
        terminal SUCCEEDED or FAILED deployment gets a fresh rollback record
        that must claim the pair like any other deployment. A terminal
        deployment that changed nothing has nothing to roll back.

        ``target_version`` restores an explicit earlier release instead of
        the previous version; it must have a successful release on record.
        """
        async with self._guard(deployment_id):
            deployment = await self._current(deployment_id)
            status = deployment.status

            if status in (DeploymentStatus.IN_PROGRESS, DeploymentStatus.MONITORING):
                await self._check_rollback_target(deployment, target_version)
                run = self._signal_rollback(
                    deployment, self._runs.get(deployment_id), reason, target_version
                )
            elif status in (DeploymentStatus.SUCCEEDED, DeploymentStatus.FAILED) and not deployment.dry_run:
                if not deployment.has_side_effects:
                    raise InvalidDeploymentStateError(
                        f"Deployment {deployment_id} made no changes; there is nothing to roll back"
                    )
                await self._check_rollback_target(deployment, target_version)
                return await self._rollback_terminal(
                    deployment, requested_by, reason, target_version
                )
            else:
                raise InvalidDeploymentStateError(
                    f"Deployment {deployment_id} cannot be rolled back while {status.value}"
                )

        await self._await_rollback_start(run)
        if run.deployment.rollback_deployment_id is None:
            raise InvalidDeploymentStateError(
                f"Deployment {deployment_id} ended {run.deployment.status.value} before rolling back"
            )
        return run.deployment.rollback_deployment_id

    async def wait(self, deployment_id: str, timeout: float | None = None) -> Deployment:
        """Wait for a deployment's background run to finish, then return it."""
        run = self._runs.get(deployment_id)
        if run is not None and run.task is not None:
            await asyncio.wait_for(asyncio.shield(run.task), timeout=timeout)
        return await self.get_deployment(deployment_id)

    async def shutdown(self) -> None:
        """Cancel every in-process run task."""
        tasks = {run.task for run in self._runs.values() if run.task is not None}
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._runs.clear()

    # ------------------------------------------------------------------
    # Forward run
    # ------------------------------------------------------------------

    async def _run_deployment(self, run: _Run) -> None:
        deployment = run.deployment
        structlog.contextvars.bind_contextvars(
            deployment_id=deployment.id,
            application=deployment.application,
            environment=deployment.environment,
        )
        with tracer.start_as_current_span(
            "rollout.deployment",
            attributes={
                "deployment.id": deployment.id,
                "deployment.strategy": deployment.strategy_kind.value,
                "deployment.version": deployment.target_version,
            },
        ):
            try:
                await self._drive(run)
            except DeploymentCancelledError:
                await self._after_cancel(run)
            except Exception as e:
                logger.exception("deployment_run_crashed", error=str(e))
                await self._abort(run, f"internal error: {type(e).__name__}: {e}")

    async def _drive(self, run: _Run) -> None:
        deployment = run.deployment
        config = deployment.config
        try:
            strategy = await asyncio.wait_for(
                self._validate_and_roll_out(run), timeout=config.deployment_timeout_seconds
            )
        except asyncio.TimeoutError:
            await self._abort(
                run, f"deployment exceeded its {config.deployment_timeout_seconds}s deadline"
            )
            return
        except DeploymentValidationError as e:
            await self._finish(run, lambda d: d.fail(f"validation failed: {e}"))
            return
        except _FORWARD_FAILURES as e:
            await self._abort(run, str(e))
            return

        if strategy is None:
            return

        breach = await self._monitor_window(run)
        if breach is not None:
            await self._abort(run, f"rollback trigger breached: {breach}")
            return
        await self._finish(run, lambda d: d.succeed())
        logger.info("deployment_succeeded", target_version=deployment.target_version)

    async def _validate_and_roll_out(self, run: _Run) -> Strategy | None:
        """Validation, migration and every strategy stage.

        Returns the strategy once all stages passed, or None when the run
        already reached a terminal state (dry run).
        """
        deployment = run.deployment
        config = deployment.config

        async with self._guard(deployment.id):
            run.token.raise_if_cancelled()
            deployment.start_validation()
            await self._persist(deployment)

        await self._validate(run)
        strategy = select_strategy(config)

        if config.dry_run:
            await self._finish(run, lambda d: d.succeed("dry-run: validation passed, no changes made"))
            logger.info("deployment_dry_run_completed")
            return None

        async with self._guard(deployment.id):
            run.token.raise_if_cancelled()
            deployment.start_rollout(strategy.stage_count(config))
            await self._persist(deployment)

        await self._apply_migration(run)

        ctx = StageContext(
            deployment=deployment,
            control_plane=self._control_plane,
            prober=self._prober,
            quality_analyzer=self._quality_analyzer,
            token=run.token,
            persist=lambda: self._persist(deployment),
        )
        await strategy.execute(ctx)
        return strategy

    async def _validate(self, run: _Run) -> None:
        deployment = run.deployment
        config = deployment.config
        token = run.token

        try:
            artifact = await token.guard(
                self._artifact_provider.resolve(config.version, config.image)
            )
        except DeploymentCancelledError:
            raise
        except Exception as e:
            raise DeploymentValidationError(f"cannot resolve artifact {config.version}: {e}") from e

        previous = await token.guard(self._previous_version(deployment))
        if previous == config.version:
            raise DeploymentValidationError(f"version {config.version} is already serving")

        if config.quality.required_pre_deploy:
            check = await token.guard(
                self._quality_analyzer.latest_check(config.application, config.version)
            )
            gate = evaluate_quality_gate(check, config.quality.model_copy(update={"required": True}))
            if check is not None:
                deployment.quality_check_id = check.id
            if not gate.passed:
                raise DeploymentValidationError(f"pre-deploy quality gate: {'; '.join(gate.reasons)}")

        deployment.artifact = artifact
        deployment.previous_version = previous
        logger.info("deployment_validated", previous_version=previous, artifact=artifact.image)

    async def _previous_version(self, deployment: Deployment) -> str | None:
        last = await self._sink.last_successful(deployment.application, deployment.environment)
        if last is not None and last.target_version:
            return last.target_version
        try:
            return await self._control_plane.serving_version(
                deployment.application, deployment.environment
            )
        except Exception as e:
            raise DeploymentValidationError(f"cannot determine serving version: {e}") from e

    async def _apply_migration(self, run: _Run) -> None:
        deployment = run.deployment
        spec = deployment.config.migration
        if spec is None:
            return
        run.token.raise_if_cancelled()
        deployment.update_strategy_state(migration_attempted=True)
        try:
            await self._migration_runner.apply(spec)
        except MigrationError:
            logger.error("migration_failed", migration_id=spec.id)
            raise
        except Exception as e:
            logger.error("migration_failed", migration_id=spec.id, error=str(e))
            raise MigrationError(f"migration {spec.id} failed: {e}") from e
        deployment.migration_applied = True
        await self._persist(deployment)
        logger.info("migration_applied", migration_id=spec.id)

    async def _monitor_window(self, run: _Run) -> str | None:
        """Hold the monitoring window open; return a breach reason if one fired."""
        deployment = run.deployment
        window = deployment.config.monitoring_window_seconds

        async with self._guard(deployment.id):
            run.token.raise_if_cancelled()
            deployment.start_monitoring()
            await self._persist(deployment)

        if window <= 0:
            return None

        breached = asyncio.Event()
        reasons: list[str] = []

        async def _on_breach(reason: str) -> None:
            reasons.append(reason)
            breached.set()

        trigger = RollbackTrigger(
            deployment_id=deployment.id, thresholds=deployment.config.rollback_trigger
        )
        trigger.activate()
        self._monitor.watch(trigger, deployment.target_workload, deployment.config, _on_breach)
        logger.info("monitoring_window_opened", window_seconds=window)
        try:
            await run.token.guard(asyncio.wait_for(breached.wait(), timeout=window))
        except asyncio.TimeoutError:
            return None
        finally:
            trigger.deactivate()
            self._monitor.unwatch(deployment.id)
        return reasons[0] if reasons else None

    # ------------------------------------------------------------------
    # Termination paths
    # ------------------------------------------------------------------

    async def _after_cancel(self, run: _Run) -> None:
        if run.deployment.is_terminal:
            run.rollback_started.set()
            return
        await self._abort(run, run.token.reason or "cancelled", force_rollback=True)

    async def _abort(self, run: _Run, reason: str, force_rollback: bool = False) -> None:
        """Turn a failure into the right terminal path for the current state."""
        deployment = run.deployment
        force_rollback = force_rollback or run.force_rollback
        record: Deployment | None = None

        async with self._guard(deployment.id):
            if deployment.is_terminal or deployment.status == DeploymentStatus.ROLLING_BACK:
                run.rollback_started.set()
                return
            if deployment.status == DeploymentStatus.PENDING:
                deployment.cancel(reason)
            elif deployment.status == DeploymentStatus.VALIDATING:
                deployment.fail(reason)
            elif not (deployment.config.auto_rollback or force_rollback):
                deployment.fail(reason)
                logger.warning("deployment_failed_without_rollback", reason=reason)
            else:
                record = await self._begin_inflight_rollback(run, reason)
            await self._persist(deployment)

        if record is None:
            await self._release(deployment, deployment.id)
            run.rollback_started.set()
            logger.warning("deployment_failed", status=deployment.status.value, reason=reason)
            return

        await self._run_inflight_rollback(run, record, reason)

    async def _begin_inflight_rollback(self, run: _Run, reason: str) -> Deployment:
        """Move the original to ROLLING_BACK and hand its claim to a new record."""
        deployment = run.deployment
        deployment.start_rollback(reason)
        record = self._coordinator.prepare(deployment, target_version=run.rollback_target)
        deployment.rollback_deployment_id = record.id
        await self._sink.save(record)
        await self._sink.attach_claim(
            deployment.application, deployment.environment, deployment.id, record.id
        )
        self._runs[record.id] = run
        run.rollback_started.set()
        logger.warning("deployment_rolling_back", rollback_id=record.id, reason=reason)
        return record

    async def _run_inflight_rollback(self, run: _Run, record: Deployment, reason: str) -> None:
        deployment = run.deployment
        await self._coordinator.execute(
            deployment, record, reason, persist=lambda: self._persist(record)
        )
        async with self._guard(deployment.id):
            if record.status == DeploymentStatus.ROLLED_BACK:
                deployment.complete_rollback(record.target_version or None)
            else:
                deployment.fail_rollback(record.error or "rollback failed", alert=False)
            await self._persist(deployment)
        await self._release(deployment, record.id)

    async def _check_rollback_target(
        self, deployment: Deployment, target_version: str | None
    ) -> None:
        """An explicit rollback target must be a known-good earlier release."""
        if target_version is None or target_version == deployment.previous_version:
            return
        if target_version == deployment.target_version:
            raise DeploymentValidationError(
                f"version {target_version} is the version being rolled back"
            )
        release = await self._sink.last_successful(
            deployment.application, deployment.environment, version=target_version
        )
        if release is None:
            raise DeploymentValidationError(
                f"version {target_version} has no successful release for "
                f"{deployment.application}/{deployment.environment}"
            )

    async def _rollback_terminal(
        self,
        deployment: Deployment,
        requested_by: str,
        reason: str,
        target_version: str | None = None,
    ) -> str:
        if deployment.status == DeploymentStatus.SUCCEEDED:
            last = await self._sink.last_successful(deployment.application, deployment.environment)
            if last is None or last.id != deployment.id:
                raise InvalidDeploymentStateError(
                    f"Deployment {deployment.id} is not the current release of "
                    f"{deployment.application}/{deployment.environment}"
                )

        record = self._coordinator.prepare(
            deployment, requested_by=requested_by, target_version=target_version
        )
        if not await self._sink.create_claiming(record):
            holder = await self._sink.claim_holder(deployment.application, deployment.environment)
            raise DeploymentConflictError(
                f"Deployment {holder} is already active for "
                f"{deployment.application}/{deployment.environment}"
            )

        run = _Run(deployment=record)

        async def _restore() -> None:
            structlog.contextvars.bind_contextvars(
                deployment_id=record.id,
                application=record.application,
                environment=record.environment,
            )
            try:
                await self._coordinator.execute(
                    deployment, record, reason, persist=lambda: self._persist(record)
                )
            except Exception as e:
                logger.exception("rollback_run_crashed", error=str(e))
            finally:
                await self._release(record, record.id)

        self._start(run, _restore())
        logger.info("rollback_requested", deployment_id=deployment.id, rollback_id=record.id)
        return record.id

    def _signal_rollback(
        self,
        deployment: Deployment,
        run: _Run | None,
        reason: str,
        target_version: str | None = None,
    ) -> _Run:
        """Ask the run owning ``deployment`` to abort into a rollback."""
        if run is None or run.task is None or run.task.done():
            # No in-process run (e.g. after a restart): restore in a fresh task.
            run = _Run(deployment=deployment, force_rollback=True, rollback_target=target_version)
            self._start(run, self._abort(run, reason, force_rollback=True))
            return run
        run.force_rollback = True
        if target_version is not None:
            run.rollback_target = target_version
        run.token.cancel(reason)
        return run

    async def _await_rollback_start(self, run: _Run) -> None:
        """Block until the run has created its rollback record or ended."""
        waiter = asyncio.ensure_future(run.rollback_started.wait())
        pending: set[asyncio.Future[Any]] = {waiter}
        if run.task is not None:
            pending.add(run.task)
        try:
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

    async def _finish(self, run: _Run, transition: Callable[[Deployment], None]) -> None:
        deployment = run.deployment
        async with self._guard(deployment.id):
            if deployment.is_terminal:
                return
            transition(deployment)
            await self._persist(deployment)
        await self._release(deployment, deployment.id)
        run.rollback_started.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start(self, run: _Run, coro: Awaitable[None]) -> None:
        deployment_id = run.deployment.id
        self._runs[deployment_id] = run
        task = asyncio.ensure_future(coro)
        run.task = task

        def _forget(_: asyncio.Task[None]) -> None:
            for key in [k for k, v in self._runs.items() if v is run]:
                del self._runs[key]

        task.add_done_callback(_forget)

    async def _current(self, deployment_id: str) -> Deployment:
        run = self._runs.get(deployment_id)
        if run is not None:
            if run.deployment.id == deployment_id:
                return run.deployment
        return await self.get_deployment(deployment_id)

    @asynccontextmanager
    async def _guard(self, deployment_id: str) -> AsyncIterator[None]:
        async with hold_lock(
            self._lock_service,
            deployment_lock_key(deployment_id),
            ttl_seconds=self._lock_ttl_seconds,
            wait_seconds=self._lock_wait_seconds,
            retry_interval=self._lock_retry_interval,
        ):
            yield

    async def _persist(self, deployment: Deployment) -> None:
        await self._sink.update(deployment)
        await self._publish_events(deployment)

    async def _publish_events(self, deployment: Deployment) -> None:
        """Collect and publish all pending domain events from an aggregate."""
        for event in deployment.collect_events():
            await self._event_publisher.publish(event.event_type, event.model_dump(mode="json"))

    async def _release(self, deployment: Deployment, holder_id: str) -> None:
        released = await self._sink.release_claim(
            deployment.application, deployment.environment, holder_id
        )
        if released:
            logger.debug("claim_released", holder_id=holder_id)
