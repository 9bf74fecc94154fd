"""Deployment aggregate root with full state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from rollout.domain.errors import InvalidStateTransitionError
from rollout.domain.events.deployment_events import (
    DeploymentCancelled,
    DeploymentFailed,
    DeploymentMonitoringStarted,
    DeploymentRequested,
    DeploymentRollbackFailed,
    DeploymentRollbackStarted,
    DeploymentRolledBack,
    DeploymentStageCompleted,
    DeploymentStarted,
    DeploymentSucceeded,
    DeploymentValidationStarted,
    DeploymentWarningRaised,
    OperatorAlertRaised,
)
from rollout.domain.models.base import AggregateRoot, utc_now, ValueObject
from rollout.domain.models.config import DeploymentConfig, StrategyKind
from rollout.domain.models.health import HealthSnapshot
from rollout.domain.models.quality import GateResult
from rollout.domain.models.workload import ArtifactRef, Workload


class DeploymentStatus(str, Enum):
    """Deployment lifecycle states."""

    PENDING = "pending"
    VALIDATING = "validating"
    IN_PROGRESS = "in_progress"
    MONITORING = "monitoring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[DeploymentStatus] = frozenset({
    DeploymentStatus.SUCCEEDED,
    DeploymentStatus.FAILED,
    DeploymentStatus.ROLLED_BACK,
    DeploymentStatus.ROLLBACK_FAILED,
    DeploymentStatus.CANCELLED,
})

# PENDING -> ROLLING_BACK is only taken by rollback records, which skip
# validation and stage execution. VALIDATING -> SUCCEEDED is the dry-run path.
VALID_TRANSITIONS: dict[DeploymentStatus, set[DeploymentStatus]] = {
    DeploymentStatus.PENDING: {
        DeploymentStatus.VALIDATING, DeploymentStatus.CANCELLED,
        DeploymentStatus.ROLLING_BACK,
    },
    DeploymentStatus.VALIDATING: {
        DeploymentStatus.IN_PROGRESS, DeploymentStatus.FAILED,
        DeploymentStatus.CANCELLED, DeploymentStatus.SUCCEEDED,
    },
    DeploymentStatus.IN_PROGRESS: {
        DeploymentStatus.MONITORING, DeploymentStatus.ROLLING_BACK,
        DeploymentStatus.CANCELLED, DeploymentStatus.FAILED,
    },
    DeploymentStatus.MONITORING: {
        DeploymentStatus.SUCCEEDED, DeploymentStatus.FAILED,
        DeploymentStatus.ROLLING_BACK,
    },
    DeploymentStatus.ROLLING_BACK: {
        DeploymentStatus.ROLLED_BACK, DeploymentStatus.ROLLBACK_FAILED,
    },
    DeploymentStatus.SUCCEEDED: set(),
    DeploymentStatus.FAILED: set(),
    DeploymentStatus.ROLLED_BACK: set(),
    DeploymentStatus.ROLLBACK_FAILED: set(),
    DeploymentStatus.CANCELLED: set(),
}


class ActionKind(str, Enum):
    SCALE = "scale"
    SHIFT_TRAFFIC = "shift_traffic"
    SWAP = "swap"
    WAIT = "wait"
    MIGRATE = "migrate"
    MIGRATE_ROLLBACK = "migrate_rollback"


class StageAction(ValueObject):
    """One control-plane action issued during a stage."""

    kind: ActionKind
    target: str
    value: float | None = None
    detail: str = ""


class StageOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class StageResult(ValueObject):
    stage_index: int
    name: str
    actions: list[StageAction] = Field(default_factory=list)
    health: HealthSnapshot | None = None
    quality: GateResult | None = None
    outcome: StageOutcome
    message: str = ""
    recorded_at: datetime = Field(default_factory=utc_now)


MANUAL_MIGRATION_INTERVENTION_REQUIRED = "ManualMigrationInterventionRequired"


class DeploymentWarning(ValueObject):
    code: str
    message: str
    raised_at: datetime = Field(default_factory=utc_now)


class Deployment(AggregateRoot):
    """One rollout attempt (or one rollback) of a release intent."""

    config: DeploymentConfig
    status: DeploymentStatus = DeploymentStatus.PENDING
    current_stage_index: int = 0
    stage_count: int = 0
    previous_version: str | None = None
    target_version: str
    artifact: ArtifactRef | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    quality_check_id: str | None = None
    rollback_of_deployment_id: str | None = None
    rollback_deployment_id: str | None = None
    stage_results: list[StageResult] = Field(default_factory=list)
    warnings: list[DeploymentWarning] = Field(default_factory=list)
    migration_applied: bool = False
    strategy_state: dict[str, Any] = Field(default_factory=dict)
    requested_by: str = ""
    reason: str = ""
    error: str | None = None

    @classmethod
    def for_config(cls, config: DeploymentConfig, requested_by: str = "") -> Deployment:
        deployment = cls(
            config=config,
            target_version=config.version,
            requested_by=requested_by,
        )
        deployment.record_event(DeploymentRequested(
            deployment_id=deployment.id,
            application=config.application,
            environment=config.environment,
            target_version=config.version,
            correlation_id=deployment.id,
        ))
        return deployment

    @property
    def application(self) -> str:
        return self.config.application

    @property
    def environment(self) -> str:
        return self.config.environment

    @property
    def strategy_kind(self) -> StrategyKind:
        return self.config.strategy_kind

    @property
    def target_workload(self) -> Workload:
        return Workload(
            application=self.application,
            environment=self.environment,
            version=self.target_version,
        )

    @property
    def previous_workload(self) -> Workload | None:
        if self.previous_version is None:
            return None
        return self.target_workload.with_version(self.previous_version)

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def is_rollback(self) -> bool:
        return self.rollback_of_deployment_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return not self.is_terminal

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition_to(self, new_status: DeploymentStatus) -> None:
        """Validate and execute state transition."""
        valid = VALID_TRANSITIONS.get(self.status, set())
        if new_status not in valid:
            raise InvalidStateTransitionError(
                f"Cannot transition from {self.status.value} to {new_status.value}. "
                f"Valid transitions: {sorted(s.value for s in valid)}"
            )
        self.status = new_status
        if new_status in TERMINAL_STATUSES:
            self.ended_at = utc_now()
        self.touch()

    def start_validation(self) -> None:
        self._transition_to(DeploymentStatus.VALIDATING)
        self.started_at = utc_now()
        self.record_event(DeploymentValidationStarted(
            deployment_id=self.id, correlation_id=self.id,
        ))

    def start_rollout(self, stage_count: int) -> None:
        """Validation passed; the strategy executor takes over."""
        self._transition_to(DeploymentStatus.IN_PROGRESS)
        self.stage_count = stage_count
        self.current_stage_index = 0
        self.record_event(DeploymentStarted(
            deployment_id=self.id,
            strategy=self.strategy_kind.value,
            stage_count=stage_count,
            correlation_id=self.id,
        ))

    def record_stage_result(self, result: StageResult) -> None:
        """Append a stage result; the history is never rewritten."""
        if self.is_terminal:
            raise InvalidStateTransitionError(
                f"Deployment {self.id} is {self.status.value}; its history is immutable"
            )
        self.stage_results.append(result)
        if result.outcome == StageOutcome.PASSED and not self.is_rollback:
            self.current_stage_index = result.stage_index + 1
        self.touch()
        self.record_event(DeploymentStageCompleted(
            deployment_id=self.id,
            stage_index=result.stage_index,
            stage_name=result.name,
            outcome=result.outcome.value,
            correlation_id=self.id,
        ))

    def start_monitoring(self) -> None:
        self._transition_to(DeploymentStatus.MONITORING)
        self.record_event(DeploymentMonitoringStarted(
            deployment_id=self.id,
            window_seconds=self.config.monitoring_window_seconds,
            correlation_id=self.id,
        ))

    def succeed(self, reason: str = "") -> None:
        self._transition_to(DeploymentStatus.SUCCEEDED)
        self.reason = reason or f"version {self.target_version} is serving"
        self.record_event(DeploymentSucceeded(
            deployment_id=self.id,
            target_version=self.target_version,
            correlation_id=self.id,
        ))

    def fail(self, error_message: str) -> None:
        self._transition_to(DeploymentStatus.FAILED)
        self.error = error_message
        self.reason = error_message
        self.record_event(DeploymentFailed(
            deployment_id=self.id,
            error_message=error_message,
            correlation_id=self.id,
        ))

    def cancel(self, reason: str = "cancelled by operator") -> None:
        self._transition_to(DeploymentStatus.CANCELLED)
        self.reason = reason
        self.record_event(DeploymentCancelled(
            deployment_id=self.id, reason=reason, correlation_id=self.id,
        ))

    def start_rollback(self, reason: str) -> None:
        self._transition_to(DeploymentStatus.ROLLING_BACK)
        self.reason = reason
        if self.error is None and not self.is_rollback:
            self.error = reason
        if self.started_at is None:
            self.started_at = utc_now()
        self.record_event(DeploymentRollbackStarted(
            deployment_id=self.id, reason=reason, correlation_id=self.id,
        ))

    def complete_rollback(self, restored_version: str | None) -> None:
        reason = (
            f"{self.reason}; restored {restored_version}" if restored_version
            else f"{self.reason}; no previous version to restore"
        )
        self._transition_to(DeploymentStatus.ROLLED_BACK)
        self.reason = reason
        self.record_event(DeploymentRolledBack(
            deployment_id=self.id,
            restored_version=restored_version,
            correlation_id=self.id,
        ))

    def fail_rollback(self, error_message: str, alert: bool = True) -> None:
        """Most severe terminal state.

        The rollback record raises the operator alert; an in-flight original
        that mirrors the record passes ``alert=False`` so it fires once.
        """
        self._transition_to(DeploymentStatus.ROLLBACK_FAILED)
        self.error = error_message
        self.reason = f"rollback failed: {error_message}"
        self.record_event(DeploymentRollbackFailed(
            deployment_id=self.id,
            error_message=error_message,
            correlation_id=self.id,
        ))
        if not alert:
            return
        self.record_event(OperatorAlertRaised(
            deployment_id=self.id,
            application=self.application,
            environment=self.environment,
            severity="critical",
            message=self.reason,
            correlation_id=self.id,
        ))

    def add_warning(self, code: str, message: str) -> None:
        self.warnings.append(DeploymentWarning(code=code, message=message))
        self.touch()
        self.record_event(DeploymentWarningRaised(
            deployment_id=self.id, code=code, message=message, correlation_id=self.id,
        ))

    def update_strategy_state(self, **values: Any) -> None:
        self.strategy_state = {**self.strategy_state, **values}
        self.touch()

    @property
    def has_side_effects(self) -> bool:
        """True once any control-plane or schema action was issued."""
        return (
            self.migration_applied
            or self.strategy_state.get("actions_issued", 0) > 0
            or self.strategy_state.get("migration_attempted", False)
        )

    @property
    def progress_percentage(self) -> float:
        if self.stage_count == 0:
            return 100.0 if self.status == DeploymentStatus.SUCCEEDED else 0.0
        return min(100.0, self.current_stage_index / self.stage_count * 100)
