"""Deployment domain events."""

from __future__ import annotations

from rollout.domain.models.base import DomainEvent


class DeploymentRequested(DomainEvent):
    """Emitted when a rollout is requested and its claim is held."""

    deployment_id: str
    application: str
    environment: str
    target_version: str
    event_type: str = "deployment.requested"


class DeploymentValidationStarted(DomainEvent):
    deployment_id: str
    event_type: str = "deployment.validating"


class DeploymentStarted(DomainEvent):
    """Emitted when validation passed and the first stage is about to run."""

    deployment_id: str
    strategy: str
    stage_count: int
    event_type: str = "deployment.started"


class DeploymentStageCompleted(DomainEvent):
    deployment_id: str
    stage_index: int
    stage_name: str
    outcome: str
    event_type: str = "deployment.stage_completed"


class DeploymentMonitoringStarted(DomainEvent):
    deployment_id: str
    window_seconds: float
    event_type: str = "deployment.monitoring"


class DeploymentSucceeded(DomainEvent):
    deployment_id: str
    target_version: str
    event_type: str = "deployment.succeeded"


class DeploymentFailed(DomainEvent):
    deployment_id: str
    error_message: str
    event_type: str = "deployment.failed"


class DeploymentCancelled(DomainEvent):
    deployment_id: str
    reason: str
    event_type: str = "deployment.cancelled"


class DeploymentRollbackStarted(DomainEvent):
    deployment_id: str
    reason: str
    event_type: str = "deployment.rollback_started"


class DeploymentRolledBack(DomainEvent):
    deployment_id: str
    restored_version: str | None
    event_type: str = "deployment.rolled_back"


class DeploymentRollbackFailed(DomainEvent):
    deployment_id: str
    error_message: str
    event_type: str = "deployment.rollback_failed"


class DeploymentWarningRaised(DomainEvent):
    deployment_id: str
    code: str
    message: str
    event_type: str = "deployment.warning"


class OperatorAlertRaised(DomainEvent):
    """Operator-facing alert; delivery is handled by event subscribers."""

    deployment_id: str
    application: str
    environment: str
    severity: str
    message: str
    event_type: str = "deployment.operator_alert"
