"""Domain events package."""

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


__all__ = [
    "DeploymentCancelled",
    "DeploymentFailed",
    "DeploymentMonitoringStarted",
    "DeploymentRequested",
    "DeploymentRollbackFailed",
    "DeploymentRollbackStarted",
    "DeploymentRolledBack",
    "DeploymentStageCompleted",
    "DeploymentStarted",
    "DeploymentSucceeded",
    "DeploymentValidationStarted",
    "DeploymentWarningRaised",
    "OperatorAlertRaised",
]
