"""Rollout error taxonomy.

Stage-level errors are recoverable only through rollback, never by
re-running the same stage. The orchestrator is the single place that
turns any of these into a state transition.
"""

from __future__ import annotations


class RolloutError(Exception):
    """Base class for all rollout engine errors."""


class DeploymentValidationError(RolloutError):
    """Rejected before any side effect; safe to retry after fixing input."""


class StageFailureError(RolloutError):
    """A stage's aggregate health or quality verdict did not allow progress."""

    def __init__(self, message: str, stage_index: int | None = None) -> None:
        super().__init__(message)
        self.stage_index = stage_index


class StageTimeoutError(StageFailureError):
    """A stage, probe fan-out or overall deadline expired before a decision."""


class ProbeUnavailableError(RolloutError):
    """The prober itself cannot observe health (e.g. control plane down)."""


class MigrationError(RolloutError):
    """A schema migration or its inverse failed."""


class RollbackFailedError(RolloutError):
    """Restoration did not reach a healthy state; needs a human."""


class DeploymentCancelledError(RolloutError):
    """Raised out of a cancellable wait when cancellation was requested."""


class DeploymentNotFoundError(RolloutError):
    """Raised when a deployment is not found."""


class DeploymentConflictError(RolloutError):
    """Another deployment is active for the same application and environment."""


class InvalidDeploymentStateError(RolloutError):
    """The requested operation is not allowed in the deployment's current state."""


class InvalidStateTransitionError(InvalidDeploymentStateError):
    """Raised when an invalid state transition is attempted."""


class DeploymentLockError(RolloutError):
    """Raised when a per-deployment lock cannot be acquired in time."""
