"""Rollback trigger evaluated during the post-deploy monitoring window."""

from __future__ import annotations

from pydantic import BaseModel

from rollout.domain.models.config import RollbackThresholds
from rollout.domain.models.health import HealthSnapshot, HealthStatus


class RollbackTrigger(BaseModel):
    """Live-metric thresholds scoped to one deployment.

    Only the orchestrator flips ``active``: on when the monitoring window
    opens, off when the window closes or a rollback fires. The background
    monitor reads it and calls :meth:`evaluate`.
    """

    deployment_id: str
    thresholds: RollbackThresholds
    active: bool = False

    model_config = {"validate_assignment": True}

    def activate(self) -> None:
        self.active = True

    def deactivate(self) -> None:
        self.active = False

    def evaluate(
        self, snapshot: HealthSnapshot, quality_score: float | None = None
    ) -> str | None:
        """Return the breach reason, or None when all thresholds hold."""
        if snapshot.status == HealthStatus.UNHEALTHY:
            unhealthy = ", ".join(snapshot.unhealthy_targets) or "aggregate"
            return f"health unhealthy ({unhealthy})"
        if snapshot.error_rate > self.thresholds.max_error_rate:
            return (
                f"error rate {snapshot.error_rate:.4f} exceeds ceiling "
                f"{self.thresholds.max_error_rate:.4f}"
            )
        if snapshot.p95_latency_ms > self.thresholds.max_p95_latency_ms:
            return (
                f"p95 latency {snapshot.p95_latency_ms:.1f}ms exceeds ceiling "
                f"{self.thresholds.max_p95_latency_ms:.1f}ms"
            )
        min_score = self.thresholds.min_quality_score
        if min_score is not None and quality_score is not None and quality_score < min_score:
            return f"quality score {quality_score:.1f} below minimum {min_score:.1f}"
        return None
