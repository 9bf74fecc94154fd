"""API schemas for deployment endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from rollout.domain.models.config import DeploymentConfig, StrategyKind
from rollout.domain.models.deployment import Deployment, DeploymentStatus, StageResult


class CreateDeploymentRequest(DeploymentConfig):
    """A release intent plus who is asking for it."""

    requested_by: str = Field(default="", max_length=255)

    model_config = {"frozen": True, "extra": "forbid"}

    def to_config(self) -> DeploymentConfig:
        return DeploymentConfig.model_validate(self.model_dump(exclude={"requested_by"}))


class CancelDeploymentRequest(BaseModel):
    reason: str = Field(default="cancelled by operator", min_length=1, max_length=500)


class RollbackDeploymentRequest(BaseModel):
    requested_by: str = Field(default="", max_length=255)
    reason: str = Field(default="rollback requested by operator", min_length=1, max_length=500)
    target_version: str | None = Field(default=None, min_length=1, max_length=128)


class StageResultResponse(BaseModel):
    stage_index: int
    name: str
    outcome: str
    message: str = ""
    health_status: str | None = None
    error_rate: float | None = None
    p95_latency_ms: float | None = None
    quality_passed: bool | None = None
    quality_score: float | None = None
    actions: list[dict[str, Any]] = Field(default_factory=list)
    recorded_at: datetime

    @classmethod
    def from_domain(cls, result: StageResult) -> StageResultResponse:
        return cls(
            stage_index=result.stage_index,
            name=result.name,
            outcome=result.outcome.value,
            message=result.message,
            health_status=result.health.status.value if result.health else None,
            error_rate=result.health.error_rate if result.health else None,
            p95_latency_ms=result.health.p95_latency_ms if result.health else None,
            quality_passed=result.quality.passed if result.quality else None,
            quality_score=result.quality.score if result.quality else None,
            actions=[a.model_dump(mode="json") for a in result.actions],
            recorded_at=result.recorded_at,
        )


class WarningResponse(BaseModel):
    code: str
    message: str
    raised_at: datetime


class DeploymentResponse(BaseModel):
    id: str
    application: str
    environment: str
    status: DeploymentStatus
    strategy: StrategyKind
    target_version: str
    previous_version: str | None = None
    dry_run: bool = False
    current_stage_index: int = 0
    stage_count: int = 0
    progress_percentage: float = 0.0
    quality_check_id: str | None = None
    rollback_of_deployment_id: str | None = None
    rollback_deployment_id: str | None = None
    stage_results: list[StageResultResponse] = Field(default_factory=list)
    warnings: list[WarningResponse] = Field(default_factory=list)
    reason: str = ""
    error: str | None = None
    requested_by: str = ""
    started_at: datetime | None = None
    ended_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, deployment: Deployment) -> DeploymentResponse:
        return cls(
            id=deployment.id,
            application=deployment.application,
            environment=deployment.environment,
            status=deployment.status,
            strategy=deployment.strategy_kind,
            target_version=deployment.target_version,
            previous_version=deployment.previous_version,
            dry_run=deployment.dry_run,
            current_stage_index=deployment.current_stage_index,
            stage_count=deployment.stage_count,
            progress_percentage=deployment.progress_percentage,
            quality_check_id=deployment.quality_check_id,
            rollback_of_deployment_id=deployment.rollback_of_deployment_id,
            rollback_deployment_id=deployment.rollback_deployment_id,
            stage_results=[StageResultResponse.from_domain(r) for r in deployment.stage_results],
            warnings=[WarningResponse(**w.model_dump()) for w in deployment.warnings],
            reason=deployment.reason,
            error=deployment.error,
            requested_by=deployment.requested_by,
            started_at=deployment.started_at,
            ended_at=deployment.ended_at,
            created_at=deployment.created_at,
            updated_at=deployment.updated_at,
        )


class DeploymentListResponse(BaseModel):
    items: list[DeploymentResponse]
    total: int


class RollbackResponse(BaseModel):
    deployment_id: str
    rollback_deployment_id: str


class ErrorResponse(BaseModel):
    error: str
    detail: str
