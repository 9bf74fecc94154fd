"""Deployment API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from rollout.api.dependencies.services import get_orchestrator
from rollout.api.schemas.deployment_schemas import (
    CancelDeploymentRequest,
    CreateDeploymentRequest,
    DeploymentListResponse,
    DeploymentResponse,
    RollbackDeploymentRequest,
    RollbackResponse,
)
from rollout.domain.services.orchestrator import DeploymentOrchestrator


router = APIRouter(prefix="/deployments", tags=["deployments"])

Orchestrator = Annotated[DeploymentOrchestrator, Depends(get_orchestrator)]


@router.post(
    "",
    response_model=DeploymentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_deployment(
    request: CreateDeploymentRequest,
    orchestrator: Orchestrator,
) -> DeploymentResponse:
    """Claim the application/environment pair and start a rollout."""
    deployment_id = await orchestrator.request_deployment(
        request.to_config(), requested_by=request.requested_by
    )
    deployment = await orchestrator.get_deployment(deployment_id)
    return DeploymentResponse.from_domain(deployment)


@router.get("/active", response_model=DeploymentListResponse)
async def list_active_deployments(
    orchestrator: Orchestrator,
    application: str | None = None,
    environment: str | None = None,
) -> DeploymentListResponse:
    """List deployments that have not reached a terminal state."""
    deployments = await orchestrator.list_active(application, environment)
    items = [DeploymentResponse.from_domain(d) for d in deployments]
    return DeploymentListResponse(items=items, total=len(items))


@router.get("/history", response_model=DeploymentListResponse)
async def list_deployment_history(
    orchestrator: Orchestrator,
    application: str,
    environment: str,
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
) -> DeploymentListResponse:
    """Audit history for one application/environment pair, newest first."""
    deployments = await orchestrator.list_history(application, environment, limit)
    items = [DeploymentResponse.from_domain(d) for d in deployments]
    return DeploymentListResponse(items=items, total=len(items))


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(
    deployment_id: str,
    orchestrator: Orchestrator,
) -> DeploymentResponse:
    deployment = await orchestrator.get_deployment(deployment_id)
    return DeploymentResponse.from_domain(deployment)


@router.post("/{deployment_id}/cancel", response_model=DeploymentResponse)
async def cancel_deployment(
    deployment_id: str,
    orchestrator: Orchestrator,
    request: CancelDeploymentRequest | None = None,
) -> DeploymentResponse:
    """Cancel a deployment; after side effects this becomes a rollback."""
    reason = request.reason if request else "cancelled by operator"
    deployment = await orchestrator.cancel(deployment_id, reason)
    return DeploymentResponse.from_domain(deployment)


@router.post(
    "/{deployment_id}/rollback",
    response_model=RollbackResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def rollback_deployment(
    deployment_id: str,
    orchestrator: Orchestrator,
    request: RollbackDeploymentRequest | None = None,
) -> RollbackResponse:
    """Restore the version that was serving before this deployment, or an earlier release."""
    request = request or RollbackDeploymentRequest()
    rollback_id = await orchestrator.rollback(
        deployment_id,
        requested_by=request.requested_by,
        reason=request.reason,
        target_version=request.target_version,
    )
    return RollbackResponse(deployment_id=deployment_id, rollback_deployment_id=rollback_id)
