"""Unit tests for API schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rollout.api.schemas.deployment_schemas import (
    CancelDeploymentRequest,
    CreateDeploymentRequest,
    DeploymentResponse,
    RollbackDeploymentRequest,
)
from rollout.domain.models.config import DeploymentConfig, StrategyKind
from rollout.domain.models.deployment import Deployment, DeploymentStatus, StageOutcome, StageResult


class TestCreateDeploymentRequest:
    def test_valid_request(self) -> None:
        req = CreateDeploymentRequest(
            application="shop",
            environment="staging",
            version="v2",
            requested_by="alice",
        )
        assert req.strategy.kind == StrategyKind.ROLLING
        assert req.requested_by == "alice"

    def test_to_config_drops_requester(self) -> None:
        req = CreateDeploymentRequest(
            application="shop",
            environment="staging",
            version="v2",
            replicas=6,
            strategy={"kind": "canary", "steps": [{"traffic_percent": 10}, {"traffic_percent": 50}]},
            requested_by="alice",
        )
        config = req.to_config()
        assert type(config) is DeploymentConfig
        assert config.replicas == 6
        assert config.strategy_kind == StrategyKind.CANARY

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CreateDeploymentRequest(
                application="shop", environment="staging", version="v2", region="eu-west-1",
            )

    def test_invalid_environment_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CreateDeploymentRequest(application="shop", environment="Prod!", version="v2")

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CreateDeploymentRequest(
                application="shop", environment="staging", version="v2",
                strategy={"kind": "shadow"},
            )


class TestOperatorRequests:
    def test_cancel_default_reason(self) -> None:
        assert CancelDeploymentRequest().reason == "cancelled by operator"

    def test_cancel_empty_reason_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CancelDeploymentRequest(reason="")

    def test_rollback_defaults(self) -> None:
        req = RollbackDeploymentRequest()
        assert req.requested_by == ""
        assert req.reason == "rollback requested by operator"
        assert req.target_version is None

    def test_rollback_empty_target_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RollbackDeploymentRequest(target_version="")


class TestDeploymentResponse:
    def test_from_domain(self) -> None:
        config = DeploymentConfig(application="shop", environment="staging", version="v2")
        deployment = Deployment.for_config(config, requested_by="alice")
        deployment.start_validation()
        deployment.previous_version = "v1"
        deployment.start_rollout(stage_count=2)
        deployment.record_stage_result(
            StageResult(stage_index=0, name="batch-1", outcome=StageOutcome.PASSED)
        )

        response = DeploymentResponse.from_domain(deployment)

        assert response.id == deployment.id
        assert response.status == DeploymentStatus.IN_PROGRESS
        assert response.strategy == StrategyKind.ROLLING
        assert response.previous_version == "v1"
        assert response.current_stage_index == 1
        assert response.progress_percentage == 50.0
        assert response.stage_results[0].outcome == "passed"
        assert response.stage_results[0].health_status is None
        assert response.requested_by == "alice"
