"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio
import structlog

from rollout.config import Environment, Settings
from rollout.domain.models.config import DeploymentConfig
from rollout.domain.models.workload import Workload
from rollout.domain.services.health_prober import HealthProber
from rollout.domain.services.orchestrator import DeploymentOrchestrator
from rollout.domain.services.rollback import RollbackCoordinator
from rollout.infrastructure.locking.local_lock import InMemoryDistributedLock
from rollout.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from rollout.infrastructure.persistence.repositories.in_memory import InMemoryAuditSink
from rollout.infrastructure.simulation.artifacts import StaticArtifactProvider
from rollout.infrastructure.simulation.control_plane import SimulatedControlPlane
from rollout.infrastructure.simulation.endpoint_checker import ScriptedEndpointChecker
from rollout.infrastructure.simulation.migration_runner import SimulatedMigrationRunner
from rollout.infrastructure.simulation.quality_analyzer import StaticQualityAnalyzer
from rollout.workers.trigger_monitor import RollbackTriggerMonitor


APP = "shop"
ENV = "staging"


@pytest.fixture(autouse=True)
def _reset_structlog() -> Any:
    """Keep global structlog configuration from leaking between tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.TESTING, debug=True)


@pytest.fixture
def previous_workload() -> Workload:
    return Workload(application=APP, environment=ENV, version="v1")


@pytest.fixture
def target_workload() -> Workload:
    return Workload(application=APP, environment=ENV, version="v2")


@pytest.fixture
def control_plane(previous_workload: Workload) -> SimulatedControlPlane:
    plane = SimulatedControlPlane()
    plane.seed(previous_workload, 4)
    return plane


@pytest.fixture
def checker() -> ScriptedEndpointChecker:
    return ScriptedEndpointChecker()


@pytest.fixture
def quality_analyzer() -> StaticQualityAnalyzer:
    return StaticQualityAnalyzer()


@pytest.fixture
def migration_runner() -> SimulatedMigrationRunner:
    return SimulatedMigrationRunner()


@pytest.fixture
def artifact_provider() -> StaticArtifactProvider:
    return StaticArtifactProvider()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def prober(control_plane: SimulatedControlPlane, checker: ScriptedEndpointChecker) -> HealthProber:
    return HealthProber(control_plane, checker, concurrency=8)


@pytest.fixture
def coordinator(
    control_plane: SimulatedControlPlane,
    prober: HealthProber,
    migration_runner: SimulatedMigrationRunner,
) -> RollbackCoordinator:
    return RollbackCoordinator(
        control_plane,
        prober,
        migration_runner,
        max_attempts=2,
        health_window_seconds=0,
        timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def monitor(
    prober: HealthProber, quality_analyzer: StaticQualityAnalyzer
) -> AsyncIterator[RollbackTriggerMonitor]:
    worker = RollbackTriggerMonitor(prober, quality_analyzer, poll_interval=0.01, worker_id="test-monitor")
    yield worker
    await worker.stop()


@pytest_asyncio.fixture
async def orchestrator(
    audit_sink: InMemoryAuditSink,
    control_plane: SimulatedControlPlane,
    artifact_provider: StaticArtifactProvider,
    migration_runner: SimulatedMigrationRunner,
    quality_analyzer: StaticQualityAnalyzer,
    prober: HealthProber,
    coordinator: RollbackCoordinator,
    monitor: RollbackTriggerMonitor,
    event_publisher: InMemoryEventPublisher,
) -> AsyncIterator[DeploymentOrchestrator]:
    orch = DeploymentOrchestrator(
        audit_sink=audit_sink,
        control_plane=control_plane,
        artifact_provider=artifact_provider,
        migration_runner=migration_runner,
        quality_analyzer=quality_analyzer,
        prober=prober,
        rollback_coordinator=coordinator,
        monitor=monitor,
        event_publisher=event_publisher,
        lock_service=InMemoryDistributedLock(),
        lock_wait_seconds=2.0,
        lock_retry_interval=0.005,
    )
    yield orch
    await orch.shutdown()


@pytest.fixture
def make_config() -> Callable[..., DeploymentConfig]:
    """Build a config for shop/staging v2 with test-sized timeouts."""

    def _make(**overrides: Any) -> DeploymentConfig:
        values: dict[str, Any] = {
            "application": APP,
            "environment": ENV,
            "version": "v2",
            "replicas": 4,
            "stage_timeout_seconds": 2.0,
            "deployment_timeout_seconds": 30.0,
            "monitoring_window_seconds": 0,
            "probe_window_seconds": 0,
        }
        values.update(overrides)
        return DeploymentConfig.model_validate(values)

    return _make
