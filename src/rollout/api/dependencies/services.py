"""Service container and FastAPI dependencies."""

from __future__ import annotations

from typing import Annotated, Any

import redis.asyncio
import structlog
from fastapi import Depends, Request

from rollout.config import LockBackend, Settings, StoreBackend
from rollout.domain.ports.repositories import AuditSink
from rollout.domain.ports.services import (
    ArtifactProvider,
    ControlPlane,
    DistributedLock,
    EndpointChecker,
    EventPublisher,
    MigrationRunner,
    QualityAnalyzer,
)
from rollout.domain.services.health_prober import HealthProber
from rollout.domain.services.orchestrator import DeploymentOrchestrator
from rollout.domain.services.rollback import RollbackCoordinator
from rollout.infrastructure.cache.redis_lock import create_redis_client, RedisDistributedLock
from rollout.infrastructure.locking.local_lock import InMemoryDistributedLock
from rollout.infrastructure.messaging.event_publisher import (
    InMemoryEventPublisher,
    KafkaEventPublisher,
)
from rollout.infrastructure.observability.metrics import MetricsEventPublisher
from rollout.infrastructure.persistence.database import DatabaseManager
from rollout.infrastructure.persistence.repositories import InMemoryAuditSink, PostgresAuditSink
from rollout.infrastructure.probing.http_checker import HttpEndpointChecker
from rollout.infrastructure.simulation.artifacts import StaticArtifactProvider
from rollout.infrastructure.simulation.control_plane import SimulatedControlPlane
from rollout.infrastructure.simulation.endpoint_checker import ScriptedEndpointChecker
from rollout.infrastructure.simulation.migration_runner import SimulatedMigrationRunner
from rollout.infrastructure.simulation.quality_analyzer import StaticQualityAnalyzer
from rollout.workers.trigger_monitor import RollbackTriggerMonitor


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Composition root: builds every collaborator of the orchestrator once.

    Backends come from settings (audit store, lock) unless passed in
    explicitly. External collaborators default to the simulators; when a
    real control plane is supplied the HTTP endpoint checker is used.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        control_plane: ControlPlane | None = None,
        endpoint_checker: EndpointChecker | None = None,
        artifact_provider: ArtifactProvider | None = None,
        migration_runner: MigrationRunner | None = None,
        quality_analyzer: QualityAnalyzer | None = None,
        audit_sink: AuditSink | None = None,
        lock_service: DistributedLock | None = None,
        kafka_producer: Any | None = None,
    ) -> None:
        self._settings = settings
        rollout = settings.rollout

        self._db: DatabaseManager | None = None
        self._redis_client: redis.Redis | None = None

        if endpoint_checker is None:
            endpoint_checker = (
                ScriptedEndpointChecker() if control_plane is None else HttpEndpointChecker()
            )
        self.control_plane = control_plane or SimulatedControlPlane()
        self.endpoint_checker = endpoint_checker
        self.artifact_provider = artifact_provider or StaticArtifactProvider()
        self.migration_runner = migration_runner or SimulatedMigrationRunner()
        self.quality_analyzer = quality_analyzer or StaticQualityAnalyzer()
        self.audit_sink = audit_sink or self._build_audit_sink()
        self.lock_service = lock_service or self._build_lock()
        self.event_publisher = self._build_event_publisher(kafka_producer)

        self.prober = HealthProber(
            self.control_plane,
            self.endpoint_checker,
            concurrency=rollout.probe_concurrency,
            soft_error_rate_ceiling=rollout.soft_error_rate_ceiling,
        )
        self.rollback_coordinator = RollbackCoordinator(
            self.control_plane,
            self.prober,
            self.migration_runner,
            max_attempts=rollout.rollback_max_attempts,
            health_window_seconds=rollout.rollback_health_window_seconds,
            timeout_seconds=rollout.rollback_timeout_seconds,
        )
        self.monitor = RollbackTriggerMonitor(
            self.prober,
            self.quality_analyzer,
            poll_interval=rollout.monitor_poll_interval_seconds,
            worker_id="rollback-trigger-monitor",
        )
        self.orchestrator = DeploymentOrchestrator(
            audit_sink=self.audit_sink,
            control_plane=self.control_plane,
            artifact_provider=self.artifact_provider,
            migration_runner=self.migration_runner,
            quality_analyzer=self.quality_analyzer,
            prober=self.prober,
            rollback_coordinator=self.rollback_coordinator,
            monitor=self.monitor,
            event_publisher=self.event_publisher,
            lock_service=self.lock_service,
            lock_ttl_seconds=rollout.lock_ttl_seconds,
            lock_wait_seconds=rollout.lock_wait_seconds,
            lock_retry_interval=settings.redis.lock_retry_interval,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def database(self) -> DatabaseManager | None:
        """The Postgres connection when the audit store is backed by it."""
        return self._db

    def _build_audit_sink(self) -> AuditSink:
        if self._settings.rollout.store_backend == StoreBackend.POSTGRES:
            self._db = DatabaseManager(self._settings.database)
            return PostgresAuditSink(self._db)
        return InMemoryAuditSink()

    def _build_lock(self) -> DistributedLock:
        if self._settings.rollout.lock_backend == LockBackend.REDIS:
            self._redis_client = create_redis_client(self._settings.redis)
            return RedisDistributedLock(self._redis_client)
        return InMemoryDistributedLock()

    def _build_event_publisher(self, kafka_producer: Any | None) -> EventPublisher:
        publisher: EventPublisher
        if kafka_producer is not None and self._settings.kafka.enabled:
            publisher = KafkaEventPublisher(kafka_producer, self._settings.kafka.topic_prefix)
        else:
            publisher = InMemoryEventPublisher()
        if self._settings.observability.metrics_enabled:
            publisher = MetricsEventPublisher(publisher)
        return publisher

    async def startup(self) -> None:
        if self._db is not None:
            await self._db.initialize(create_schema=True)
        logger.info(
            "service_container_started",
            store_backend=self._settings.rollout.store_backend.value,
            lock_backend=self._settings.rollout.lock_backend.value,
        )

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        await self.monitor.stop()
        if isinstance(self.endpoint_checker, HttpEndpointChecker):
            await self.endpoint_checker.close()
        if self._redis_client is not None:
            await self._redis_client.aclose()
        if self._db is not None:
            await self._db.close()
        logger.info("service_container_stopped")


def get_service_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_orchestrator(
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> DeploymentOrchestrator:
    return container.orchestrator
