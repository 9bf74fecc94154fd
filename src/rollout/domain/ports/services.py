"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from rollout.domain.models.config import DeploymentConfig, MigrationSpec
from rollout.domain.models.health import Endpoint, EndpointSample
from rollout.domain.models.quality import QualityCheck
from rollout.domain.models.rollback_trigger import RollbackTrigger
from rollout.domain.models.workload import ArtifactRef, Workload


class ControlPlane(ABC):
    """Port for the orchestration platform running the workloads."""

    @abstractmethod
    async def scale(self, workload: Workload, replicas: int) -> None:
        """Set the replica count of one workload version."""

    @abstractmethod
    async def shift_traffic(self, workload: Workload, percent: int) -> None:
        """Route ``percent`` of live traffic to ``workload``; the rest stays on the others."""

    @abstractmethod
    async def swap(self, blue: Workload, green: Workload) -> None:
        """Atomically move all live traffic from ``blue`` to ``green``."""

    @abstractmethod
    async def list_endpoints(self, workload: Workload) -> list[Endpoint]:
        """List the probe targets (replicas) of a workload."""

    @abstractmethod
    async def get_replicas(self, workload: Workload) -> int:
        """Current replica count of a workload version."""

    @abstractmethod
    async def serving_version(self, application: str, environment: str) -> str | None:
        """Version currently receiving the majority of live traffic."""


class ArtifactProvider(ABC):
    """Port for resolving deployable artifacts."""

    @abstractmethod
    async def resolve(self, version: str, image: str | None = None) -> ArtifactRef:
        """Resolve a version to a deployable artifact."""


class MigrationRunner(ABC):
    """Port for transactional schema change execution."""

    @abstractmethod
    async def apply(self, spec: MigrationSpec) -> None:
        """Apply a migration. Raises MigrationError on failure."""

    @abstractmethod
    async def rollback(self, spec: MigrationSpec) -> None:
        """Run a migration's inverse. Raises MigrationError on failure."""


class QualityAnalyzer(ABC):
    """Port for the external quality-analysis collaborator."""

    @abstractmethod
    async def latest_check(self, application: str, version: str) -> QualityCheck | None:
        """Most recent quality check for an artifact, if one was computed."""


class EndpointChecker(ABC):
    """Port for observing a single endpoint over a window."""

    @abstractmethod
    async def check(self, endpoint: Endpoint, window_seconds: float) -> EndpointSample:
        """Sample one endpoint. Unreachable endpoints yield an unhealthy sample."""


class EventPublisher(ABC):
    """Port for publishing domain events."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    @abstractmethod
    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        """Publish a batch of events."""


class DistributedLock(ABC):
    """Port for per-deployment locking."""

    @abstractmethod
    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        """Try once to acquire a lock."""

    @abstractmethod
    async def release(self, resource_id: str) -> bool:
        """Release a lock held by this instance."""

    @abstractmethod
    async def extend(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        """Extend the TTL of a held lock."""

    @abstractmethod
    async def is_locked(self, resource_id: str) -> bool:
        """Check if a resource is locked."""


BreachCallback = Callable[[str], Awaitable[None]]


class RollbackMonitor(ABC):
    """Port for the background monitor that evaluates rollback triggers."""

    @abstractmethod
    def watch(
        self,
        trigger: RollbackTrigger,
        workload: Workload,
        config: DeploymentConfig,
        on_breach: BreachCallback,
    ) -> None:
        """Start evaluating ``trigger`` against ``workload`` while it is active."""

    @abstractmethod
    def unwatch(self, deployment_id: str) -> None:
        """Stop evaluating the trigger of a deployment."""
