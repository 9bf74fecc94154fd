"""Repository port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from rollout.domain.models.deployment import Deployment


class AuditSink(ABC):
    """Port for the deployment audit store.

    Records are append-only once terminal: ``update`` on a record whose
    stored state is terminal must be rejected. The active-deployment claim
    on ``(application, environment)`` is a separate uniqueness key that
    implementations must take atomically.
    """

    @abstractmethod
    async def create_claiming(self, deployment: Deployment) -> bool:
        """Insert a deployment and claim its pair. False if the pair is taken."""

    @abstractmethod
    async def save(self, deployment: Deployment) -> Deployment:
        """Insert a deployment without touching any claim."""

    @abstractmethod
    async def attach_claim(
        self, application: str, environment: str, holder_id: str, deployment_id: str
    ) -> bool:
        """Move the pair's claim from ``holder_id`` to ``deployment_id``."""

    @abstractmethod
    async def release_claim(
        self, application: str, environment: str, deployment_id: str
    ) -> bool:
        """Release the pair's claim if ``deployment_id`` holds it."""

    @abstractmethod
    async def claim_holder(self, application: str, environment: str) -> str | None:
        """Return the deployment id currently holding the pair, if any."""

    @abstractmethod
    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        """Retrieve a deployment by ID."""

    @abstractmethod
    async def update(self, deployment: Deployment) -> Deployment:
        """Persist a mutated, previously saved deployment."""

    @abstractmethod
    async def list_active(
        self, application: str | None = None, environment: str | None = None
    ) -> list[Deployment]:
        """List non-terminal deployments, optionally filtered."""

    @abstractmethod
    async def list_history(
        self, application: str, environment: str, limit: int = 20
    ) -> list[Deployment]:
        """List deployments for a pair, newest first."""

    @abstractmethod
    async def last_successful(
        self, application: str, environment: str, version: str | None = None
    ) -> Deployment | None:
        """Most recent release that put a version in service for a pair.

        That is a SUCCEEDED non-dry-run forward deployment or a ROLLED_BACK
        rollback record that restored a version. ``version`` narrows the
        search to releases of that version.
        """
