"""In-memory audit sink for development and testing."""

from __future__ import annotations

from rollout.domain.errors import InvalidDeploymentStateError
from rollout.domain.models.deployment import Deployment, DeploymentStatus
from rollout.domain.ports.repositories import AuditSink


class InMemoryAuditSink(AuditSink):
    """In-memory audit sink; each instance owns its own store.

    Records are stored as deep copies so that callers can never mutate an
    entry in place. Claim check-and-set runs without an await in between,
    which makes it atomic on the event loop.
    """

    def __init__(self) -> None:
        self._store: dict[str, Deployment] = {}
        self._claims: dict[tuple[str, str], str] = {}

    async def create_claiming(self, deployment: Deployment) -> bool:
        key = (deployment.application, deployment.environment)
        if key in self._claims:
            return False
        self._claims[key] = deployment.id
        self._store[deployment.id] = self._copy(deployment)
        return True

    async def save(self, deployment: Deployment) -> Deployment:
        self._store[deployment.id] = self._copy(deployment)
        return deployment

    async def attach_claim(
        self, application: str, environment: str, holder_id: str, deployment_id: str
    ) -> bool:
        key = (application, environment)
        if self._claims.get(key) != holder_id:
            return False
        self._claims[key] = deployment_id
        return True

    async def release_claim(
        self, application: str, environment: str, deployment_id: str
    ) -> bool:
        key = (application, environment)
        if self._claims.get(key) != deployment_id:
            return False
        del self._claims[key]
        return True

    async def claim_holder(self, application: str, environment: str) -> str | None:
        return self._claims.get((application, environment))

    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        stored = self._store.get(deployment_id)
        return self._copy(stored) if stored else None

    async def update(self, deployment: Deployment) -> Deployment:
        stored = self._store.get(deployment.id)
        if stored is None:
            raise InvalidDeploymentStateError(f"Deployment {deployment.id} was never saved")
        if stored.is_terminal and stored.revision != deployment.revision:
            raise InvalidDeploymentStateError(
                f"Deployment {deployment.id} is {stored.status.value}; its record is immutable"
            )
        self._store[deployment.id] = self._copy(deployment)
        return deployment

    async def list_active(
        self, application: str | None = None, environment: str | None = None
    ) -> list[Deployment]:
        items = [
            d for d in self._store.values()
            if d.is_active
            and (application is None or d.application == application)
            and (environment is None or d.environment == environment)
        ]
        return [self._copy(d) for d in self._newest_first(items)]

    async def list_history(
        self, application: str, environment: str, limit: int = 20
    ) -> list[Deployment]:
        items = [
            d for d in self._store.values()
            if d.application == application and d.environment == environment
        ]
        return [self._copy(d) for d in self._newest_first(items)[:limit]]

    async def last_successful(
        self, application: str, environment: str, version: str | None = None
    ) -> Deployment | None:
        for d in self._newest_first(list(self._store.values())):
            if d.application != application or d.environment != environment:
                continue
            if version is not None and d.target_version != version:
                continue
            if d.status == DeploymentStatus.SUCCEEDED and not d.dry_run and not d.is_rollback:
                return self._copy(d)
            if d.status == DeploymentStatus.ROLLED_BACK and d.is_rollback and d.target_version:
                return self._copy(d)
        return None

    def clear(self) -> None:
        self._store.clear()
        self._claims.clear()

    @staticmethod
    def _newest_first(items: list[Deployment]) -> list[Deployment]:
        # Reversed insertion order breaks created_at ties.
        return sorted(reversed(items), key=lambda d: d.created_at, reverse=True)

    @staticmethod
    def _copy(deployment: Deployment) -> Deployment:
        copy = deployment.model_copy(deep=True)
        copy.collect_events()
        return copy
