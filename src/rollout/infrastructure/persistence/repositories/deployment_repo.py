"""Deployment audit sink backed by PostgreSQL."""

from __future__ import annotations

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from rollout.domain.errors import InvalidDeploymentStateError
from rollout.domain.models.deployment import Deployment, DeploymentStatus, TERMINAL_STATUSES
from rollout.domain.ports.repositories import AuditSink
from rollout.infrastructure.persistence.database import DatabaseManager
from rollout.infrastructure.persistence.models import ActiveDeploymentORM, DeploymentORM


_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class PostgresAuditSink(AuditSink):
    """PostgreSQL implementation of AuditSink.

    The active-deployment claim is a row in ``active_deployments`` keyed on
    the pair, inserted in the same transaction as the deployment, so the
    primary key is what rejects a concurrent second claim.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create_claiming(self, deployment: Deployment) -> bool:
        try:
            async with self._db.session() as session:
                session.add(self._to_orm(deployment))
                session.add(ActiveDeploymentORM(
                    application=deployment.application,
                    environment=deployment.environment,
                    deployment_id=deployment.id,
                ))
                await session.flush()
        except IntegrityError:
            return False
        return True

    async def save(self, deployment: Deployment) -> Deployment:
        async with self._db.session() as session:
            session.add(self._to_orm(deployment))
            await session.flush()
        return deployment

    async def attach_claim(
        self, application: str, environment: str, holder_id: str, deployment_id: str
    ) -> bool:
        async with self._db.session() as session:
            result = await session.execute(
                update(ActiveDeploymentORM)
                .where(
                    ActiveDeploymentORM.application == application,
                    ActiveDeploymentORM.environment == environment,
                    ActiveDeploymentORM.deployment_id == holder_id,
                )
                .values(deployment_id=deployment_id)
            )
        return result.rowcount == 1

    async def release_claim(
        self, application: str, environment: str, deployment_id: str
    ) -> bool:
        async with self._db.session() as session:
            result = await session.execute(
                delete(ActiveDeploymentORM).where(
                    ActiveDeploymentORM.application == application,
                    ActiveDeploymentORM.environment == environment,
                    ActiveDeploymentORM.deployment_id == deployment_id,
                )
            )
        return result.rowcount == 1

    async def claim_holder(self, application: str, environment: str) -> str | None:
        async with self._db.session() as session:
            result = await session.execute(
                select(ActiveDeploymentORM.deployment_id).where(
                    ActiveDeploymentORM.application == application,
                    ActiveDeploymentORM.environment == environment,
                )
            )
            return result.scalar_one_or_none()

    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        async with self._db.session() as session:
            result = await session.execute(
                select(DeploymentORM).where(DeploymentORM.id == deployment_id)
            )
            orm = result.scalar_one_or_none()
            return self._to_domain(orm) if orm else None

    async def update(self, deployment: Deployment) -> Deployment:
        async with self._db.session() as session:
            result = await session.execute(
                select(DeploymentORM.status, DeploymentORM.revision)
                .where(DeploymentORM.id == deployment.id)
                .with_for_update()
            )
            row = result.one_or_none()
            if row is None:
                raise InvalidDeploymentStateError(f"Deployment {deployment.id} was never saved")
            stored_status, stored_revision = row
            if stored_status in _TERMINAL_VALUES and stored_revision != deployment.revision:
                raise InvalidDeploymentStateError(
                    f"Deployment {deployment.id} is {stored_status}; its record is immutable"
                )
            await session.execute(
                update(DeploymentORM)
                .where(DeploymentORM.id == deployment.id)
                .values(
                    status=deployment.status.value,
                    target_version=deployment.target_version,
                    error_message=deployment.error,
                    data=deployment.model_dump(mode="json"),
                    revision=deployment.revision,
                    updated_at=deployment.updated_at,
                )
            )
        return deployment

    async def list_active(
        self, application: str | None = None, environment: str | None = None
    ) -> list[Deployment]:
        query = select(DeploymentORM).where(DeploymentORM.status.not_in(_TERMINAL_VALUES))
        if application is not None:
            query = query.where(DeploymentORM.application == application)
        if environment is not None:
            query = query.where(DeploymentORM.environment == environment)
        async with self._db.session() as session:
            result = await session.execute(query.order_by(DeploymentORM.created_at.desc()))
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def list_history(
        self, application: str, environment: str, limit: int = 20
    ) -> list[Deployment]:
        async with self._db.session() as session:
            result = await session.execute(
                select(DeploymentORM)
                .where(
                    DeploymentORM.application == application,
                    DeploymentORM.environment == environment,
                )
                .order_by(DeploymentORM.created_at.desc())
                .limit(limit)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def last_successful(
        self, application: str, environment: str, version: str | None = None
    ) -> Deployment | None:
        succeeded = and_(
            DeploymentORM.status == DeploymentStatus.SUCCEEDED.value,
            DeploymentORM.dry_run.is_(False),
            DeploymentORM.rollback_of_deployment_id.is_(None),
        )
        restored = and_(
            DeploymentORM.status == DeploymentStatus.ROLLED_BACK.value,
            DeploymentORM.rollback_of_deployment_id.is_not(None),
            DeploymentORM.target_version != "",
        )
        conditions = [
            DeploymentORM.application == application,
            DeploymentORM.environment == environment,
            or_(succeeded, restored),
        ]
        if version is not None:
            conditions.append(DeploymentORM.target_version == version)
        async with self._db.session() as session:
            result = await session.execute(
                select(DeploymentORM)
                .where(*conditions)
                .order_by(DeploymentORM.created_at.desc())
                .limit(1)
            )
            orm = result.scalar_one_or_none()
            return self._to_domain(orm) if orm else None

    def _to_orm(self, deployment: Deployment) -> DeploymentORM:
        return DeploymentORM(
            id=deployment.id,
            application=deployment.application,
            environment=deployment.environment,
            status=deployment.status.value,
            target_version=deployment.target_version,
            dry_run=deployment.dry_run,
            rollback_of_deployment_id=deployment.rollback_of_deployment_id,
            error_message=deployment.error,
            data=deployment.model_dump(mode="json"),
            revision=deployment.revision,
            created_at=deployment.created_at,
            updated_at=deployment.updated_at,
        )

    def _to_domain(self, orm: DeploymentORM) -> Deployment:
        return Deployment.model_validate(orm.data)
