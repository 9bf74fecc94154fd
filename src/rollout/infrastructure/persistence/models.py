"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    func,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class DeploymentORM(Base):
    """Audit record of one deployment or rollback.

    The full aggregate lives in ``data``; the other columns are copies used
    for filtering and ordering.
    """

    __tablename__ = "deployments"

    id = Column(String(36), primary_key=True)
    application = Column(String(63), nullable=False)
    environment = Column(String(63), nullable=False)
    status = Column(String(50), nullable=False, index=True)
    target_version = Column(String(128), nullable=False)
    dry_run = Column(Boolean, nullable=False, default=False)
    rollback_of_deployment_id = Column(String(36), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    data = Column(JSON, nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_deployments_app_env_created", "application", "environment", "created_at"),
        Index("ix_deployments_app_env_status", "application", "environment", "status"),
    )


class ActiveDeploymentORM(Base):
    """Claim row: at most one per application/environment pair."""

    __tablename__ = "active_deployments"

    application = Column(String(63), nullable=False)
    environment = Column(String(63), nullable=False)
    deployment_id = Column(String(36), nullable=False, unique=True)
    claimed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        PrimaryKeyConstraint("application", "environment", name="pk_active_deployments"),
    )
