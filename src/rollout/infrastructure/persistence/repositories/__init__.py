"""Audit sink implementations."""

from rollout.infrastructure.persistence.repositories.deployment_repo import PostgresAuditSink
from rollout.infrastructure.persistence.repositories.in_memory import InMemoryAuditSink


__all__ = [
    "InMemoryAuditSink",
    "PostgresAuditSink",
]
