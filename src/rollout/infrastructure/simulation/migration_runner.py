"""Simulated migration runner for development and testing."""

from __future__ import annotations

import structlog

from rollout.domain.errors import MigrationError
from rollout.domain.models.config import MigrationSpec
from rollout.domain.ports.services import MigrationRunner


logger = structlog.get_logger(__name__)


class SimulatedMigrationRunner(MigrationRunner):
    """Records applied migrations; failures can be injected per direction."""

    def __init__(self) -> None:
        self.applied: list[str] = []
        self.rolled_back: list[str] = []
        self.fail_apply = False
        self.fail_rollback = False

    async def apply(self, spec: MigrationSpec) -> None:
        if self.fail_apply:
            raise MigrationError(f"migration {spec.id} failed to apply")
        self.applied.append(spec.id)
        logger.info("sim_migration_applied", migration_id=spec.id)

    async def rollback(self, spec: MigrationSpec) -> None:
        if not spec.reversible:
            raise MigrationError(f"migration {spec.id} has no rollback")
        if self.fail_rollback:
            raise MigrationError(f"migration {spec.id} failed to roll back")
        self.rolled_back.append(spec.id)
        logger.info("sim_migration_rolled_back", migration_id=spec.id)
