"""Async engine and sessions for the Postgres audit store."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from rollout.config import DatabaseSettings
from rollout.infrastructure.persistence.models import Base


logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Owns the engine behind :class:`PostgresAuditSink`.

    A session commits when its block exits cleanly and rolls back
    otherwise, so a claim insert that loses the race leaves no row behind.
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    async def initialize(self, create_schema: bool = False) -> None:
        if self._engine is not None:
            return
        self._engine = create_async_engine(
            self._settings.async_url,
            pool_size=self._settings.pool_size,
            max_overflow=self._settings.max_overflow,
            pool_timeout=self._settings.pool_timeout,
            pool_pre_ping=True,
        )
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        logger.info(
            "audit_store_connected",
            host=self._settings.host,
            database=self._settings.name,
            pool_size=self._settings.pool_size,
        )
        if create_schema:
            await self.create_schema()

    async def create_schema(self) -> None:
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("audit_store_schema_ready", tables=sorted(Base.metadata.tables))

    async def ping(self) -> None:
        """Round-trip to the server; raises when the store is unreachable."""
        async with self._require_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("audit_store_disconnected")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._sessions is None:
            raise RuntimeError("Audit store is not connected; call initialize() first")
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Audit store is not connected; call initialize() first")
        return self._engine
