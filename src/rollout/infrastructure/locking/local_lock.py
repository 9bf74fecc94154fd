"""Process-local lock for single-instance deployments and tests."""

from __future__ import annotations

import asyncio

import structlog

from rollout.domain.ports.services import DistributedLock


logger = structlog.get_logger(__name__)


class InMemoryDistributedLock(DistributedLock):
    """DistributedLock over a dict of expiry times on the running loop's clock."""

    def __init__(self) -> None:
        self._expiries: dict[str, float] = {}

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    def _held(self, resource_id: str) -> bool:
        expiry = self._expiries.get(resource_id)
        if expiry is None:
            return False
        if expiry <= self._now():
            del self._expiries[resource_id]
            logger.warning("lock_expired", resource_id=resource_id)
            return False
        return True

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        if self._held(resource_id):
            return False
        self._expiries[resource_id] = self._now() + ttl_seconds
        return True

    async def release(self, resource_id: str) -> bool:
        return self._expiries.pop(resource_id, None) is not None

    async def extend(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        if not self._held(resource_id):
            return False
        self._expiries[resource_id] = self._now() + ttl_seconds
        return True

    async def is_locked(self, resource_id: str) -> bool:
        return self._held(resource_id)
