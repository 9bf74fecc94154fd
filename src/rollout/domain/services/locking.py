"""Waiting acquisition on top of the DistributedLock port."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from rollout.domain.errors import DeploymentLockError
from rollout.domain.ports.services import DistributedLock


logger = structlog.get_logger(__name__)


def deployment_lock_key(deployment_id: str) -> str:
    return f"deployment:{deployment_id}"


@asynccontextmanager
async def hold_lock(
    lock: DistributedLock,
    resource_id: str,
    *,
    ttl_seconds: int = 60,
    wait_seconds: float = 10.0,
    retry_interval: float = 0.05,
) -> AsyncIterator[None]:
    """Hold ``resource_id`` for the duration of the block.

    Retries until ``wait_seconds`` elapse, then raises DeploymentLockError.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + wait_seconds
    while not await lock.acquire(resource_id, ttl_seconds=ttl_seconds):
        if loop.time() >= deadline:
            logger.warning("lock_wait_exhausted", resource_id=resource_id, wait_seconds=wait_seconds)
            raise DeploymentLockError(f"Could not acquire lock for {resource_id}")
        await asyncio.sleep(retry_interval)
    try:
        yield
    finally:
        await lock.release(resource_id)
