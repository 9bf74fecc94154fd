"""Unit tests for the process-local and Redis deployment locks."""

from __future__ import annotations

from typing import Any

import pytest

from rollout.infrastructure.cache.redis_lock import RedisDistributedLock
from rollout.infrastructure.locking.local_lock import InMemoryDistributedLock


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX locking."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def eval(self, script: str, numkeys: int, key: str, value: str, *args: Any) -> int:
        if self.values.get(key) != value:
            return 0
        if "del" in script:
            del self.values[key]
        else:
            self.ttls[key] = int(args[0])
        return 1

    async def exists(self, key: str) -> int:
        return int(key in self.values)


class TestInMemoryDistributedLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self) -> None:
        lock = InMemoryDistributedLock()
        assert await lock.acquire("deploy:d-1")
        assert not await lock.acquire("deploy:d-1")
        assert await lock.is_locked("deploy:d-1")
        assert await lock.release("deploy:d-1")
        assert not await lock.is_locked("deploy:d-1")

    @pytest.mark.asyncio
    async def test_release_unheld(self) -> None:
        assert not await InMemoryDistributedLock().release("deploy:d-1")

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self) -> None:
        lock = InMemoryDistributedLock()
        await lock.acquire("deploy:d-1", ttl_seconds=0)
        assert not await lock.is_locked("deploy:d-1")
        assert await lock.acquire("deploy:d-1", ttl_seconds=30)

    @pytest.mark.asyncio
    async def test_extend(self) -> None:
        lock = InMemoryDistributedLock()
        assert not await lock.extend("deploy:d-1")
        await lock.acquire("deploy:d-1")
        assert await lock.extend("deploy:d-1", ttl_seconds=60)


class TestRedisDistributedLock:
    @pytest.mark.asyncio
    async def test_acquire_sets_prefixed_key(self) -> None:
        client = FakeRedis()
        lock = RedisDistributedLock(client)  # type: ignore[arg-type]
        assert await lock.acquire("deploy:d-1", ttl_seconds=45)
        assert "rollout:lock:deploy:d-1" in client.values
        assert client.ttls["rollout:lock:deploy:d-1"] == 45
        assert await lock.is_locked("deploy:d-1")

    @pytest.mark.asyncio
    async def test_second_holder_rejected(self) -> None:
        client = FakeRedis()
        first = RedisDistributedLock(client)  # type: ignore[arg-type]
        second = RedisDistributedLock(client)  # type: ignore[arg-type]
        assert await first.acquire("deploy:d-1")
        assert not await second.acquire("deploy:d-1")
        assert not await second.release("deploy:d-1")
        assert await first.is_locked("deploy:d-1")

    @pytest.mark.asyncio
    async def test_release_only_own_value(self) -> None:
        client = FakeRedis()
        lock = RedisDistributedLock(client)  # type: ignore[arg-type]
        await lock.acquire("deploy:d-1")
        # Lock expired and was taken over by another process.
        client.values["rollout:lock:deploy:d-1"] = "someone-else"
        assert not await lock.release("deploy:d-1")
        assert client.values["rollout:lock:deploy:d-1"] == "someone-else"

    @pytest.mark.asyncio
    async def test_release_and_extend(self) -> None:
        client = FakeRedis()
        lock = RedisDistributedLock(client, key_prefix="test")  # type: ignore[arg-type]
        await lock.acquire("deploy:d-1", ttl_seconds=10)
        assert await lock.extend("deploy:d-1", ttl_seconds=90)
        assert client.ttls["test:deploy:d-1"] == 90
        assert await lock.release("deploy:d-1")
        assert not await lock.is_locked("deploy:d-1")
        assert not await lock.extend("deploy:d-1")
