"""Unit tests for the polling worker base."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from rollout.workers.base import PollingWorker


class SimpleWorker(PollingWorker):
    """Simple worker for testing."""

    def __init__(self, should_fail: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._should_fail = should_fail
        self.polls = 0
        self.polled = asyncio.Event()

    async def poll_once(self) -> None:
        self.polls += 1
        self.polled.set()
        if self._should_fail:
            raise RuntimeError("Simulated failure")


class TestPollingWorker:
    def test_worker_has_id(self) -> None:
        worker = SimpleWorker()
        assert worker.worker_id.startswith("worker-")

    def test_custom_worker_id(self) -> None:
        worker = SimpleWorker(worker_id="my-worker")
        assert worker.worker_id == "my-worker"

    @pytest.mark.asyncio
    async def test_ensure_started_runs_loop(self) -> None:
        worker = SimpleWorker(poll_interval=0.005)
        worker.ensure_started()
        worker.ensure_started()

        await asyncio.wait_for(worker.polled.wait(), timeout=1.0)
        assert worker.running
        await worker.stop()
        assert not worker.running

    @pytest.mark.asyncio
    async def test_poll_errors_do_not_stop_loop(self) -> None:
        worker = SimpleWorker(should_fail=True, poll_interval=0.005)
        worker.ensure_started()

        for _ in range(100):
            if worker.polls >= 3:
                break
            await asyncio.sleep(0.005)
        await worker.stop()
        assert worker.polls >= 3

    @pytest.mark.asyncio
    async def test_stop_without_start(self) -> None:
        await SimpleWorker().stop()

    def test_get_health(self) -> None:
        health = SimpleWorker(worker_id="test-worker", poll_interval=2.0).get_health()
        assert health == {
            "worker_id": "test-worker",
            "running": False,
            "poll_interval": 2.0,
            "polls": 0,
        }
