"""Base polling worker implementation."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


class PollingWorker(ABC):
    """Background loop that calls :meth:`poll_once` every ``poll_interval``.

    Errors raised by a single poll are logged and the loop carries on;
    only :meth:`stop` ends it.
    """

    def __init__(
        self,
        worker_id: str | None = None,
        poll_interval: float = 5.0,
    ) -> None:
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._poll_interval = poll_interval
        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._poll_count = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the polling loop until stopped."""
        self._running = True
        logger.info("worker_started", worker_id=self._worker_id)

        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.exception("worker_poll_error", worker_id=self._worker_id, error=str(e))
            self._poll_count += 1
            await asyncio.sleep(self._poll_interval)

    def ensure_started(self) -> None:
        """Start the loop as a background task if it is not running already."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.create_task(self.start())

    async def stop(self) -> None:
        """Stop the loop and wait for the background task to end."""
        self._running = False
        logger.info("worker_stopping", worker_id=self._worker_id)

        task, self._loop_task = self._loop_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        logger.info("worker_stopped", worker_id=self._worker_id)

    def get_health(self) -> dict[str, Any]:
        """Return a health snapshot of the worker."""
        return {
            "worker_id": self._worker_id,
            "running": self._running,
            "poll_interval": self._poll_interval,
            "polls": self._poll_count,
        }

    @abstractmethod
    async def poll_once(self) -> None:
        """One iteration of work. Subclasses implement specific logic."""
