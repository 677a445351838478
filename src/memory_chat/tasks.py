"""Supervised background tasks for fire-and-forget memory writes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskSupervisor:
    """Hold strong references to background tasks and log their failures."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0
        self.completed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, T], *, name: str | None = None) -> "asyncio.Task[T]":
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)
            return
        self.completed += 1

    async def drain(self) -> None:
        """Wait for every outstanding task; failures are already logged."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
