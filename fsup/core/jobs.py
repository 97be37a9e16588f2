from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Coroutine

from redis import Redis
from rq import Queue

from .config import get_settings
from .logging import get_logger


class BaseJobBackend(ABC):
    # workers that run out of process derive video thumbnails themselves
    derives_thumbnails: bool = True

    @abstractmethod
    async def enqueue(self, task_id: str) -> None: ...


class ImmediateJobBackend(BaseJobBackend):
    derives_thumbnails = False

    async def enqueue(self, task_id: str) -> None:
        from fsup.workers.tasks import run_upload_task

        await asyncio.to_thread(run_upload_task, task_id, derive_thumbnails=False)


class RQJobBackend(BaseJobBackend):
    def __init__(self, queue: Queue):
        self.queue = queue

    async def enqueue(self, task_id: str) -> None:  # pragma: no cover - exercised via worker
        from fsup.workers.tasks import run_upload_task

        self.queue.enqueue(run_upload_task, task_id)


@lru_cache()
def get_job_backend() -> BaseJobBackend:
    settings = get_settings()
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend()
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(Queue("fsup-uploads", connection=connection))
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


class DetachedTaskRunner:
    """Runs coroutines on the event loop, detached from the request that spawned them.

    Each task gets its own cancellation scope; only :meth:`shutdown` cancels them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.logger = get_logger(component="detached_runner")

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._discard)
        return task

    def _discard(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("detached_task_crashed", task=task.get_name(), error=repr(exc))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every task spawned so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_s: float = 5.0) -> None:
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(list(self._tasks), timeout=grace_s)
        for task in still_running:
            task.cancel()
        if still_running:
            self.logger.warning("detached_tasks_cancelled", count=len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)


__all__ = [
    "BaseJobBackend",
    "ImmediateJobBackend",
    "RQJobBackend",
    "get_job_backend",
    "DetachedTaskRunner",
]
