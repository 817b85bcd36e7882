from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable


logger = logging.getLogger(__name__)


class BackgroundTaskPool:
    """Bounded pool for detached, best-effort work.

    Submitted coroutines run outside the caller's control flow. There is no
    retry and no delivery guarantee: failures are logged and dropped, and work
    still pending at shutdown is abandoned unless ``drain`` is awaited.
    """

    def __init__(self, *, max_concurrency: int, name: str = "background") -> None:
        self._semaphore = asyncio.Semaphore(max(1, int(max_concurrency)))
        self._tasks: set[asyncio.Task] = set()
        self._name = name

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, factory: Callable[[], Awaitable[object]], *, label: str) -> asyncio.Task:
        # Never awaits the work; the semaphore only bounds how many run at once.
        task = asyncio.create_task(self._run(factory, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, factory: Callable[[], Awaitable[object]], label: str) -> None:
        async with self._semaphore:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - detached work must not crash the pool.
                logger.exception("background_task_failed pool=%s label=%s", self._name, label)

    async def drain(self, timeout_s: float | None = None) -> None:
        # Wait for in-flight work; tasks still running after the timeout are cancelled.
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, pending = await asyncio.wait(tasks, timeout=timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
