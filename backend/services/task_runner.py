"""
Background Task Runner
Runs pipeline jobs detached from the request that started them, and lets the
app wait for outstanding jobs on shutdown.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Tracks detached asyncio tasks so they are not garbage-collected mid-run"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, fn: Callable[..., Awaitable[Any]], *args: Any, name: str = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(fn(*args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Submitted background task {task.get_name()} ({self.pending} running)")
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} failed: {exc}", exc_info=exc)

    async def drain(self, timeout: float = None) -> None:
        """Wait for running tasks; cancel whatever is left after ``timeout``"""
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} background task(s) to finish...")
        done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} background task(s) after {timeout}s")
            await asyncio.gather(*still_running, return_exceptions=True)
