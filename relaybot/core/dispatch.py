"""
Task Supervisor

Runs one task per inbound message without blocking the caller, optionally
bounded by a semaphore, and cancels whatever is still running at shutdown.
"""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Tracks fire-and-forget handler tasks so shutdown can cancel them."""

    def __init__(self, max_concurrent: int = 0):
        self.max_concurrent = max_concurrent
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None
        )
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> Optional[asyncio.Task]:
        """Schedule `coro` and return immediately."""
        if self._closed:
            logger.debug("TaskSupervisor: Shutting down, dropping new task")
            coro.close()
            return None

        task = asyncio.create_task(self._run(coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine) -> None:
        try:
            if self._semaphore is None:
                await coro
            else:
                # Waiting happens inside the task, never in the dispatcher
                async with self._semaphore:
                    await coro
        except asyncio.CancelledError:
            coro.close()
            raise
        except Exception as e:
            logger.error(f"TaskSupervisor: Unhandled error in handler task: {e}", exc_info=True)

    async def shutdown(self) -> None:
        """Cancel all running tasks and wait until they have stopped."""
        self._closed = True
        tasks = list(self._tasks)
        if not tasks:
            return
        logger.info(f"TaskSupervisor: Cancelling {len(tasks)} in-flight handler(s)")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
