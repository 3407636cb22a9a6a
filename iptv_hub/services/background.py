"""Fire-and-forget tasks where a newer request supersedes an older one."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

log = logging.getLogger(__name__)


class TaskSlots:
    """One running task per key.

    Starting a task for a key cancels the one already running for it.
    Cancelled tasks end silently; other failures are logged.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def start(self, key: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(self._run(key, factory))
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return task

    def get(self, key: str) -> Optional[asyncio.Task]:
        return self._tasks.get(key)

    def cancel(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    @staticmethod
    async def _run(key: str, factory: Callable[[], Awaitable[None]]) -> None:
        try:
            await factory()
        except asyncio.CancelledError:
            log.debug("Background task %r cancelled", key)
        except Exception:
            log.exception("Background task %r failed", key)
