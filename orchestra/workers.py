"""In-process background workers.

``SideEffectDispatcher`` runs best-effort side effects (audit trail, interaction
memory) on a queue consumed by a single worker task. A failing side effect is
logged and counted, never re-raised into the request that produced it.

``BackgroundJobQueue`` runs workflow-mode jobs as tracked asyncio tasks. Callers
get a workflow id back immediately; outcomes are only visible through the
workflow row's terminal status.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set, Tuple

from .middleware.metrics import track_side_effect


logger = logging.getLogger(__name__)

SideEffect = Callable[[], Awaitable[None]]


class SideEffectDispatcher:
    def __init__(self):
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        # queues are bound to the loop that first awaits them
        if self._loop is not loop or self._worker is None or self._worker.done():
            self._queue = asyncio.Queue()
            self._loop = loop
            self._worker = loop.create_task(self._run(self._queue), name="side-effects")
        return self._queue

    def submit(self, name: str, effect: SideEffect) -> None:
        """Queue ``effect``; returns without waiting for it."""
        self._ensure_worker().put_nowait((name, effect))

    async def _run(self, queue: asyncio.Queue) -> None:
        while True:
            name, effect = await queue.get()
            try:
                await effect()
                track_side_effect(name, "ok")
            except Exception as e:
                track_side_effect(name, "error")
                logger.error(f"Side effect '{name}' failed: {e}", exc_info=True)
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued side effect has run."""
        if self._queue is not None and self._loop is asyncio.get_running_loop():
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is not None and not self._worker.done():
            await self.drain()
            self._worker.cancel()
        self._worker = None
        self._queue = None
        self._loop = None


class BackgroundJobQueue:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, name: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._guard(name, job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, name: str, job: Callable[[], Awaitable[None]]) -> None:
        try:
            await job()
        except Exception as e:
            # jobs record their own terminal status; this only keeps the loop clean
            logger.error(f"Background job {name} crashed: {e}", exc_info=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every job submitted so far, including jobs they submit."""
        loop = asyncio.get_running_loop()
        while True:
            current: Tuple[asyncio.Task, ...] = tuple(
                t for t in self._tasks if t.get_loop() is loop and not t.done()
            )
            if not current:
                return
            await asyncio.gather(*current, return_exceptions=True)


side_effects = SideEffectDispatcher()
job_queue = BackgroundJobQueue()
