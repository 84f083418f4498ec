"""
Bounded asyncio worker pool and in-flight de-duplication.

Everything here runs on the event loop thread. Counters and sets are only
touched between awaits, so no locks are needed.
"""

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Set

from .logging import get_logger

Task = Callable[[], Awaitable[None]]
ErrorObserver = Callable[[BaseException], None]


class WorkerPool:
    """FIFO task queue with a fixed ceiling on outstanding tasks."""

    def __init__(self, concurrency: int, on_error: Optional[ErrorObserver] = None):
        self.concurrency = max(1, int(concurrency))
        self.on_error = on_error
        self.logger = get_logger("worker_pool")
        self._queue: Deque[Task] = deque()
        self._active = 0
        self._idle_waiters: List[asyncio.Future] = []
        self._running: Set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def is_idle(self) -> bool:
        return not self._queue and self._active == 0

    def enqueue(self, task: Task) -> None:
        """Queue a task and start it right away if there is capacity."""
        self._queue.append(task)
        self._run_next()

    async def on_idle(self) -> None:
        """Wait until the queue is empty and nothing is running."""
        if self.is_idle():
            return
        waiter = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(waiter)
        await waiter

    def _run_next(self) -> None:
        while self._active < self.concurrency and self._queue:
            task = self._queue.popleft()
            self._active += 1
            running = asyncio.ensure_future(self._execute(task))
            self._running.add(running)
            running.add_done_callback(self._running.discard)

        if self.is_idle():
            waiters, self._idle_waiters = self._idle_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)

    async def _execute(self, task: Task) -> None:
        try:
            await task()
        except Exception as e:
            self._report(e)
        finally:
            self._active -= 1
            self._run_next()

    def _report(self, error: Exception) -> None:
        if self.on_error is None:
            self.logger.error(f"❌ Worker task failed: {error!r}")
            return
        try:
            self.on_error(error)
        except Exception as observer_error:
            self.logger.error(f"❌ Error observer failed: {observer_error!r} (task error: {error!r})")


class KeyedWorkQueue:
    """Worker pool front end that keeps at most one task in flight per key."""

    def __init__(self, pool: WorkerPool):
        self.pool = pool
        self.in_flight: Set[str] = set()
        self.logger = get_logger("work_queue")

    def __contains__(self, key: str) -> bool:
        return key in self.in_flight

    def __len__(self) -> int:
        return len(self.in_flight)

    def submit(self, key: str, factory: Task) -> bool:
        """Enqueue ``factory`` unless ``key`` is already in flight.

        The key is claimed before the task is queued and released when the
        task ends, whatever the outcome.
        """
        if key in self.in_flight:
            self.logger.debug(f"⏭️  Already in flight: {key}")
            return False

        self.in_flight.add(key)

        async def run() -> None:
            try:
                await factory()
            finally:
                self.in_flight.discard(key)

        self.pool.enqueue(run)
        return True

    async def on_idle(self) -> None:
        await self.pool.on_idle()
