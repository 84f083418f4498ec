"""
Tests for the bounded worker pool and the keyed work queue.
"""

import asyncio

import pytest

from prompt_tagger.worker_pool import KeyedWorkQueue, WorkerPool


class Tracker:
    """Records how many tasks run at the same time."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.started = []

    def task(self, name, delay=0.01):
        async def run():
            self.started.append(name)
            self.active += 1
            self.peak = max(self.peak, self.active)
            await asyncio.sleep(delay)
            self.active -= 1
        return run


@pytest.mark.asyncio
async def test_concurrency_ceiling_is_respected():
    pool = WorkerPool(3)
    tracker = Tracker()
    for i in range(10):
        pool.enqueue(tracker.task(i))

    assert pool.active_count == 3
    assert pool.pending_count == 7

    await pool.on_idle()
    assert tracker.peak == 3
    assert len(tracker.started) == 10


@pytest.mark.asyncio
async def test_tasks_start_in_fifo_order():
    pool = WorkerPool(2)
    tracker = Tracker()
    for i in range(6):
        pool.enqueue(tracker.task(i))
    await pool.on_idle()
    assert tracker.started == [0, 1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_concurrency_below_one_is_clamped():
    pool = WorkerPool(0)
    tracker = Tracker()
    for i in range(3):
        pool.enqueue(tracker.task(i))
    await pool.on_idle()
    assert pool.concurrency == 1
    assert tracker.peak == 1


@pytest.mark.asyncio
async def test_on_idle_resolves_immediately_when_idle():
    pool = WorkerPool(2)
    await asyncio.wait_for(pool.on_idle(), timeout=1)
    assert pool.is_idle()


@pytest.mark.asyncio
async def test_on_idle_waits_for_tasks_enqueued_by_tasks():
    pool = WorkerPool(1)
    done = []

    async def child():
        await asyncio.sleep(0.01)
        done.append("child")

    async def parent():
        await asyncio.sleep(0.01)
        pool.enqueue(child)
        done.append("parent")

    pool.enqueue(parent)
    await pool.on_idle()
    assert done == ["parent", "child"]
    assert pool.is_idle()


@pytest.mark.asyncio
async def test_all_idle_waiters_are_released_together():
    pool = WorkerPool(2)
    tracker = Tracker()
    pool.enqueue(tracker.task("a", delay=0.02))

    waiters = [asyncio.ensure_future(pool.on_idle()) for _ in range(3)]
    await asyncio.wait_for(asyncio.gather(*waiters), timeout=1)
    assert all(waiter.done() for waiter in waiters)


@pytest.mark.asyncio
async def test_failures_go_to_observer_and_siblings_continue():
    errors = []
    pool = WorkerPool(2, on_error=errors.append)
    tracker = Tracker()

    async def boom():
        raise RuntimeError("boom")

    pool.enqueue(boom)
    pool.enqueue(tracker.task("ok-1"))
    pool.enqueue(boom)
    pool.enqueue(tracker.task("ok-2"))
    await pool.on_idle()

    assert [str(e) for e in errors] == ["boom", "boom"]
    assert tracker.started == ["ok-1", "ok-2"]

    # The pool keeps accepting work after failures
    pool.enqueue(tracker.task("ok-3"))
    await pool.on_idle()
    assert tracker.started[-1] == "ok-3"


@pytest.mark.asyncio
async def test_failure_without_observer_is_logged(caplog):
    pool = WorkerPool(1)

    async def boom():
        raise ValueError("bad input")

    pool.enqueue(boom)
    await pool.on_idle()
    assert "bad input" in caplog.text


@pytest.mark.asyncio
async def test_keyed_queue_runs_one_task_per_key():
    queue = KeyedWorkQueue(WorkerPool(4))
    runs = []

    def factory(key):
        async def run():
            await asyncio.sleep(0.01)
            runs.append(key)
        return run

    assert queue.submit("uid-1", factory("uid-1")) is True
    assert queue.submit("uid-1", factory("uid-1")) is False
    assert queue.submit("uid-2", factory("uid-2")) is True
    assert "uid-1" in queue
    assert len(queue) == 2

    await queue.on_idle()
    assert sorted(runs) == ["uid-1", "uid-2"]
    assert len(queue) == 0

    # Released keys can be submitted again
    assert queue.submit("uid-1", factory("uid-1")) is True
    await queue.on_idle()
    assert runs.count("uid-1") == 2


@pytest.mark.asyncio
async def test_keyed_queue_releases_key_after_failure():
    errors = []
    queue = KeyedWorkQueue(WorkerPool(1, on_error=errors.append))

    async def boom():
        raise RuntimeError("failed")

    queue.submit("uid-9", boom)
    await queue.on_idle()

    assert "uid-9" not in queue
    assert len(errors) == 1
