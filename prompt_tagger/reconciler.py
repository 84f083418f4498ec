"""
Reconciliation loop for continuous (polling) operation of the Prompt Tagger.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from .config import Settings
from .file_utils import is_supported_image
from .logging import get_logger
from .performance_monitor import performance_monitor
from .photoprism_client import PhotoPrismAPIError, PhotoPrismClient
from .processor import PromptTagger
from .worker_pool import KeyedWorkQueue

IDLE = "idle"
QUEUING = "queuing"
DRAINING = "draining"
WAITING = "waiting"


class Reconciler:
    """Periodically queues uncaptioned photos and waits for the pool to drain."""

    def __init__(
        self,
        processor: PromptTagger,
        client: PhotoPrismClient,
        queue: KeyedWorkQueue,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.logger = get_logger("reconciler")
        self.processor = processor
        self.client = client
        self.queue = queue
        self.page_size = settings.poll_page_size
        self.poll_interval = settings.poll_interval
        self.clock = clock
        self.sleep = sleep

        self.state = IDLE
        self.running = False
        self.cycles_completed = 0
        self.last_queued = 0

    async def run_cycle(self) -> Optional[int]:
        """Run one queue-then-drain cycle. Returns the number of tasks queued.

        A failed candidate query is logged and yields no candidates (None).
        """
        self.state = QUEUING
        try:
            photos = await self.client.find_uncaptioned_photos(self.page_size)
        except PhotoPrismAPIError as e:
            self.logger.error(f"❌ Candidate query failed: {e}")
            performance_monitor.record_cycle_failure()
            self.state = IDLE
            return None

        queued = 0
        for photo in photos:
            if photo.UID in self.queue:
                self.logger.debug(f"⏭️  Still in flight | uid: {photo.UID}")
                continue
            if not is_supported_image(photo.file_name):
                self.logger.debug(f"⏭️  Unsupported file type | uid: {photo.UID} | file: {photo.relative_path}")
                continue
            if self.queue.submit(photo.UID, self._task_for(photo)):
                queued += 1

        if queued:
            self.logger.info(f"📥 Queued {queued}/{len(photos)} candidates")

        self.state = DRAINING
        await self.queue.on_idle()
        self.state = IDLE
        self.last_queued = queued
        return queued

    def _task_for(self, photo):
        async def task() -> None:
            await self.processor.process_candidate(photo)
        return task

    async def run_forever(self, max_cycles: Optional[int] = None):
        """Run cycles until stopped (or until ``max_cycles`` have run).

        Pacing: ``wait = max(0, poll_interval - elapsed)`` where elapsed covers
        query, queuing and draining. After a failed query the full interval is
        waited.
        """
        self.running = True
        self.logger.info(
            f"🔄 Starting reconciliation loop | interval: {self.poll_interval:.0f}s | page size: {self.page_size}"
        )

        try:
            while self.running:
                cycle_start = self.clock()
                queued = await self.run_cycle()
                if queued is None:
                    elapsed = 0.0
                else:
                    elapsed = self.clock() - cycle_start
                    performance_monitor.record_cycle(elapsed, queued)

                self.cycles_completed += 1
                if max_cycles is not None and self.cycles_completed >= max_cycles:
                    self.logger.info(f"🏁 Reached maximum cycles ({max_cycles})")
                    break

                wait = max(0.0, self.poll_interval - elapsed)
                self.state = WAITING
                self.logger.debug(f"⏳ Next cycle in {wait:.1f}s")
                await self.sleep(wait)
        finally:
            self.running = False
            self.state = IDLE

    def stop(self):
        """Stop the loop after the current cycle."""
        self.logger.info("Stopping reconciliation loop")
        self.running = False

    def get_status(self) -> dict:
        return {
            "state": self.state,
            "cycles_completed": self.cycles_completed,
            "last_queued": self.last_queued,
        }
