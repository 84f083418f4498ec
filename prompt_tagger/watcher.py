"""
Filesystem work sources: a watchdog-based folder watcher and the bootstrap scan.
"""

import asyncio
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .file_utils import is_supported_image, scan_images
from .logging import get_logger
from .processor import PromptTagger
from .worker_pool import KeyedWorkQueue


class NewImageHandler(FileSystemEventHandler):
    """Forward newly created (or moved-in) images to the asyncio loop.

    watchdog calls this from its observer thread; the submission itself
    happens on the loop thread.
    """

    def __init__(self, watcher: "FolderWatcher", loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.watcher = watcher
        self.loop = loop

    def _forward(self, path: Optional[str]):
        if not path or not is_supported_image(path):
            return
        self.loop.call_soon_threadsafe(self.watcher.submit, Path(path))

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(getattr(event, "dest_path", None))


class FolderWatcher:
    """Watch a folder tree and process new images through the keyed queue."""

    STATUS_INTERVAL = 10.0

    def __init__(self, processor: PromptTagger, queue: KeyedWorkQueue, watch_path: Path):
        self.logger = get_logger("watcher")
        self.processor = processor
        self.queue = queue
        self.watch_path = Path(watch_path)
        self.observer = None
        self.watching = False
        self.files_seen = 0
        self._status_task: Optional[asyncio.Task] = None

    def submit(self, path: Path) -> bool:
        """Queue a file for processing unless it is already in flight."""
        path = Path(path).resolve()
        key = str(path)
        self.files_seen += 1

        async def task() -> None:
            await self.processor.process_file(path)

        queued = self.queue.submit(key, task)
        if queued:
            self.logger.info(f"🆕 New image detected: {path}")
        return queued

    def start(self):
        """Start the watchdog observer (the folder is created if missing)."""
        loop = asyncio.get_running_loop()
        self.watch_path.mkdir(parents=True, exist_ok=True)

        self.observer = Observer()
        self.observer.schedule(NewImageHandler(self, loop), str(self.watch_path), recursive=True)
        self.observer.start()
        self.watching = True
        self._status_task = asyncio.create_task(self._log_status())
        self.logger.info(f"👀 Watching for new images in {self.watch_path}")

    async def _log_status(self):
        while self.watching:
            await asyncio.sleep(self.STATUS_INTERVAL)
            self.logger.info(
                f"📡 Watcher status | watching: {self.watching} | files seen: {self.files_seen} | "
                f"in flight: {len(self.queue)}"
            )

    async def stop(self):
        """Stop the observer and wait for queued work to finish."""
        self.watching = False
        if self._status_task:
            self._status_task.cancel()
            try:
                await self._status_task
            except asyncio.CancelledError:
                pass
            self._status_task = None

        if self.observer is not None:
            self.observer.stop()
            await asyncio.to_thread(self.observer.join, 5)
            self.observer = None

        await self.queue.on_idle()
        self.logger.info("Folder watcher stopped")

    async def run_forever(self):
        self.start()
        try:
            while self.watching:
                await asyncio.sleep(1)
        finally:
            await self.stop()


async def run_bootstrap(processor: PromptTagger, queue: KeyedWorkQueue, root: Path) -> int:
    """Queue every supported image under root and wait until all are processed."""
    logger = get_logger("bootstrap")
    logger.info(f"🚀 Bootstrap scan of {root}")

    queued = 0
    for path in scan_images(Path(root)):
        resolved = path.resolve()

        async def task(path=resolved) -> None:
            await processor.process_file(path)

        if queue.submit(str(resolved), task):
            queued += 1

    logger.info(f"📥 Queued {queued} images, waiting for processing to finish")
    await queue.on_idle()
    logger.info(f"✅ Bootstrap complete: {queued} images processed")
    return queued
