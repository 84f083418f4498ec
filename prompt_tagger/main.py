"""
Main entry point for the PhotoPrism Prompt Tagger service.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .config import Settings, get_settings
from .extraction import MetadataExtractor
from .file_utils import is_supported_image
from .health_server import HealthServer, run_health_server
from .labels import derive_labels
from .logging import get_logger, setup_logging
from .performance_monitor import performance_monitor
from .photoprism_client import PhotoPrismClient
from .processor import ProcessorError, PromptTagger, UnsupportedFileError, describe_file
from .reconciler import Reconciler
from .watcher import FolderWatcher, run_bootstrap
from .worker_pool import KeyedWorkQueue, WorkerPool


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="PhotoPrism Prompt Tagger - label photos from embedded Stable Diffusion prompts"
    )

    parser.add_argument(
        "--mode",
        choices=["poll", "watch", "bootstrap", "health-only"],
        default="poll",
        help="Processing mode (default: poll)"
    )

    parser.add_argument(
        "--file",
        type=Path,
        metavar="PATH",
        help="Process a single file and exit (overrides ONE_SHOT_FILE)"
    )

    parser.add_argument(
        "--print-info",
        type=Path,
        metavar="PATH",
        help="Print the parsed prompt metadata of a local file and exit"
    )

    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Test connection to PhotoPrism and exit"
    )

    parser.add_argument(
        "--max-cycles",
        type=int,
        help="Maximum number of reconciliation cycles (poll mode only)"
    )

    parser.add_argument(
        "--page-size",
        type=int,
        help="Override the number of candidates fetched per cycle"
    )

    parser.add_argument(
        "--concurrency",
        type=int,
        help="Override the worker pool concurrency"
    )

    parser.add_argument(
        "--watch-path",
        type=Path,
        help="Folder to watch in watch mode"
    )

    parser.add_argument(
        "--no-health",
        action="store_true",
        help="Do not start the health server"
    )

    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args) -> None:
    """Apply command line overrides to the loaded settings."""
    logger = get_logger("main")

    if args.page_size:
        settings.poll_page_size = args.page_size
        logger.info(f"📦 Using page size: {args.page_size}")
    if args.concurrency:
        settings.concurrency = args.concurrency
        logger.info(f"🧵 Using concurrency: {args.concurrency}")
    if args.watch_path:
        settings.watch_path = args.watch_path
    if args.no_health:
        settings.enable_health_server = False


def render_metadata(path: Path, metadata, labels) -> Table:
    """Build a rich table describing parsed metadata."""
    table = Table(title=str(path), show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value", overflow="fold")

    table.add_row("Positive", metadata.positive)
    table.add_row("Negative", metadata.negative or "")
    table.add_row("Steps", str(metadata.steps or ""))
    table.add_row("Sampler", metadata.sampler or "")
    table.add_row("CFG", str(metadata.cfg or ""))
    table.add_row("Seed", str(metadata.seed or ""))
    table.add_row("Size", f"{metadata.size.width}x{metadata.size.height}" if metadata.size else "")
    table.add_row("Model", metadata.model or "")
    table.add_row("Labels", ", ".join(labels))
    return table


async def print_info(path: Path, settings: Optional[Settings] = None) -> int:
    """Print the parsed metadata of a local file.

    Labels follow the configured stopwords, limit and model-label switch when
    settings are available, and the defaults otherwise.
    """
    logger = get_logger("main")
    console = Console()

    if not path.is_file():
        logger.error(f"❌ File not found: {path}")
        return 1

    metadata = await describe_file(path, MetadataExtractor())
    if metadata is None:
        logger.warning(f"⚠️  No prompt metadata found in {path}")
        return 1

    if settings is not None:
        labels = derive_labels(
            metadata,
            stopwords=settings.stopwords,
            limit=settings.label_limit,
            include_model=settings.include_model_label,
        )
    else:
        labels = derive_labels(metadata)

    console.print(render_metadata(path, metadata, labels))
    return 0


async def run_single_file(processor: PromptTagger, path: Path) -> int:
    """Process one file and exit."""
    logger = get_logger("main")

    if not is_supported_image(path):
        raise UnsupportedFileError(f"Unsupported file type: {path}")

    logger.info(f"🔄 Single-run processing of {path}")
    result = await processor.process_file(path.resolve())
    if result.success:
        logger.info(f"✅ Single run completed | labels: {len(result.labels_assigned)}")
        return 0

    logger.error(f"❌ Single run failed: {result.error}")
    return 1


def _report_task_error(processor: PromptTagger):
    def report(error: BaseException) -> None:
        processor.metrics.log_item_failure("worker task", repr(error))
    return report


async def run_service(settings: Settings, args) -> int:
    """Build the service components and run the selected mode."""
    logger = get_logger("main")

    if not settings.originals_path.is_dir():
        raise ProcessorError(f"Originals path does not exist: {settings.originals_path}")

    client = PhotoPrismClient(settings)
    processor = PromptTagger(client, settings)
    pool = WorkerPool(settings.concurrency, on_error=_report_task_error(processor))
    queue = KeyedWorkQueue(pool)

    async with processor:
        if args.test_connection:
            logger.info("🔍 Testing connection to PhotoPrism")
            if await processor.test_connection():
                logger.info("✅ Connection test successful")
                return 0
            logger.error("❌ Connection test failed")
            return 1

        single_file = args.file or settings.one_shot_file
        if single_file:
            return await run_single_file(processor, Path(single_file))

        reconciler = None
        if args.mode == "poll":
            reconciler = Reconciler(processor, client, queue, settings)

        health_task = None
        if settings.enable_health_server:
            server = HealthServer(processor, queue, args.mode, settings.health_port, reconciler=reconciler)
            health_task = asyncio.create_task(run_health_server(server))

        try:
            if args.mode == "poll":
                await reconciler.run_forever(max_cycles=args.max_cycles)

            elif args.mode == "watch":
                watcher = FolderWatcher(processor, queue, settings.resolve_watch_path())
                await watcher.run_forever()

            elif args.mode == "bootstrap":
                await run_bootstrap(processor, queue, settings.originals_path)

            elif args.mode == "health-only":
                if health_task is None:
                    logger.error("❌ Health-only mode requires the health server")
                    return 1
                logger.info("🏥 Running in health-only mode")
                await health_task

        except asyncio.CancelledError:
            logger.info("⏹️  Received stop signal, shutting down")

        finally:
            if health_task is not None:
                health_task.cancel()
                try:
                    await health_task
                except asyncio.CancelledError:
                    pass
            performance_monitor.log_performance_summary()

    return 0


async def _run_with_signals(settings: Settings, args) -> int:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except NotImplementedError:
        pass  # not available on Windows event loops
    return await run_service(settings, args)


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    # Setup logging
    setup_logging()
    logger = get_logger("main")

    # Parse arguments
    args = parse_arguments(argv)

    if args.print_info:
        try:
            settings = get_settings()
        except ValidationError:
            # Inspecting a file needs no PhotoPrism connection
            settings = None
        return asyncio.run(print_info(args.print_info, settings))

    try:
        settings = get_settings()
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]).upper()
            logger.error(f"❌ Configuration error | {field}: {error['msg']}")
        return 1

    setup_logging(settings.log_level)
    apply_overrides(settings, args)

    logger.info(f"🚀 Starting PhotoPrism Prompt Tagger in {args.mode} mode")

    try:
        return asyncio.run(_run_with_signals(settings, args))
    except (ProcessorError, UnsupportedFileError) as e:
        logger.error(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("⏹️  Service interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
