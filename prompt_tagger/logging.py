"""
Logging configuration for the Prompt Tagger service.
"""

import logging
from typing import Any, Dict
from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """Configure clean, simple logging output."""

    # Configure standard library logging with Rich handler
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[RichHandler(
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
            show_level=True,
            markup=False
        )],
        force=True  # Override any existing configuration
    )

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a standard logger instance."""
    return logging.getLogger(f"prompt_tagger.{name}")


def ellipsize(text: str, limit: int = 140) -> str:
    """Shorten long prompt text for log previews."""
    return text if len(text) <= limit else text[:limit] + "…"


class MetricsLogger:
    """Logger for tracking processing metrics."""

    def __init__(self):
        self.logger = get_logger("metrics")
        self.metrics: Dict[str, Any] = {
            "items_processed": 0,
            "labels_assigned": 0,
            "items_skipped": 0,
            "failures": 0,
            "processing_time": 0.0,
        }

    def log_item_processed(self, item_id: str, labels_count: int, processing_time: float) -> None:
        """Log a successfully labeled photo."""
        self.metrics["items_processed"] += 1
        self.metrics["labels_assigned"] += labels_count
        self.metrics["processing_time"] += processing_time

        # Only log individual items at DEBUG level to avoid spam
        self.logger.debug(
            f"Item processed: {item_id} | Labels: {labels_count} | Time: {processing_time:.3f}s | "
            f"Total: {self.metrics['items_processed']} items, {self.metrics['labels_assigned']} labels"
        )

    def log_item_skipped(self, item_id: str, reason: str) -> None:
        """Log a photo that needed no work (or could not be worked on)."""
        self.metrics["items_skipped"] += 1
        self.logger.debug(f"Item skipped: {item_id} | Reason: {reason}")

    def log_item_failure(self, item_id: str, error: str) -> None:
        """Log a failed photo processing."""
        self.metrics["failures"] += 1

        # Log failures at WARNING level (less verbose than ERROR but still visible)
        self.logger.warning(f"Item processing failed: {item_id} | Error: {error}")

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics."""
        return self.metrics.copy()
