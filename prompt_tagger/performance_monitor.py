"""
Performance monitoring utilities for the Prompt Tagger service.
"""

import time
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from .logging import get_logger


@dataclass
class PerformanceMetrics:
    """Performance metrics tracking."""

    # API call tracking
    api_calls_total: int = 0
    api_errors: int = 0
    api_response_times: List[float] = field(default_factory=list)

    # Item processing
    items_processed: int = 0
    total_processing_time: float = 0.0
    average_processing_time: Optional[float] = None

    # Reconciliation cycles
    cycles_completed: int = 0
    cycles_failed: int = 0
    candidates_queued: int = 0
    total_cycle_time: float = 0.0
    average_cycle_time: Optional[float] = None

    def update_averages(self):
        """Update calculated averages."""
        if self.items_processed > 0:
            self.average_processing_time = self.total_processing_time / self.items_processed

        if self.cycles_completed > 0:
            self.average_cycle_time = self.total_cycle_time / self.cycles_completed

    def average_response_time(self) -> float:
        if not self.api_response_times:
            return 0.0
        return sum(self.api_response_times) / len(self.api_response_times)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for logging."""
        self.update_averages()
        return {
            "api_calls_total": self.api_calls_total,
            "api_errors": self.api_errors,
            "average_response_time": round(self.average_response_time(), 3),
            "items_processed": self.items_processed,
            "average_processing_time": round(self.average_processing_time or 0, 3),
            "cycles_completed": self.cycles_completed,
            "cycles_failed": self.cycles_failed,
            "candidates_queued": self.candidates_queued,
            "average_cycle_time": round(self.average_cycle_time or 0, 3),
        }


class PerformanceMonitor:
    """Performance monitoring and metrics collection."""

    # Keep memory bounded on long-running pollers
    MAX_RESPONSE_SAMPLES = 1000

    def __init__(self):
        self.logger = get_logger("performance")
        self.metrics = PerformanceMetrics()
        self.start_time = time.time()

    def record_api_call(self, response_time: float):
        """Record an API call."""
        self.metrics.api_calls_total += 1
        self.metrics.api_response_times.append(response_time)
        if len(self.metrics.api_response_times) > self.MAX_RESPONSE_SAMPLES:
            del self.metrics.api_response_times[0]

    def record_api_error(self):
        """Record an API call that did not complete."""
        self.metrics.api_errors += 1

    def record_item_processed(self, processing_time: float):
        """Record item processing completion."""
        self.metrics.items_processed += 1
        self.metrics.total_processing_time += processing_time

    def record_cycle(self, cycle_time: float, queued: int):
        """Record a finished reconciliation cycle."""
        self.metrics.cycles_completed += 1
        self.metrics.total_cycle_time += cycle_time
        self.metrics.candidates_queued += queued

    def record_cycle_failure(self):
        """Record a cycle whose candidate query failed."""
        self.metrics.cycles_failed += 1

    def get_runtime_seconds(self) -> float:
        """Get total runtime in seconds."""
        return time.time() - self.start_time

    def log_performance_summary(self):
        """Log a summary of performance metrics."""
        runtime = self.get_runtime_seconds()
        metrics_dict = self.metrics.to_dict()

        self.logger.info(
            f"📈 Performance Summary: Runtime {runtime:.1f}s, "
            f"API calls {metrics_dict['api_calls_total']} ({metrics_dict['api_errors']} errors), "
            f"Cycles {metrics_dict['cycles_completed']}"
        )

        if self.metrics.items_processed > 0:
            items_per_second = self.metrics.items_processed / runtime if runtime > 0 else 0
            self.logger.info(
                f"🎯 Throughput: {items_per_second:.2f} items/sec, "
                f"avg {metrics_dict['average_processing_time']:.2f}s per item"
            )

    def get_metrics_dict(self) -> Dict[str, Any]:
        """Get all metrics as a dictionary."""
        runtime = self.get_runtime_seconds()
        metrics_dict = self.metrics.to_dict()
        metrics_dict["runtime_seconds"] = round(runtime, 2)
        return metrics_dict


# Global performance monitor instance
performance_monitor = PerformanceMonitor()
