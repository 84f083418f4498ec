"""
Health server for monitoring the Prompt Tagger service.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Optional

import psutil
from aiohttp import web

from . import __version__
from .logging import get_logger
from .models import HealthStatus
from .processor import PromptTagger
from .worker_pool import KeyedWorkQueue


class HealthServer:
    """Simple HTTP server for health checks and metrics."""

    def __init__(
        self,
        processor: PromptTagger,
        queue: KeyedWorkQueue,
        mode: str,
        port: int = 8000,
        reconciler=None,
        connection_cache_duration: float = 300.0,
    ):
        self.processor = processor
        self.queue = queue
        self.mode = mode
        self.port = port
        self.reconciler = reconciler
        self.logger = get_logger("health_server")
        self.started_at = time.time()
        self.app = web.Application()
        self.cache_duration = connection_cache_duration
        self._connection_cache: Optional[tuple] = None
        self.setup_routes()

    def setup_routes(self):
        """Setup HTTP routes."""
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_get("/metrics", self.metrics_handler)
        self.app.router.add_get("/", self.root_handler)

    async def _test_connection_cached(self) -> bool:
        """Test the PhotoPrism connection, reusing a recent result."""
        now = time.time()
        if self._connection_cache is not None:
            cached_time, cached_result = self._connection_cache
            if now - cached_time < self.cache_duration:
                return cached_result

        connection_ok = await self.processor.test_connection()
        self._connection_cache = (now, connection_ok)
        return connection_ok

    async def health_handler(self, request):
        """Health check endpoint."""
        connection_ok = await self._test_connection_cached()
        pool = self.queue.pool

        health_status = HealthStatus(
            status="healthy" if connection_ok else "unhealthy",
            version=__version__,
            metrics={
                "mode": self.mode,
                "uptime_seconds": round(time.time() - self.started_at, 1),
                "photoprism_connection": connection_ok,
                "in_flight": len(self.queue),
                "pool_active": pool.active_count,
                "pool_pending": pool.pending_count,
                "reconciler": self.reconciler.get_status() if self.reconciler else None,
                "progress": self.processor.get_progress_status(),
            },
        )

        if not connection_ok:
            self._connection_cache = None  # retest on the next probe

        return web.json_response(
            health_status.model_dump(mode="json"),
            status=200 if connection_ok else 503
        )

    async def metrics_handler(self, request):
        """Metrics endpoint."""
        metrics = self.processor.get_metrics()

        # Add additional system metrics
        metrics.update({
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": psutil.disk_usage('/').percent,
        })

        return web.json_response(metrics)

    async def root_handler(self, request):
        """Root endpoint with service information."""
        info = {
            "service": "PhotoPrism Prompt Tagger",
            "version": __version__,
            "mode": self.mode,
            "endpoints": {
                "/health": "Health check endpoint",
                "/metrics": "Processing metrics",
                "/": "Service information"
            },
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        return web.json_response(info)

    async def start(self):
        """Start the health server."""
        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(runner, "0.0.0.0", self.port)
        await site.start()

        self.logger.info(f"🏥 Health server started on 0.0.0.0:{self.port}")
        return runner

    async def stop(self, runner):
        """Stop the health server."""
        await runner.cleanup()
        self.logger.info("Health server stopped")


async def run_health_server(server: HealthServer):
    """Run the health server until cancelled."""
    runner = await server.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await server.stop(runner)
