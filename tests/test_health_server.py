"""
Tests for the health HTTP endpoints.
"""

import pytest
from aiohttp import test_utils

from prompt_tagger.health_server import HealthServer
from prompt_tagger.worker_pool import KeyedWorkQueue, WorkerPool


class FakeProcessor:
    def __init__(self, connected=True):
        self.connected = connected
        self.connection_tests = 0

    async def test_connection(self):
        self.connection_tests += 1
        return self.connected

    def get_progress_status(self):
        return {"total_processed": 3, "total_labels_assigned": 12}

    def get_metrics(self):
        return {"basic_metrics": {"items_processed": 3}}


class FakeReconciler:
    def get_status(self):
        return {"state": "waiting", "cycles_completed": 4, "last_queued": 0}


def make_server(processor, reconciler=None):
    return HealthServer(processor, KeyedWorkQueue(WorkerPool(2)), "poll", reconciler=reconciler)


@pytest.mark.asyncio
async def test_health_reports_service_state():
    processor = FakeProcessor()
    server = make_server(processor, FakeReconciler())

    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        response = await client.get("/health")
        body = await response.json()
        await client.get("/health")

    assert response.status == 200
    assert body["status"] == "healthy"
    assert body["metrics"]["mode"] == "poll"
    assert body["metrics"]["in_flight"] == 0
    assert body["metrics"]["reconciler"]["state"] == "waiting"
    assert body["metrics"]["progress"]["total_processed"] == 3
    # Second probe is answered from the cached connection test
    assert processor.connection_tests == 1


@pytest.mark.asyncio
async def test_health_unhealthy_without_connection():
    server = make_server(FakeProcessor(connected=False))

    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        response = await client.get("/health")
        body = await response.json()

    assert response.status == 503
    assert body["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_metrics_include_system_usage():
    server = make_server(FakeProcessor())

    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        response = await client.get("/metrics")
        body = await response.json()

    assert response.status == 200
    assert body["basic_metrics"]["items_processed"] == 3
    assert "cpu_percent" in body
    assert "memory_percent" in body


@pytest.mark.asyncio
async def test_root_lists_endpoints():
    server = make_server(FakeProcessor())

    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        body = await (await client.get("/")).json()

    assert body["service"] == "PhotoPrism Prompt Tagger"
    assert set(body["endpoints"]) == {"/health", "/metrics", "/"}
