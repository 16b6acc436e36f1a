"""
Pytest configuration and fixtures.
"""

import os

os.environ.setdefault("PLAYTRACK_ENV", "test")

import random
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio

from playtrack.common.storage import MemoryStore
from playtrack.common.utils import json_loads
from playtrack.telemetry.buffer import TelemetryBuffer
from playtrack.telemetry.outbox import PendingOutbox
from playtrack.telemetry.service import VideoAnalyticsService
from playtrack.telemetry.transport import BatchTransport, SessionInfo

BASE_URL = "http://stream.test"
BATCH_PATH = "/api/v1/analytics/events/batch"
POLICY_PATH = "/api/v1/admin/analytics/client-config"


class FakeIngestionServer:
    """httpx.MockTransport handler standing in for the video-stream API."""

    def __init__(self) -> None:
        self.batches: list[dict[str, Any]] = []
        self.batch_attempts = 0
        self.batch_status = 200
        # Batch requests after this many attempts answer 503
        self.fail_after: int | None = None
        self.offline = False
        self.policy_status = 200
        self.policy_body: Any = {
            "success": True,
            "data": {
                "analyticsEnabled": True,
                "level": "full",
                "samplingRate": 1.0,
                "progressIntervalMs": 10000,
            },
        }
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == BATCH_PATH:
            self.batch_attempts += 1
            if self.offline:
                raise httpx.ConnectError("offline", request=request)
            if self.fail_after is not None and self.batch_attempts > self.fail_after:
                return httpx.Response(503, json={"success": False})
            if self.batch_status >= 300:
                return httpx.Response(self.batch_status, json={"success": False})
            self.batches.append(json_loads(request.content))
            return httpx.Response(200, json={"success": True})

        if request.url.path == POLICY_PATH:
            if self.offline:
                raise httpx.ConnectError("offline", request=request)
            return httpx.Response(self.policy_status, json=self.policy_body)

        return httpx.Response(404)

    def set_policy(self, **data: Any) -> None:
        self.policy_body = {"success": True, "data": data}

    @property
    def sent_events(self) -> list[dict[str, Any]]:
        return [event for batch in self.batches for event in batch["events"]]

    @property
    def sent_types(self) -> list[str]:
        return [event["eventType"] for event in self.sent_events]


@pytest.fixture
def server() -> FakeIngestionServer:
    return FakeIngestionServer()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest_asyncio.fixture
async def http_client(server: FakeIngestionServer) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
        yield client


@pytest.fixture
def session_info() -> SessionInfo:
    return SessionInfo(session_id="1700000000000-abcdefghi", fingerprint="fp_test_1_abcdefg")


@pytest.fixture
def outbox(store: MemoryStore) -> PendingOutbox:
    return PendingOutbox(store, max_events=500)


@pytest.fixture
def buffer(
    http_client: httpx.AsyncClient,
    session_info: SessionInfo,
    outbox: PendingOutbox,
) -> TelemetryBuffer:
    transport = BatchTransport(http_client, f"{BASE_URL}{BATCH_PATH}", auth_token="token-123")
    return TelemetryBuffer(
        transport=transport,
        session=session_info,
        outbox=outbox,
        rng=random.Random(42),
        video_id="v1",
    )


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_service(
    http_client: httpx.AsyncClient,
    store: MemoryStore,
    clock: FakeClock,
):
    """Factory for analytics services sharing the fake server and store."""

    def factory(**kwargs: Any) -> VideoAnalyticsService:
        options: dict[str, Any] = {
            "base_url": BASE_URL,
            "auth_token": "token-123",
            "video_id": "v1",
            "store": store,
            "client": http_client,
            "rng": random.Random(42),
            "clock": clock,
        }
        options.update(kwargs)
        return VideoAnalyticsService(**options)

    return factory


@pytest_asyncio.fixture
async def analytics(make_service) -> AsyncGenerator[VideoAnalyticsService, None]:
    """Initialized analytics service, disposed after the test."""
    service = make_service()
    await service.initialize()
    yield service
    await service.dispose()
