"""
Pytest configuration and fixtures for s3-event-export.

Provides cross-platform event loop configuration and in-memory fakes for
the object store and the delayed-job runner.
"""

import asyncio
import sys
from datetime import datetime, timezone

import pytest

from s3_event_export.models import Event

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeS3:
    """Records put_object calls; fails the first ``fail_first_n`` (or all)."""

    def __init__(self, fail_first_n: int = 0, always_fail: bool = False):
        self._fail = fail_first_n
        self._always_fail = always_fail
        self.calls: list[dict] = []
        self.objects: dict[str, bytes] = {}

    def put_object(self, **params):
        self.calls.append(params)
        if self._always_fail:
            raise ConnectionError("endpoint unreachable")
        if self._fail > 0:
            self._fail -= 1
            raise TimeoutError("transient")
        self.objects[params["Key"]] = params["Body"]
        return {"ETag": '"etag"'}


class RecordingScheduler:
    """JobScheduler that only records requests; ``run_pending`` replays them."""

    def __init__(self):
        self.requests: list[tuple] = []
        self._queue: list = []
        self._handler = None

    def bind(self, handler):
        self._handler = handler

    def schedule(self, attempt, delay_ms):
        self.requests.append((attempt, delay_ms))
        self._queue.append(attempt)

    @property
    def delays(self) -> list[int]:
        return [delay for _, delay in self.requests]

    async def run_pending(self) -> list:
        results = []
        while self._queue:
            attempt = self._queue.pop(0)
            results.append(await self._handler(attempt))
        return results


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_event():
    def _make(name: str = "pageview", i: int = 0, **properties) -> Event:
        return Event(
            event=name,
            distinct_id=f"user-{i}",
            properties={"i": i, **properties},
            timestamp=datetime(2024, 5, 17, 12, 30, i % 60, tzinfo=timezone.utc),
            uuid=f"0000-{i:04d}",
        )

    return _make


@pytest.fixture
def settings_env():
    """Minimal valid settings as constructor kwargs."""
    return {
        "aws_access_key": "DEADBEEF",
        "aws_secret_access_key": "bestkeptsecret",
        "aws_region": "there",
        "bucket_name": "the-bucket",
    }
