"""
End-to-end export scenarios against an in-memory object store.

Buffer -> exporter -> delivery client -> retry policy -> scheduler, with
only put_object and the delayed-job runner faked.
"""

import pytest

from s3_event_export.coordinator import ExportCoordinator
from s3_event_export.encoding import decode_batch
from s3_event_export.models import CompressionMode, ExportResult
from s3_event_export.settings import load_settings

from conftest import FakeS3, RecordingScheduler


@pytest.fixture
def settings(settings_env, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    return load_settings(
        **settings_env,
        size_threshold_bytes=1024 * 1024,
        time_threshold_seconds=60,
        compression="gzip",
        events_to_ignore="heartbeat",
    )


@pytest.mark.asyncio
async def test_gzip_export_skips_ignored_events(settings, fake_s3, make_event):
    async with ExportCoordinator.from_settings(settings, s3=fake_s3) as coord:
        assert await coord.accept(make_event("heartbeat", 1)) is False
        assert await coord.accept(make_event("purchase", 2)) is True

    assert len(fake_s3.calls) == 1
    (key, body), = fake_s3.objects.items()
    assert key.endswith(".jsonl.gz")
    decoded = decode_batch(body, CompressionMode.GZIP)
    assert len(decoded) == 1
    assert decoded[0]["event"] == "purchase"
    assert decoded[0]["distinct_id"] == "user-2"


@pytest.mark.asyncio
async def test_always_failing_store_abandons_after_retry_ceiling(settings, make_event):
    s3 = FakeS3(always_fail=True)
    scheduler = RecordingScheduler()
    coord = ExportCoordinator.from_settings(settings, s3=s3, scheduler=scheduler)

    async with coord:
        await coord.accept(make_event("purchase", 1))
    # first attempt ran during shutdown drain; now drive the retries
    results = await scheduler.run_pending()

    assert len(scheduler.requests) == 15
    assert scheduler.delays == [3000 * 2**i for i in range(15)]
    assert [a.retries_performed for a, _ in scheduler.requests] == list(range(1, 16))
    assert results[:-1] == [ExportResult.SCHEDULED] * 14
    assert results[-1] is ExportResult.ABANDONED
    # 1 initial attempt + 15 retries, and no 16th retry request
    assert len(s3.calls) == 16


@pytest.mark.asyncio
async def test_fail_once_then_succeed(settings, make_event):
    s3 = FakeS3(fail_first_n=1)
    scheduler = RecordingScheduler()

    async with ExportCoordinator.from_settings(settings, s3=s3, scheduler=scheduler) as coord:
        await coord.accept(make_event("purchase", 1))

    results = await scheduler.run_pending()

    assert len(s3.calls) == 2
    assert scheduler.delays == [3000]
    assert results == [ExportResult.DELIVERED]
    assert len(s3.objects) == 1


@pytest.mark.asyncio
async def test_order_preserved_within_batch(settings, fake_s3, make_event):
    async with ExportCoordinator.from_settings(settings, s3=fake_s3) as coord:
        for i in range(100):
            await coord.accept(make_event("pageview", i))

    (body,) = fake_s3.objects.values()
    decoded = decode_batch(body, CompressionMode.GZIP)
    assert [d["properties"]["i"] for d in decoded] == list(range(100))
