"""
Unit tests for BatchExporter.
"""

from datetime import datetime, timezone

import pytest

from s3_event_export.coordinator import BatchExporter, DeadLetterQueue, RetryPolicy
from s3_event_export.delivery import S3DeliveryClient
from s3_event_export.encoding import decode_batch
from s3_event_export.models import CompressionMode, DeliveryAttempt, ExportResult

from conftest import FakeS3

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, 6000, tzinfo=timezone.utc)


def _exporter(s3, scheduler, **kwargs) -> BatchExporter:
    exporter = BatchExporter(
        S3DeliveryClient(s3, "the-bucket"), scheduler, clock=lambda: FIXED_NOW, **kwargs
    )
    scheduler.bind(exporter.export_batch)
    return exporter


@pytest.mark.asyncio
async def test_delivers_batch(fake_s3, scheduler, make_event):
    exporter = _exporter(fake_s3, scheduler, prefix="events/", compression=CompressionMode.GZIP)
    batch = [make_event("purchase", i) for i in range(3)]

    result = await exporter.export_batch(DeliveryAttempt(batch_id=1, events=tuple(batch)))

    assert result is ExportResult.DELIVERED
    assert len(fake_s3.calls) == 1
    params = fake_s3.calls[0]
    assert params["Key"].startswith("events/2024-01-02/20240102-030405006")
    assert params["Key"].endswith(".jsonl.gz")
    assert params["ContentEncoding"] == "gzip"
    decoded = decode_batch(params["Body"], CompressionMode.GZIP)
    assert [d["properties"]["i"] for d in decoded] == [0, 1, 2]
    assert scheduler.requests == []


@pytest.mark.asyncio
async def test_filters_ignored_events(fake_s3, scheduler, make_event):
    exporter = _exporter(fake_s3, scheduler, ignored_events={"heartbeat"})
    batch = (make_event("heartbeat", 1), make_event("purchase", 2))

    assert await exporter.export_batch(DeliveryAttempt(1, batch)) is ExportResult.DELIVERED

    decoded = decode_batch(fake_s3.calls[0]["Body"])
    assert [d["event"] for d in decoded] == ["purchase"]


@pytest.mark.asyncio
async def test_empty_after_filtering_is_skipped(fake_s3, scheduler, make_event):
    exporter = _exporter(fake_s3, scheduler, ignored_events={"heartbeat"})

    assert await exporter.export_batch(DeliveryAttempt(1, ())) is ExportResult.SKIPPED
    result = await exporter.export_batch(DeliveryAttempt(2, (make_event("heartbeat"),)))

    assert result is ExportResult.SKIPPED
    assert fake_s3.calls == []


@pytest.mark.asyncio
async def test_unencodable_batch_is_dropped(fake_s3, scheduler, make_event):
    exporter = _exporter(fake_s3, scheduler)
    batch = (make_event(), {"event": "bad", "properties": {"x": object()}})

    assert await exporter.export_batch(DeliveryAttempt(1, batch)) is ExportResult.DROPPED
    assert fake_s3.calls == []
    assert scheduler.requests == []


@pytest.mark.asyncio
async def test_failure_schedules_retry_with_same_batch(scheduler, make_event):
    exporter = _exporter(FakeS3(always_fail=True), scheduler)
    attempt = DeliveryAttempt(batch_id=42, events=(make_event("purchase"),))

    assert await exporter.export_batch(attempt) is ExportResult.SCHEDULED

    (retry, delay_ms), = scheduler.requests
    assert delay_ms == 3000
    assert retry.batch_id == 42
    assert retry.events == attempt.events
    assert retry.retries_performed == 1


@pytest.mark.asyncio
async def test_retry_uses_fresh_key(scheduler, make_event):
    s3 = FakeS3(fail_first_n=1)
    exporter = _exporter(s3, scheduler)

    await exporter.export_batch(DeliveryAttempt(1, (make_event(),)))
    assert await scheduler.run_pending() == [ExportResult.DELIVERED]

    assert len(s3.calls) == 2
    assert s3.calls[0]["Key"] != s3.calls[1]["Key"]


@pytest.mark.asyncio
async def test_abandon_at_ceiling_writes_dead_letter(scheduler, make_event, tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    exporter = _exporter(
        FakeS3(always_fail=True), scheduler, policy=RetryPolicy(max_retries=2), dead_letter=dlq
    )

    result = await exporter.export_batch(DeliveryAttempt(5, (make_event("purchase"),), 2))

    assert result is ExportResult.ABANDONED
    assert scheduler.requests == []
    (record,) = await dlq.replay(10)
    assert record.batch_id == 5
    assert record.retries_performed == 2
    assert "endpoint unreachable" in record.error
    assert record.events[0]["event"] == "purchase"
