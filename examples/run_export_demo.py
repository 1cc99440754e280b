"""
Demo script for the ExportCoordinator.

Shows size-based flushing, the ignore list, retries against a flaky store
and graceful shutdown. No AWS account needed: uploads go to an in-memory
store that fails every third call.
"""

import asyncio
from datetime import datetime, timezone

from loguru import logger

from s3_event_export import CompressionMode, Event, ExportCoordinator, RetryPolicy
from s3_event_export.delivery import S3DeliveryClient


class FlakyMemoryStore:
    """put_object that fails every third call."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self._calls = 0

    def put_object(self, **params):
        self._calls += 1
        if self._calls % 3 == 0:
            raise ConnectionError("simulated network blip")
        self.objects[params["Key"]] = params["Body"]


async def main():
    store = FlakyMemoryStore()
    async with ExportCoordinator(
        S3DeliveryClient(store, "demo-bucket"),
        policy=RetryPolicy(base_delay_ms=100),
        prefix="demo/",
        compression=CompressionMode.GZIP,
        size_threshold_bytes=16_384,
        time_threshold_seconds=1.0,
        ignored_events={"heartbeat"},
    ) as coord:
        logger.info("🚀 Producing 2,000 events")
        for i in range(2_000):
            name = "heartbeat" if i % 10 == 0 else "pageview"
            await coord.accept(
                Event(
                    event=name,
                    distinct_id=f"user-{i % 50}",
                    properties={"i": i},
                    timestamp=datetime.now(timezone.utc),
                )
            )
            if i % 500 == 0:
                h = coord.health()
                logger.info(
                    f"Progress: {i}/2000 | pending={h.pending_events} "
                    f"bytes={h.pending_bytes} in_flight={h.in_flight_exports}"
                )

        logger.info("⏳ Letting retries run...")
        await asyncio.sleep(1.0)

    logger.info(f"✅ Demo complete: {len(store.objects)} objects stored")


if __name__ == "__main__":
    asyncio.run(main())
