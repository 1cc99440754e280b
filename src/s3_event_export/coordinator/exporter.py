from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from loguru import logger

from ..encoding import CONTENT_ENCODINGS, encode_batch
from ..errors import EncodeError
from ..keys import make_key, utc_now
from ..metrics import (
    EXPORT_BATCHES_TOTAL,
    EXPORT_EVENTS_TOTAL,
    EXPORT_RETRIES_SCHEDULED_TOTAL,
)
from ..models import (
    Abandon,
    CompressionMode,
    DeliveryAttempt,
    DeliveryOutcome,
    ExportResult,
    RetryLater,
    event_name,
)
from .dlq import DeadLetterQueue
from .retry import RetryPolicy
from .scheduler import JobScheduler


class Uploader(Protocol):
    async def upload(
        self, key: str, body: bytes, content_encoding: Optional[str] = None
    ) -> DeliveryOutcome: ...


class BatchExporter:
    """
    Turns one delivery attempt into an object in the bucket.

    filter ignored events -> encode -> make key -> upload -> on failure ask
    the retry policy and either schedule a delayed re-export or abandon the
    batch. Holds only read-only configuration, so concurrent calls for
    different batches are safe.

    Args:
        uploader: Delivery client (``S3DeliveryClient`` or a fake)
        scheduler: Delayed-job runner used for retries
        policy: Backoff and retry ceiling
        prefix: Key prefix, e.g. ``"events/"``
        compression: Payload compression mode
        ignored_events: Event names never exported
        dead_letter: Optional DLQ for abandoned batches
        clock: UTC time source for object keys
    """

    def __init__(
        self,
        uploader: Uploader,
        scheduler: JobScheduler,
        *,
        policy: Optional[RetryPolicy] = None,
        prefix: str = "",
        compression: CompressionMode = CompressionMode.NONE,
        ignored_events: Iterable[str] = (),
        dead_letter: Optional[DeadLetterQueue] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._uploader = uploader
        self._scheduler = scheduler
        self._policy = policy or RetryPolicy()
        self._prefix = prefix
        self._compression = CompressionMode(compression)
        self._ignored = frozenset(ignored_events)
        self._dead_letter = dead_letter
        self._clock = clock

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def dead_letter(self) -> Optional[DeadLetterQueue]:
        return self._dead_letter

    async def export_batch(self, attempt: DeliveryAttempt) -> ExportResult:
        events = [e for e in attempt.events if event_name(e) not in self._ignored]
        if not events:
            logger.debug(f"Nothing to export: batch={attempt.batch_id}")
            EXPORT_BATCHES_TOTAL.labels(outcome=ExportResult.SKIPPED.value).inc()
            return ExportResult.SKIPPED
        if len(events) != len(attempt.events):
            attempt = attempt.with_events(events)

        try:
            body = encode_batch(attempt.events, self._compression)
        except EncodeError as e:
            logger.error(f"Dropping batch={attempt.batch_id} events={len(attempt)}: {e}")
            EXPORT_BATCHES_TOTAL.labels(outcome=ExportResult.DROPPED.value).inc()
            return ExportResult.DROPPED

        key = make_key(self._prefix, self._compression, now=self._clock())
        outcome = await self._uploader.upload(key, body, CONTENT_ENCODINGS[self._compression])

        decision = self._policy.decide(outcome, attempt)
        if decision is None:
            logger.info(
                f"Uploaded {len(attempt)} event{'' if len(attempt) == 1 else 's'} "
                f"to {outcome.location or key} batch={attempt.batch_id} "
                f"attempt={attempt.retries_performed} bytes={len(body)}"
            )
            EXPORT_EVENTS_TOTAL.inc(len(attempt))
            EXPORT_BATCHES_TOTAL.labels(outcome=ExportResult.DELIVERED.value).inc()
            return ExportResult.DELIVERED

        if isinstance(decision, RetryLater):
            logger.warning(
                f"Upload failed, retrying: batch={attempt.batch_id} key={key} "
                f"attempt={attempt.retries_performed} delay_ms={decision.delay_ms} "
                f"error={outcome.reason}"
            )
            self._scheduler.schedule(decision.attempt, decision.delay_ms)
            EXPORT_RETRIES_SCHEDULED_TOTAL.inc()
            EXPORT_BATCHES_TOTAL.labels(outcome=ExportResult.SCHEDULED.value).inc()
            return ExportResult.SCHEDULED

        await self._abandon(decision)
        return ExportResult.ABANDONED

    async def _abandon(self, decision: Abandon) -> None:
        attempt = decision.attempt
        logger.error(
            f"Abandoning batch={attempt.batch_id} events={len(attempt)} "
            f"after {attempt.retries_performed} retries: {decision.reason}"
        )
        EXPORT_BATCHES_TOTAL.labels(outcome=ExportResult.ABANDONED.value).inc()
        if self._dead_letter is not None:
            await self._dead_letter.save(attempt, decision.reason, {"prefix": self._prefix})
