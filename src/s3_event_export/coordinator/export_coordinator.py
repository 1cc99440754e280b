from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from time import monotonic
from typing import Callable, Iterable, Optional

from loguru import logger

from ..delivery import ObjectStore, S3DeliveryClient
from ..models import CompressionMode, DeliveryAttempt, EventLike
from ..settings import (
    DEFAULT_SIZE_THRESHOLD_BYTES,
    DEFAULT_TIME_THRESHOLD_SECONDS,
    ExportSettings,
)
from .buffer import EventBuffer
from .dlq import DeadLetterQueue
from .exporter import BatchExporter, Uploader
from .retry import RetryPolicy
from .scheduler import AsyncioJobScheduler, JobScheduler


@dataclass(frozen=True)
class CoordinatorHealth:
    running: bool
    pending_events: int
    pending_bytes: int
    in_flight_exports: int
    pending_retries: int


class ExportCoordinator:
    """
    Owns the buffer, the exporter and the retry runner for one bucket.

    Events go in through ``accept``; each flushed batch becomes a
    ``DeliveryAttempt`` exported in its own task, so producers never wait
    on the network. ``stop(drain=True)`` flushes what is buffered, waits
    for in-flight exports and closes the retry runner; retries that were
    still waiting go to the dead letter queue when one is configured.

    Usage:
        async with ExportCoordinator.from_settings(get_settings()) as coord:
            await coord.accept(event)
    """

    def __init__(
        self,
        uploader: Uploader,
        *,
        scheduler: Optional[JobScheduler] = None,
        policy: Optional[RetryPolicy] = None,
        prefix: str = "",
        compression: CompressionMode = CompressionMode.NONE,
        size_threshold_bytes: int = DEFAULT_SIZE_THRESHOLD_BYTES,
        time_threshold_seconds: float = DEFAULT_TIME_THRESHOLD_SECONDS,
        ignored_events: Iterable[str] = (),
        dead_letter: Optional[DeadLetterQueue] = None,
        clock: Callable[[], float] = monotonic,
    ):
        ignored = frozenset(ignored_events)
        self._scheduler = scheduler if scheduler is not None else AsyncioJobScheduler()
        self._exporter = BatchExporter(
            uploader,
            self._scheduler,
            policy=policy,
            prefix=prefix,
            compression=compression,
            ignored_events=ignored,
            dead_letter=dead_letter,
        )
        bind = getattr(self._scheduler, "bind", None)
        if bind is not None:
            bind(self._exporter.export_batch)
        bind_orphans = getattr(self._scheduler, "bind_orphan_handler", None)
        if bind_orphans is not None:
            bind_orphans(self._park)

        self._buffer = EventBuffer(
            self._dispatch,
            size_threshold_bytes=size_threshold_bytes,
            time_threshold_seconds=time_threshold_seconds,
            ignored_events=ignored,
            clock=clock,
        )
        self._dead_letter = dead_letter
        self._batch_ids = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @classmethod
    def from_settings(
        cls,
        settings: ExportSettings,
        *,
        s3: Optional[ObjectStore] = None,
        scheduler: Optional[JobScheduler] = None,
    ) -> "ExportCoordinator":
        dead_letter = (
            DeadLetterQueue(settings.dead_letter_path) if settings.dead_letter_path else None
        )
        return cls(
            S3DeliveryClient.from_settings(settings, s3=s3),
            scheduler=scheduler,
            policy=RetryPolicy.from_settings(settings),
            prefix=settings.prefix,
            compression=settings.compression,
            size_threshold_bytes=settings.size_threshold_bytes,
            time_threshold_seconds=settings.time_threshold_seconds,
            ignored_events=settings.ignored_events,
            dead_letter=dead_letter,
        )

    # --------------- context management

    async def __aenter__(self) -> "ExportCoordinator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop(drain=True)

    # --------------- lifecycle

    @property
    def exporter(self) -> BatchExporter:
        return self._exporter

    @property
    def buffer(self) -> EventBuffer:
        return self._buffer

    async def start(self) -> None:
        if self._running:
            return
        reopen = getattr(self._scheduler, "reopen", None)
        if reopen is not None:
            reopen()
        self._buffer.start()
        self._running = True
        logger.info("ExportCoordinator started")

    async def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """Stop the timer, optionally flush and wait for exports, close retries.

        ``timeout`` bounds the whole shutdown: exports and retry uploads still
        running when it expires keep going in the background, and any batch
        that has not been delivered is dead-lettered or logged as lost.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        def remaining() -> Optional[float]:
            return None if deadline is None else max(0.0, deadline - loop.time())

        if not drain and self._buffer.pending_count:
            logger.warning(f"Discarding {self._buffer.pending_count} buffered events on stop")
        await self._buffer.stop(flush=drain)

        if self._tasks:
            done, pending = await asyncio.wait(list(self._tasks), timeout=remaining())
            if pending:
                logger.warning(f"{len(pending)} export(s) still in flight after {timeout}s")

        aclose = getattr(self._scheduler, "aclose", None)
        if aclose is not None:
            for attempt in await aclose(remaining()):
                await self._park(attempt)

        self._running = False
        logger.info("ExportCoordinator stopped")

    # --------------- ingestion

    async def accept(self, event: EventLike) -> bool:
        return await self._buffer.accept(event)

    async def accept_many(self, events: Iterable[EventLike]) -> int:
        n = 0
        for event in events:
            if await self._buffer.accept(event):
                n += 1
        return n

    async def flush(self) -> int:
        return len(await self._buffer.flush())

    async def submit_batch(self, events: Iterable[EventLike]) -> asyncio.Task:
        """Export a ready-made batch directly, bypassing the buffer."""
        return self._spawn(self._new_attempt(events))

    def health(self) -> CoordinatorHealth:
        return CoordinatorHealth(
            running=self._running,
            pending_events=self._buffer.pending_count,
            pending_bytes=self._buffer.pending_bytes,
            in_flight_exports=len(self._tasks),
            pending_retries=getattr(self._scheduler, "pending", 0),
        )

    # --------------- internals

    def _new_attempt(self, events: Iterable[EventLike]) -> DeliveryAttempt:
        return DeliveryAttempt(batch_id=next(self._batch_ids), events=tuple(events))

    def _dispatch(self, batch: list[EventLike]) -> None:
        self._spawn(self._new_attempt(batch))

    def _spawn(self, attempt: DeliveryAttempt) -> asyncio.Task:
        task = asyncio.create_task(self._exporter.export_batch(attempt))
        self._tasks.add(task)
        task.add_done_callback(self._on_export_done)
        return task

    def _on_export_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Export task crashed: {type(exc).__name__}: {exc}")

    async def _park(self, attempt: DeliveryAttempt) -> None:
        if self._dead_letter is not None:
            await self._dead_letter.save(
                attempt, "retry pending at shutdown", {"reason": "shutdown"}
            )
        else:
            logger.error(
                f"Lost batch={attempt.batch_id} events={len(attempt)} "
                f"with retry pending at shutdown"
            )
