from __future__ import annotations

import asyncio
from time import monotonic
from typing import Callable, Iterable, Optional

from loguru import logger

from ..encoding import serialize_event
from ..metrics import EXPORT_BUFFER_PENDING_BYTES, EXPORT_IGNORED_EVENTS_TOTAL
from ..models import EventLike, event_name
from ..settings import DEFAULT_SIZE_THRESHOLD_BYTES, DEFAULT_TIME_THRESHOLD_SECONDS

FlushCallback = Callable[[list[EventLike]], None]

# Size charged for events that cannot be serialized here; the exporter
# rejects the batch later.
FALLBACK_EVENT_BYTES = 256


class EventBuffer:
    """
    Accumulates events and hands them off in batches.

    A batch is flushed when the estimated serialized size reaches
    ``size_threshold_bytes`` or ``time_threshold_seconds`` have passed since
    the last flush, whichever comes first. The size check runs on every
    ``accept``; the time check runs on every ``accept`` and on a background
    timer (``start()``). Both swap the pending list under one lock, so a
    buffer generation is handed off exactly once.

    ``on_flush`` is called outside the lock and must not block; the
    coordinator uses it to spawn an export task.

    Usage:
        buf = EventBuffer(on_flush, size_threshold_bytes=1_048_576, time_threshold_seconds=60)
        async with buf:
            await buf.accept(event)
        # pending events flushed on exit
    """

    def __init__(
        self,
        on_flush: FlushCallback,
        *,
        size_threshold_bytes: int = DEFAULT_SIZE_THRESHOLD_BYTES,
        time_threshold_seconds: float = DEFAULT_TIME_THRESHOLD_SECONDS,
        ignored_events: Iterable[str] = (),
        clock: Callable[[], float] = monotonic,
    ):
        if size_threshold_bytes <= 0:
            raise ValueError("size_threshold_bytes must be > 0")
        if time_threshold_seconds <= 0:
            raise ValueError("time_threshold_seconds must be > 0")

        self._on_flush = on_flush
        self._size_threshold = size_threshold_bytes
        self._time_threshold = time_threshold_seconds
        self._ignored = frozenset(ignored_events)
        self._clock = clock

        self._pending: list[EventLike] = []
        self._bytes = 0
        self._last_flush = clock()

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    # --------------- context management

    async def __aenter__(self) -> "EventBuffer":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop(flush=True)

    # --------------- properties

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_bytes(self) -> int:
        return self._bytes

    @property
    def ignored_events(self) -> frozenset[str]:
        return self._ignored

    # --------------- public API

    async def accept(self, event: EventLike) -> bool:
        """Buffer one event. Returns False if it was ignored."""
        name = event_name(event)
        if name in self._ignored:
            EXPORT_IGNORED_EVENTS_TOTAL.inc()
            logger.debug(f"Ignoring event: name={name}")
            return False

        size = self._estimate(event)
        batch: list[EventLike] = []
        async with self._lock:
            self._pending.append(event)
            self._bytes += size
            reason = self._due()
            if reason:
                batch, size = self._swap()
            EXPORT_BUFFER_PENDING_BYTES.set(self._bytes)

        if batch:
            self._emit(batch, size, reason)
        return True

    async def flush(self, reason: str = "manual") -> list[EventLike]:
        """Hand off whatever is pending. No-op (apart from the timer reset) when empty."""
        async with self._lock:
            batch, size = self._swap()
        self._emit(batch, size, reason)
        return batch

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_timer())

    async def stop(self, flush: bool = True) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if flush:
            await self.flush(reason="shutdown")

    # --------------- internals

    def _estimate(self, event: EventLike) -> int:
        try:
            return len(serialize_event(event).encode("utf-8"))
        except (TypeError, ValueError):
            return FALLBACK_EVENT_BYTES

    def _due(self) -> Optional[str]:
        if self._bytes >= self._size_threshold:
            return "size"
        if self._clock() - self._last_flush >= self._time_threshold:
            return "time"
        return None

    def _swap(self) -> tuple[list[EventLike], int]:
        batch, size = self._pending, self._bytes
        self._pending = []
        self._bytes = 0
        self._last_flush = self._clock()
        EXPORT_BUFFER_PENDING_BYTES.set(0)
        return batch, size

    def _emit(self, batch: list[EventLike], size: int, reason: Optional[str]) -> None:
        if not batch:
            return
        logger.info(f"Flushing {len(batch)} events: reason={reason} bytes={size}")
        try:
            self._on_flush(batch)
        except Exception:
            # the producer never sees export errors
            logger.exception(f"Flush handler failed, {len(batch)} events lost")

    async def _run_timer(self) -> None:
        while True:
            async with self._lock:
                remaining = self._time_threshold - (self._clock() - self._last_flush)
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue

            async with self._lock:
                # accept() may have flushed while we waited for the lock
                if self._clock() - self._last_flush < self._time_threshold:
                    continue
                batch, size = self._swap()
            self._emit(batch, size, "time")
