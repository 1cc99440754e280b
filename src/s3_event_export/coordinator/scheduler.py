"""
Delayed-job runners for re-exporting failed batches.

The exporter only depends on the ``JobScheduler`` protocol; the in-process
``AsyncioJobScheduler`` is the default runner. Anything that can redeliver
``(attempt, delay)`` no earlier than ``delay`` later will do.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol

from loguru import logger

from ..models import DeliveryAttempt

RetryHandler = Callable[[DeliveryAttempt], Awaitable[Any]]


class JobScheduler(Protocol):
    def schedule(self, attempt: DeliveryAttempt, delay_ms: int) -> None:
        """Request that ``attempt`` be exported again after ``delay_ms``."""
        ...


class AsyncioJobScheduler:
    """Runs each delayed job as a sleeping asyncio task.

    Jobs live only as long as the process. ``aclose()`` cancels jobs that
    are still waiting and returns their attempts so the caller can persist
    them; jobs already running are awaited up to ``timeout`` and handed back
    too if they have not finished by then. Retries requested after close go
    to the orphan handler when one is bound.
    """

    def __init__(
        self,
        handler: Optional[RetryHandler] = None,
        *,
        on_orphan: Optional[RetryHandler] = None,
    ):
        self._handler = handler
        self._on_orphan = on_orphan
        self._waiting: dict[asyncio.Task, DeliveryAttempt] = {}
        self._running: dict[asyncio.Task, DeliveryAttempt] = {}
        self._parking: set[asyncio.Task] = set()
        self._orphaned: list[DeliveryAttempt] = []
        self._closed = False

    def bind(self, handler: RetryHandler) -> None:
        self._handler = handler

    def bind_orphan_handler(self, handler: RetryHandler) -> None:
        self._on_orphan = handler

    @property
    def pending(self) -> int:
        return len(self._waiting) + len(self._running)

    @property
    def closed(self) -> bool:
        return self._closed

    def reopen(self) -> None:
        """Accept new jobs again after ``aclose()``."""
        self._closed = False

    def schedule(self, attempt: DeliveryAttempt, delay_ms: int) -> None:
        if self._handler is None:
            raise RuntimeError("AsyncioJobScheduler has no handler bound")
        if self._closed:
            self._orphan(attempt)
            return
        task = asyncio.create_task(self._run(attempt, delay_ms / 1000.0))
        self._waiting[task] = attempt
        task.add_done_callback(self._forget)

    def _orphan(self, attempt: DeliveryAttempt) -> None:
        if self._on_orphan is None:
            # handed back by the next aclose()
            self._orphaned.append(attempt)
            return
        logger.warning(
            f"Retry requested after shutdown: batch={attempt.batch_id} "
            f"attempt={attempt.retries_performed}"
        )
        task = asyncio.create_task(self._on_orphan(attempt))
        self._parking.add(task)
        task.add_done_callback(self._parked)

    def _parked(self, task: asyncio.Task) -> None:
        self._parking.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Orphan handler crashed: {type(exc).__name__}: {exc}")

    async def _run(self, attempt: DeliveryAttempt, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        task = asyncio.current_task()
        self._waiting.pop(task, None)
        self._running[task] = attempt
        try:
            await self._handler(attempt)
        except Exception:
            logger.exception(
                f"Retry job crashed: batch={attempt.batch_id} attempt={attempt.retries_performed}"
            )

    def _forget(self, task: asyncio.Task) -> None:
        self._waiting.pop(task, None)
        self._running.pop(task, None)

    async def aclose(self, timeout: Optional[float] = None) -> list[DeliveryAttempt]:
        """Cancel waiting jobs and wait up to ``timeout`` for running ones.

        Returns the attempts that were not delivered: cancelled jobs, jobs
        still running when the timeout expired and jobs requested after close.
        """
        self._closed = True
        cancelled = list(self._waiting.values())
        waiting = list(self._waiting)
        for task in waiting:
            task.cancel()
        await asyncio.gather(*waiting, return_exceptions=True)

        if self._running:
            _, still_running = await asyncio.wait(list(self._running), timeout=timeout)
            if still_running:
                logger.warning(
                    f"{len(still_running)} retry job(s) still uploading after {timeout}s"
                )
                cancelled.extend(self._running[t] for t in still_running if t in self._running)

        if self._parking:
            await asyncio.wait(list(self._parking), timeout=timeout)

        cancelled.extend(self._orphaned)
        self._orphaned = []
        if cancelled:
            logger.warning(f"Handing back {len(cancelled)} undelivered retry job(s) on shutdown")
        return cancelled
