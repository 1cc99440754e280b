"""
File-based dead letter queue for batches that could not be delivered.

One NDJSON record per batch. Records can be replayed through a fresh
exporter with ``s3-export replay-dlq``.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..encoding import serialize_event
from ..models import DeliveryAttempt


@dataclass(frozen=True)
class DLQRecord:
    batch_id: int
    retries_performed: int
    error: str
    events: list[dict[str, Any]]
    metadata: dict[str, Any] = field(default_factory=dict)
    ts: Optional[str] = None

    def to_attempt(self) -> DeliveryAttempt:
        """A fresh attempt (retry counter reset) for the stored events."""
        return DeliveryAttempt(batch_id=self.batch_id, events=tuple(self.events))


class DeadLetterQueue:
    """Append-only NDJSON file of abandoned batches."""

    def __init__(self, path: str | Path, *, mkdirs: bool = True):
        self._path = Path(path)
        if mkdirs:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def save(
        self,
        attempt: DeliveryAttempt,
        error: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        events = [json.loads(serialize_event(e)) for e in attempt.events]
        record = {
            "batch_id": attempt.batch_id,
            "retries_performed": attempt.retries_performed,
            "error": error,
            "events": events,
            "metadata": metadata or {},
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        line = json.dumps(record, separators=(",", ":"), ensure_ascii=False) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.warning(
            f"Dead-lettered batch={attempt.batch_id} events={len(events)} path={self._path}"
        )

    def _append(self, line: str) -> None:
        with open(self._path, "a", encoding="utf-8") as fh:
            fh.write(line)

    async def replay(self, max_records: int = 1000) -> list[DLQRecord]:
        """Read up to ``max_records`` records, oldest first."""
        if not self._path.exists():
            return []
        async with self._lock:
            lines = await asyncio.to_thread(self._read_lines)

        records: list[DLQRecord] = []
        for line in lines:
            if len(records) >= max_records:
                break
            if not line.strip():
                continue
            doc = json.loads(line)
            records.append(
                DLQRecord(
                    batch_id=doc["batch_id"],
                    retries_performed=doc.get("retries_performed", 0),
                    error=doc.get("error", ""),
                    events=doc.get("events", []),
                    metadata=doc.get("metadata", {}),
                    ts=doc.get("ts"),
                )
            )
        return records

    def _read_lines(self) -> list[str]:
        with open(self._path, "r", encoding="utf-8") as fh:
            return fh.readlines()
