"""
Data models for the S3 event exporter.

Events are pydantic models that allow extra fields, so whatever the
producer sends survives serialization untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field


class CompressionMode(str, Enum):
    NONE = "none"
    GZIP = "gzip"
    BROTLI = "brotli"


class EncryptionMode(str, Enum):
    DISABLED = "disabled"
    AES256 = "AES256"
    KMS = "aws:kms"


class Event(BaseModel):
    """A single captured event. Only ``event`` is ever inspected."""

    model_config = ConfigDict(extra="allow")

    event: str
    distinct_id: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
    elements: Optional[list[dict[str, Any]]] = None
    uuid: Optional[str] = None


EventLike = Union[Event, Mapping[str, Any]]


def event_name(event: EventLike) -> Optional[str]:
    if isinstance(event, Event):
        return event.event
    return event.get("event")


@dataclass(frozen=True)
class DeliveryAttempt:
    """One batch plus the number of retries already performed for it.

    Attributes:
        batch_id: Identifies the batch within the retry horizon
        events: The batch, in insertion order
        retries_performed: Failed attempts so far (0 on first export)
    """

    batch_id: int
    events: tuple[EventLike, ...]
    retries_performed: int = 0

    def next_attempt(self) -> "DeliveryAttempt":
        return replace(self, retries_performed=self.retries_performed + 1)

    def with_events(self, events: Sequence[EventLike]) -> "DeliveryAttempt":
        return replace(self, events=tuple(events))

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True)
class Delivered:
    key: str
    location: Optional[str] = None


@dataclass(frozen=True)
class DeliveryFailure:
    key: str
    reason: str


DeliveryOutcome = Union[Delivered, DeliveryFailure]


@dataclass(frozen=True)
class RetryLater:
    delay_ms: int
    attempt: DeliveryAttempt


@dataclass(frozen=True)
class Abandon:
    attempt: DeliveryAttempt
    reason: str


RetryDecision = Union[RetryLater, Abandon]


class ExportResult(str, Enum):
    """Terminal state of a single ``export_batch`` call."""

    DELIVERED = "delivered"
    SCHEDULED = "scheduled"
    ABANDONED = "abandoned"
    SKIPPED = "skipped"  # nothing left after filtering
    DROPPED = "dropped"  # batch could not be encoded
