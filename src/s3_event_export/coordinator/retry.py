from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from ..models import (
    Abandon,
    DeliveryAttempt,
    DeliveryFailure,
    DeliveryOutcome,
    RetryDecision,
    RetryLater,
)
from ..settings import BASE_DELAY_MS, MAX_RETRIES, ExportSettings


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a bounded number of retries.

    delay(n) = base_delay_ms * 2**n for the n-th retry (0-based), so the
    default sequence is 3000, 6000, 12000, ... 3000 * 2**14 ms. There is no
    absolute ceiling unless ``max_delay_ms`` is set.
    """

    max_retries: int = MAX_RETRIES
    base_delay_ms: int = BASE_DELAY_MS
    max_delay_ms: Optional[int] = None
    jitter: bool = False

    @classmethod
    def from_settings(cls, settings: ExportSettings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
        )

    def next_backoff_ms(self, retries_performed: int) -> int:
        delay = self.base_delay_ms * (2**retries_performed)
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        if self.jitter:
            # 50-100% of the computed delay
            delay = int(delay * random.uniform(0.5, 1.0))
        return delay

    def decide(
        self, outcome: DeliveryOutcome, attempt: DeliveryAttempt
    ) -> Optional[RetryDecision]:
        """Map an upload outcome to the next action; ``None`` means delivered."""
        if not isinstance(outcome, DeliveryFailure):
            return None
        if attempt.retries_performed >= self.max_retries:
            return Abandon(
                attempt=attempt,
                reason=f"retry limit reached ({self.max_retries}): {outcome.reason}",
            )
        return RetryLater(
            delay_ms=self.next_backoff_ms(attempt.retries_performed),
            attempt=attempt.next_attempt(),
        )
