"""
Object key generation.

Keys are partitioned by day, then by instant, and end with a random hex
suffix so two batches flushed within the same millisecond never collide
in practice:

    <prefix><YYYY-MM-DD>/<YYYYMMDD-HHMMSSmmm><hex>.jsonl[.gz|.br]
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

from .encoding import KEY_EXTENSIONS
from .models import CompressionMode

SUFFIX_BYTES = 8


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_key(
    prefix: str,
    compression: CompressionMode = CompressionMode.NONE,
    now: Optional[datetime] = None,
) -> str:
    ts = (now or utc_now()).astimezone(timezone.utc)
    day = ts.strftime("%Y-%m-%d")
    day_time = f"{ts:%Y%m%d-%H%M%S}{ts.microsecond // 1000:03d}"
    suffix = secrets.token_hex(SUFFIX_BYTES)
    return f"{prefix or ''}{day}/{day_time}{suffix}{KEY_EXTENSIONS[CompressionMode(compression)]}"
