from __future__ import annotations

import gzip
import json
from typing import Any, Iterable

import brotli

from .errors import EncodeError
from .models import CompressionMode, Event, EventLike

KEY_EXTENSIONS = {
    CompressionMode.NONE: ".jsonl",
    CompressionMode.GZIP: ".jsonl.gz",
    CompressionMode.BROTLI: ".jsonl.br",
}

CONTENT_ENCODINGS = {
    CompressionMode.NONE: None,
    CompressionMode.GZIP: "gzip",
    CompressionMode.BROTLI: "br",
}


def serialize_event(event: EventLike) -> str:
    """Render one event as a single compact JSON line (no newline)."""
    doc = event.model_dump(mode="json") if isinstance(event, Event) else dict(event)
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def encode_batch(
    events: Iterable[EventLike], compression: CompressionMode = CompressionMode.NONE
) -> bytes:
    """
    Serialize a batch to newline-delimited JSON and optionally compress it.

    Lines keep insertion order and are joined with a single ``\\n`` (no
    trailing newline). One bad event fails the whole batch.

    Raises:
        EncodeError: if any event cannot be serialized
    """
    lines = []
    for i, event in enumerate(events):
        try:
            lines.append(serialize_event(event))
        except (TypeError, ValueError) as e:
            raise EncodeError(f"event #{i} is not serializable: {e}", index=i) from e

    body = "\n".join(lines).encode("utf-8")
    return compress(body, CompressionMode(compression))


def compress(body: bytes, compression: CompressionMode) -> bytes:
    if compression is CompressionMode.GZIP:
        return gzip.compress(body)
    if compression is CompressionMode.BROTLI:
        return brotli.compress(body)
    return body


def decompress(payload: bytes, compression: CompressionMode) -> bytes:
    if compression is CompressionMode.GZIP:
        return gzip.decompress(payload)
    if compression is CompressionMode.BROTLI:
        return brotli.decompress(payload)
    return payload


def decode_batch(
    payload: bytes, compression: CompressionMode = CompressionMode.NONE
) -> list[dict[str, Any]]:
    """Inverse of ``encode_batch``: returns one dict per line."""
    text = decompress(payload, CompressionMode(compression)).decode("utf-8")
    return [json.loads(line) for line in text.split("\n") if line]
