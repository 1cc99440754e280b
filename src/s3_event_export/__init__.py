"""
S3 Event Export

Buffers a stream of events, batches them into newline-delimited JSON
(optionally gzip or brotli compressed) and uploads each batch to an S3
bucket, retrying failed uploads with exponential backoff.

Usage:
    from s3_event_export import ExportCoordinator, Event, get_settings

    async with ExportCoordinator.from_settings(get_settings()) as coord:
        await coord.accept(Event(event="purchase", distinct_id="u1"))
"""

from .coordinator import ExportCoordinator, RetryPolicy, DeadLetterQueue
from .delivery import S3DeliveryClient, build_s3_client
from .encoding import encode_batch, decode_batch
from .errors import ExportError, ConfigurationError, EncodeError
from .keys import make_key
from .models import (
    CompressionMode,
    EncryptionMode,
    Event,
    DeliveryAttempt,
    Delivered,
    DeliveryFailure,
    ExportResult,
)
from .settings import ExportSettings, get_settings, load_settings

__version__ = "1.0.0"
__all__ = [
    "ExportCoordinator",
    "RetryPolicy",
    "DeadLetterQueue",
    "S3DeliveryClient",
    "build_s3_client",
    "encode_batch",
    "decode_batch",
    "make_key",
    "ExportError",
    "ConfigurationError",
    "EncodeError",
    "CompressionMode",
    "EncryptionMode",
    "Event",
    "DeliveryAttempt",
    "Delivered",
    "DeliveryFailure",
    "ExportResult",
    "ExportSettings",
    "get_settings",
    "load_settings",
]
