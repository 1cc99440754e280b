"""Export Coordinator

Buffer -> batch -> encode -> upload pipeline with:
- EventBuffer with size/time flushing and an ignore list
- BatchExporter (encode, key, upload, hand failures to the retry policy)
- RetryPolicy with exponential backoff and a retry ceiling
- AsyncioJobScheduler as the in-process delayed-job runner
- ExportCoordinator orchestration & health checks
- Dead Letter Queue (file-based NDJSON)
"""

from .buffer import EventBuffer
from .retry import RetryPolicy
from .scheduler import AsyncioJobScheduler, JobScheduler
from .exporter import BatchExporter, Uploader
from .export_coordinator import ExportCoordinator, CoordinatorHealth
from .dlq import DeadLetterQueue, DLQRecord

__all__ = [
    # types
    "Uploader",
    "JobScheduler",
    "CoordinatorHealth",
    "DLQRecord",
    # policies
    "RetryPolicy",
    # runtime
    "EventBuffer",
    "BatchExporter",
    "AsyncioJobScheduler",
    "ExportCoordinator",
    # tooling
    "DeadLetterQueue",
]
