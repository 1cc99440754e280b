"""
Prometheus metrics for the exporter.
Registered on the global REGISTRY at import time.
"""

from prometheus_client import Counter, Gauge, Histogram

EXPORT_BATCHES_TOTAL = Counter(
    "export_batches_total",
    "Batches that reached a terminal export state",
    ["outcome"],
)

EXPORT_EVENTS_TOTAL = Counter(
    "export_events_total",
    "Events delivered to object storage",
)

EXPORT_UPLOAD_ATTEMPTS_TOTAL = Counter(
    "export_upload_attempts_total",
    "put_object calls by status",
    ["status"],
)

EXPORT_UPLOAD_LATENCY_MS = Histogram(
    "export_upload_latency_ms",
    "put_object latency in milliseconds",
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

EXPORT_RETRIES_SCHEDULED_TOTAL = Counter(
    "export_retries_scheduled_total",
    "Delayed re-exports requested after a failed upload",
)

EXPORT_IGNORED_EVENTS_TOTAL = Counter(
    "export_ignored_events_total",
    "Events dropped by the ignore list",
)

EXPORT_BUFFER_PENDING_BYTES = Gauge(
    "export_buffer_pending_bytes",
    "Estimated serialized size of buffered events",
)


class MetricsRegistry:
    """Structured access to the exporter metrics."""

    batches_total = EXPORT_BATCHES_TOTAL
    events_total = EXPORT_EVENTS_TOTAL
    upload_attempts_total = EXPORT_UPLOAD_ATTEMPTS_TOTAL
    upload_latency_ms = EXPORT_UPLOAD_LATENCY_MS
    retries_scheduled_total = EXPORT_RETRIES_SCHEDULED_TOTAL
    ignored_events_total = EXPORT_IGNORED_EVENTS_TOTAL
    buffer_pending_bytes = EXPORT_BUFFER_PENDING_BYTES


# Singleton instance
metrics_registry = MetricsRegistry()
