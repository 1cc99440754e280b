"""
Custom exceptions for the S3 event exporter.

Delivery failures are not exceptions: uploads return a typed
``DeliveryOutcome`` (see ``models``) and the retry policy branches on it.
"""


class ExportError(Exception):
    """Base error for the exporter."""

    pass


class ConfigurationError(ExportError):
    """Missing or invalid settings. Fatal, raised only at startup."""

    pass


class EncodeError(ExportError):
    """A batch could not be serialized. The whole batch is dropped."""

    def __init__(self, message: str, *, index: int | None = None):
        super().__init__(message)
        self.index = index
