from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import CompressionMode, EncryptionMode

DEFAULT_SIZE_THRESHOLD_BYTES = 1024 * 1024
DEFAULT_TIME_THRESHOLD_SECONDS = 60.0
MAX_RETRIES = 15
BASE_DELAY_MS = 3000

_REDACTED = ("aws_access_key", "aws_secret_access_key", "sse_kms_key_id")


class ExportSettings(BaseSettings):
    """Exporter settings, read from ``S3_EXPORT_*`` env vars (or .env)."""

    model_config = SettingsConfigDict(
        env_prefix="S3_EXPORT_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    aws_access_key: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = None
    endpoint_url: Optional[str] = None
    bucket_name: Optional[str] = None
    prefix: str = ""

    size_threshold_bytes: int = DEFAULT_SIZE_THRESHOLD_BYTES
    time_threshold_seconds: float = DEFAULT_TIME_THRESHOLD_SECONDS
    events_to_ignore: str = ""

    compression: CompressionMode = CompressionMode.NONE
    sse: EncryptionMode = EncryptionMode.DISABLED
    sse_kms_key_id: Optional[str] = None
    force_path_style: bool = False
    signature_version: str = "s3v4"

    max_retries: int = MAX_RETRIES
    base_delay_ms: int = BASE_DELAY_MS
    max_delay_ms: Optional[int] = None
    dead_letter_path: Optional[Path] = None

    @field_validator("compression", mode="before")
    @classmethod
    def _compression_aliases(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and v.strip().lower() in ("", "no compression")):
            return CompressionMode.NONE
        return v

    @field_validator("size_threshold_bytes", "time_threshold_seconds")
    @classmethod
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("flush thresholds must be > 0")
        return v

    @model_validator(mode="after")
    def _required(self) -> "ExportSettings":
        if not self.aws_access_key:
            raise ValueError("AWS access key missing")
        if not self.aws_secret_access_key:
            raise ValueError("AWS secret access key missing")
        if not (self.aws_region or self.endpoint_url):
            raise ValueError("AWS region or endpoint URL missing")
        if not self.bucket_name:
            raise ValueError("S3 bucket name missing")
        if self.sse is EncryptionMode.KMS and not self.sse_kms_key_id:
            raise ValueError("SSE KMS key id missing for aws:kms encryption")
        return self

    @property
    def ignored_events(self) -> frozenset[str]:
        return frozenset(name.strip() for name in self.events_to_ignore.split(",") if name.strip())

    def redacted(self) -> dict[str, Any]:
        """Settings as JSON-safe dict with credentials masked."""
        doc = self.model_dump(mode="json")
        for field in _REDACTED:
            if doc.get(field):
                doc[field] = "***"
        return doc


def load_settings(**overrides: Any) -> ExportSettings:
    """Build settings from env + overrides; any problem is a ConfigurationError."""
    try:
        return ExportSettings(**overrides)
    except ValidationError as e:
        reasons = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
        raise ConfigurationError(f"Invalid exporter settings: {reasons}") from e


@lru_cache()
def get_settings() -> ExportSettings:
    return load_settings()
