"""
Delivery client: one ``put_object`` call per attempt.

Every failure (transport, auth, throttling, server side) is folded into a
single ``DeliveryFailure`` value; callers never need to tell them apart.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional, Protocol

import boto3
from botocore.config import Config
from loguru import logger

from .metrics import EXPORT_UPLOAD_ATTEMPTS_TOTAL, EXPORT_UPLOAD_LATENCY_MS
from .models import Delivered, DeliveryFailure, DeliveryOutcome, EncryptionMode
from .settings import ExportSettings

CONTENT_TYPE = "application/x-ndjson"


class ObjectStore(Protocol):
    """The slice of a boto3 S3 client the exporter relies on."""

    def put_object(self, **params: Any) -> Any: ...


def build_s3_client(settings: ExportSettings) -> ObjectStore:
    """Create the long-lived boto3 client shared by all uploads."""
    config = Config(
        signature_version=settings.signature_version,
        s3={"addressing_style": "path" if settings.force_path_style else "auto"},
    )
    return boto3.client(
        "s3",
        aws_access_key_id=settings.aws_access_key,
        aws_secret_access_key=settings.aws_secret_access_key,
        region_name=settings.aws_region,
        endpoint_url=settings.endpoint_url,
        config=config,
    )


class S3DeliveryClient:
    """Uploads encoded batches to a single bucket."""

    def __init__(
        self,
        s3: ObjectStore,
        bucket: str,
        *,
        encryption: EncryptionMode = EncryptionMode.DISABLED,
        kms_key_id: Optional[str] = None,
    ):
        if not bucket:
            raise ValueError("bucket required")
        self._s3 = s3
        self._bucket = bucket
        self._encryption = EncryptionMode(encryption)
        self._kms_key_id = kms_key_id

    @classmethod
    def from_settings(
        cls, settings: ExportSettings, s3: Optional[ObjectStore] = None
    ) -> "S3DeliveryClient":
        return cls(
            s3 if s3 is not None else build_s3_client(settings),
            settings.bucket_name,
            encryption=settings.sse,
            kms_key_id=settings.sse_kms_key_id,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def put_params(
        self, key: str, body: bytes, content_encoding: Optional[str] = None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": body,
            "ContentType": CONTENT_TYPE,
        }
        if content_encoding:
            params["ContentEncoding"] = content_encoding
        if self._encryption is not EncryptionMode.DISABLED:
            params["ServerSideEncryption"] = self._encryption.value
            if self._encryption is EncryptionMode.KMS:
                params["SSEKMSKeyId"] = self._kms_key_id
        return params

    async def upload(
        self, key: str, body: bytes, content_encoding: Optional[str] = None
    ) -> DeliveryOutcome:
        params = self.put_params(key, body, content_encoding)
        start = time.perf_counter()
        try:
            # boto3 is blocking; keep the event loop free
            await asyncio.to_thread(self._s3.put_object, **params)
        except Exception as exc:
            EXPORT_UPLOAD_ATTEMPTS_TOTAL.labels(status="failure").inc()
            logger.debug(f"put_object failed: key={key} error={type(exc).__name__}: {exc}")
            return DeliveryFailure(key=key, reason=f"{type(exc).__name__}: {exc}")
        finally:
            EXPORT_UPLOAD_LATENCY_MS.observe((time.perf_counter() - start) * 1000.0)

        EXPORT_UPLOAD_ATTEMPTS_TOTAL.labels(status="success").inc()
        return Delivered(key=key, location=f"s3://{self._bucket}/{key}")
