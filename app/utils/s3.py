"""S3 client wrapper for capture storage.

The API never handles image bytes: it only signs single-key PUT URLs that the
capture device uploads to directly. Keys follow ``app.utils.object_keys``.
"""

from __future__ import annotations

from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

from app.config import settings

logger = structlog.get_logger()

UPLOAD_CONTENT_TYPE = "image/jpeg"


def _build_client() -> Any:
    """Create an S3 client (optionally pointed at an S3-compatible endpoint)."""
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint_url,
        config=Config(signature_version="s3v4"),
        region_name=settings.aws_region,
    )


_client: Any = None


def _get_client() -> Any:
    """Lazy-init singleton client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = _build_client()
    return _client


def reset_client() -> None:
    """Reset the singleton client (for testing)."""
    global _client  # noqa: PLW0603
    _client = None


def generate_upload_url(key: str, expires_in: int) -> str:
    """Sign a PUT URL for exactly ``key``.

    The content type is part of the signature, so the uploader must send
    ``Content-Type: image/jpeg``. Nothing else can be written with the URL.
    """
    client = _get_client()
    try:
        url: str = client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": settings.s3_bucket_name,
                "Key": key,
                "ContentType": UPLOAD_CONTENT_TYPE,
            },
            ExpiresIn=expires_in,
            HttpMethod="PUT",
        )
    except ClientError as e:
        logger.error("s3_presign_failed", key=key, error=str(e))
        raise
    return url


def head_bucket() -> None:
    """Raise if the capture bucket is not reachable with current credentials."""
    _get_client().head_bucket(Bucket=settings.s3_bucket_name)
