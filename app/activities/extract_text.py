"""Text extraction stage — AWS Textract DetectDocumentText, synchronous mode.

Textract reads the capture straight from S3 (bucket + key reference), so no
image bytes pass through the pipeline. A shopping list is a single page and
returns in ~2s, which is why the synchronous API is used rather than the
async job + SNS notification flow.

botocore's own retries are disabled: the Temporal retry policy (or the inline
runner's backoff loop) is the single place attempts are counted.
"""

from __future__ import annotations

import asyncio
from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from temporalio import activity
from temporalio.exceptions import ApplicationError

from app.config import settings
from app.models.contracts import ExtractionResult, ExtractTextInput, StoredImageRef, TextBlock

log = structlog.get_logger("pipeline.extract")

RETRYABLE_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "LimitExceededException",
        "InternalServerError",
        "ServiceUnavailableException",
    }
)


def _build_client() -> Any:
    return boto3.client(
        "textract",
        region_name=settings.aws_region,
        config=Config(
            connect_timeout=5,
            read_timeout=settings.recognition_timeout_seconds,
            retries={"total_max_attempts": 1, "mode": "standard"},
        ),
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


def blocks_from_response(response: dict[str, Any]) -> list[TextBlock]:
    """Map Textract ``Blocks`` to TextBlock, keeping service order."""
    return [
        TextBlock(
            text=block.get("Text", ""),
            block_type=block["BlockType"],
            confidence=block.get("Confidence", 0.0),
        )
        for block in response.get("Blocks", [])
    ]


def detect_text(image: StoredImageRef) -> ExtractionResult:
    """One blocking DetectDocumentText call against the stored object."""
    response = _get_client().detect_document_text(
        Document={"S3Object": {"Bucket": image.bucket, "Name": image.key}}
    )
    return ExtractionResult(blocks=blocks_from_response(response))


def is_retryable(exc: BaseException) -> bool:
    """Throttling, 5xx and network timeouts are worth another attempt."""
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return code in RETRYABLE_ERROR_CODES or status >= 500
    return isinstance(exc, (BotoConnectionError, HTTPClientError))


@activity.defn
async def extract_text(input: ExtractTextInput) -> ExtractionResult:
    """Temporal activity wrapper. Retries are driven by the workflow's policy."""
    image = input.image
    try:
        result = await asyncio.to_thread(detect_text, image)
    except (ClientError, BotoCoreError) as e:
        retryable = is_retryable(e)
        log.warning(
            "textract_call_failed",
            key=image.key,
            error_type=type(e).__name__,
            retryable=retryable,
            error=str(e)[:200],
        )
        raise ApplicationError(
            f"Textract DetectDocumentText failed: {e}",
            non_retryable=not retryable,
        ) from e

    log.info(
        "extraction_complete",
        key=image.key,
        blocks=len(result.blocks),
        lines=sum(1 for b in result.blocks if b.block_type == "LINE"),
    )
    return result
