"""Inline capture-cycle runner (USE_TEMPORAL=false).

Runs extraction → resolution in-process for one stored capture. Mirrors
ShoppingListWorkflow: extraction gets bounded exponential backoff, resolution
runs once, and an extraction that never succeeds ends the cycle before any
cart request is sent.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from app.activities.extract_text import detect_text, is_retryable
from app.activities.resolve_lines import resolve
from app.config import settings
from app.errors import RecognitionServiceFailure
from app.models.contracts import CycleResult, ExtractionResult, StoredImageRef

log = structlog.get_logger("pipeline")


async def extract_with_retry(image: StoredImageRef) -> ExtractionResult:
    """Call Textract with bounded exponential backoff.

    Raises RecognitionServiceFailure once attempts are exhausted or the error
    is not worth retrying.
    """
    attempts = settings.recognition_max_attempts
    delay = settings.recognition_initial_backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(detect_text, image),
                timeout=settings.recognition_timeout_seconds,
            )
        except (ClientError, BotoCoreError, TimeoutError) as e:
            retryable = isinstance(e, TimeoutError) or is_retryable(e)
            if not retryable or attempt == attempts:
                raise RecognitionServiceFailure(
                    f"Textract failed after {attempt} attempt(s): {type(e).__name__}"
                ) from e
            log.warning(
                "textract_retrying",
                key=image.key,
                attempt=attempt,
                error_type=type(e).__name__,
                delay=delay,
            )
            await asyncio.sleep(delay)
            delay *= 2
    raise RecognitionServiceFailure("No recognition attempts configured")


async def run_cycle(
    image: StoredImageRef,
    http_client: httpx.AsyncClient | None = None,
) -> CycleResult:
    with structlog.contextvars.bound_contextvars(object_key=image.key):
        try:
            extraction = await extract_with_retry(image)
        except RecognitionServiceFailure as e:
            log.error("cycle_aborted", stage="extraction", error=str(e))
            return CycleResult(object_key=image.key, status="aborted", error=str(e))

        output = await resolve(image, extraction, http_client)
        return CycleResult(
            object_key=image.key,
            status="completed",
            results=output.results,
            discarded=output.discarded,
        )
