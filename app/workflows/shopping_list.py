"""ShoppingListWorkflow — one instance per stored capture.

Workflow ID = ``shopping-list:{bucket}/{key}`` (see app.ingestion), so a
re-delivered storage event cannot start a second run for the same object.
Extraction is retried by Temporal; resolution runs once because a retry would
re-send lines that already reached the cart.
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from app.activities.extract_text import extract_text
    from app.activities.resolve_lines import resolve_lines
    from app.config import settings
    from app.models.contracts import (
        CycleResult,
        ExtractTextInput,
        ResolveLinesInput,
        StoredImageRef,
    )


_EXTRACT_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=settings.recognition_initial_backoff_seconds),
    backoff_coefficient=2.0,
    maximum_attempts=settings.recognition_max_attempts,
)
_RESOLVE_RETRY = RetryPolicy(maximum_attempts=1)

_EXTRACT_TIMEOUT = timedelta(seconds=settings.recognition_timeout_seconds)
_RESOLVE_TIMEOUT = timedelta(minutes=2)


@workflow.defn
class ShoppingListWorkflow:
    """Extraction → line resolution for one capture."""

    @workflow.run
    async def run(self, image: StoredImageRef) -> CycleResult:
        try:
            extraction = await workflow.execute_activity(
                extract_text,
                ExtractTextInput(image=image),
                start_to_close_timeout=_EXTRACT_TIMEOUT,
                retry_policy=_EXTRACT_RETRY,
            )
        except ActivityError as exc:
            workflow.logger.error("Extraction failed for %s: %s", image.key, exc)
            return CycleResult(
                object_key=image.key,
                status="aborted",
                error=f"Recognition failed: {exc.cause or exc}",
            )

        output = await workflow.execute_activity(
            resolve_lines,
            ResolveLinesInput(image=image, extraction=extraction),
            start_to_close_timeout=_RESOLVE_TIMEOUT,
            retry_policy=_RESOLVE_RETRY,
        )
        return CycleResult(
            object_key=image.key,
            status="completed",
            results=output.results,
            discarded=output.discarded,
        )
