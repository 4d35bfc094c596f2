"""Line resolution stage — confidence filter + "search and add to cart" fan-out.

Only LINE blocks strictly above the confidence threshold become cart
requests. Everything else is dropped without retry: low-confidence noise from
handwriting is expected. Drops are logged so the threshold can be tuned.

Dispatch is at-least-once. A re-delivered storage event produces the same
requests again, each carrying the same ``Idempotency-Key``
(sha256 of subject, capture millis and line text) so the cart service can
collapse duplicates. One line failing never stops its siblings.
"""

from __future__ import annotations

import asyncio
import hashlib

import httpx
import structlog
from temporalio import activity

from app.config import settings
from app.models.contracts import (
    DispatchResult,
    ExtractionResult,
    LineIntent,
    ResolveLinesInput,
    ResolveLinesOutput,
    StoredImageRef,
)

log = structlog.get_logger("pipeline.resolve")

LINE_BLOCK_TYPE = "LINE"


def build_intents(
    image: StoredImageRef,
    extraction: ExtractionResult,
    threshold: float,
) -> tuple[list[LineIntent], int]:
    """Return accepted intents (service order, duplicates collapsed) and the LINE discard count."""
    intents: list[LineIntent] = []
    seen: set[str] = set()
    discarded = 0
    for block in extraction.blocks:
        if block.block_type != LINE_BLOCK_TYPE:
            continue
        text = block.text.strip()
        if block.confidence <= threshold or not text:
            discarded += 1
            log.debug(
                "line_discarded",
                key=image.key,
                confidence=block.confidence,
                threshold=threshold,
                empty=not text,
            )
            continue
        if text in seen:
            log.debug("line_duplicate_collapsed", key=image.key, line_text=text)
            continue
        seen.add(text)
        intents.append(LineIntent(subject_id=image.subject_id, line_text=text))
    return intents, discarded


def idempotency_key(intent: LineIntent, captured_at_ms: int) -> str:
    raw = f"{intent.subject_id}|{captured_at_ms}|{intent.line_text}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


async def dispatch_line(
    http_client: httpx.AsyncClient,
    intent: LineIntent,
    dedup_key: str,
) -> DispatchResult:
    """POST one line to the cart API. Failures are returned, never raised."""
    headers = {"Idempotency-Key": dedup_key}
    if settings.cart_api_key:
        headers["Authorization"] = f"Bearer {settings.cart_api_key}"

    try:
        resp = await http_client.post(
            settings.cart_api_url,
            json=intent.to_payload(),
            headers=headers,
            timeout=settings.cart_timeout_seconds,
        )
    except httpx.HTTPError as e:
        log.warning(
            "cart_dispatch_failed",
            subject_id=intent.subject_id,
            error_type=type(e).__name__,
        )
        return DispatchResult(line_text=intent.line_text, ok=False, error=type(e).__name__)

    if not resp.is_success:
        log.warning(
            "cart_dispatch_failed",
            subject_id=intent.subject_id,
            status=resp.status_code,
        )
        return DispatchResult(
            line_text=intent.line_text,
            ok=False,
            status_code=resp.status_code,
            error=f"HTTP {resp.status_code}",
        )

    return DispatchResult(line_text=intent.line_text, ok=True, status_code=resp.status_code)


async def dispatch_all(
    image: StoredImageRef,
    intents: list[LineIntent],
    http_client: httpx.AsyncClient,
) -> list[DispatchResult]:
    """Fan out all intents concurrently (bounded by a semaphore)."""
    semaphore = asyncio.Semaphore(settings.max_concurrent_dispatches)

    async def _limited(intent: LineIntent) -> DispatchResult:
        async with semaphore:
            return await dispatch_line(
                http_client, intent, idempotency_key(intent, image.captured_at_ms)
            )

    raw = await asyncio.gather(*(_limited(i) for i in intents), return_exceptions=True)

    results: list[DispatchResult] = []
    for intent, outcome in zip(intents, raw, strict=True):
        if isinstance(outcome, BaseException):
            log.error(
                "cart_dispatch_crashed",
                subject_id=intent.subject_id,
                error_type=type(outcome).__name__,
                error=str(outcome)[:200],
            )
            results.append(
                DispatchResult(line_text=intent.line_text, ok=False, error=type(outcome).__name__)
            )
        else:
            results.append(outcome)
    return results


async def resolve(
    image: StoredImageRef,
    extraction: ExtractionResult,
    http_client: httpx.AsyncClient | None = None,
) -> ResolveLinesOutput:
    """Filter the extraction and dispatch every accepted line."""
    intents, discarded = build_intents(image, extraction, settings.line_confidence_threshold)
    if not intents:
        log.info("resolve_no_lines", key=image.key, discarded=discarded)
        return ResolveLinesOutput(results=[], discarded=discarded)

    if http_client is None:
        async with httpx.AsyncClient() as client:
            results = await dispatch_all(image, intents, client)
    else:
        results = await dispatch_all(image, intents, http_client)

    succeeded = sum(1 for r in results if r.ok)
    log.info(
        "resolve_complete",
        key=image.key,
        dispatched=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        discarded=discarded,
    )
    return ResolveLinesOutput(results=results, discarded=discarded)


@activity.defn
async def resolve_lines(input: ResolveLinesInput) -> ResolveLinesOutput:
    return await resolve(input.image, input.extraction)
