"""Ingestion trigger — storage event → one pipeline run per created capture.

Delivery is at-least-once. In Temporal mode the workflow ID is derived from
the object identity with REJECT_DUPLICATE, so a re-delivered event is
acknowledged without starting a second run. In inline mode the cycle simply
runs again; the cart collaborator absorbs the duplicate adds via the
per-line idempotency key.

No retries happen here. An exception propagates to the caller, which
reports failure to the storage layer and lets it redeliver.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote_plus

import structlog
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from app.config import settings
from app.errors import ObjectKeyError, UnrecognizedEventError
from app.models.contracts import (
    IngestionResponse,
    S3EventNotification,
    S3EventRecord,
    StoredImageRef,
)
from app.pipeline import run_cycle
from app.utils.object_keys import parse_object_key
from app.workflows.shopping_list import ShoppingListWorkflow

if TYPE_CHECKING:
    from temporalio.client import Client

log = structlog.get_logger("ingestion")

OBJECT_CREATED_PREFIX = "ObjectCreated:"

S3_TEST_EVENT = "s3:TestEvent"
_SNS_CONFIRMATION_TYPES = frozenset({"SubscriptionConfirmation", "UnsubscribeConfirmation"})


def _record_from_eventbridge(event: dict[str, Any]) -> S3EventRecord:
    """Rebuild an S3 notification record from an EventBridge "Object ..." event."""
    detail = event["detail"]
    if not isinstance(detail, dict):
        raise UnrecognizedEventError("EventBridge 'detail' must be an object")
    detail_type = str(event.get("detail-type", ""))
    if detail_type == "Object Created":
        event_name = f"{OBJECT_CREATED_PREFIX}{detail.get('reason', 'PutObject')}"
    else:
        event_name = detail_type.replace(" ", "")
    return S3EventRecord.model_validate(
        {
            "eventName": event_name,
            "s3": {"bucket": detail.get("bucket"), "object": detail.get("object")},
            "key_url_encoded": False,
        }
    )


def notification_from_payload(payload: dict[str, Any]) -> S3EventNotification:
    """Unwrap a storage event delivery into the S3 notification it carries.

    Accepted bodies:
      - an S3 notification document (``Records``), e.g. SNS raw delivery
      - an SNS envelope whose ``Message`` is a JSON string of any accepted body
      - an EventBridge event from S3 (``detail`` with bucket and object)

    Raises UnrecognizedEventError for anything else, and pydantic's
    ValidationError when a recognized shape is missing fields. Both must reach
    the caller as a failure so the delivery is retried, never as an empty 200.
    """
    if "Records" in payload:
        return S3EventNotification.model_validate(payload)

    if payload.get("Event") == S3_TEST_EVENT:
        log.info("ingestion_test_event", bucket=payload.get("Bucket"))
        return S3EventNotification()

    if "Message" in payload:
        if payload.get("Type") in _SNS_CONFIRMATION_TYPES:
            # Confirm from the SNS console; the pending subscription delivers nothing yet.
            log.warning(
                "sns_subscription_pending",
                type=payload["Type"],
                topic_arn=payload.get("TopicArn"),
            )
            return S3EventNotification()
        try:
            inner = json.loads(payload["Message"])
        except (TypeError, ValueError) as e:
            raise UnrecognizedEventError("SNS 'Message' is not a JSON document") from e
        if not isinstance(inner, dict):
            raise UnrecognizedEventError("SNS 'Message' must hold a JSON object")
        return notification_from_payload(inner)

    if "detail" in payload:
        return S3EventNotification(records=[_record_from_eventbridge(payload)])

    raise UnrecognizedEventError(
        "Expected an S3 notification ('Records'), SNS envelope ('Message') "
        "or EventBridge event ('detail')"
    )


def parse_event(event: S3EventNotification) -> tuple[list[StoredImageRef], int]:
    """Return capture refs in the event plus the number of records skipped."""
    refs: list[StoredImageRef] = []
    seen: set[tuple[str, str]] = set()
    skipped = 0
    for record in event.records:
        if not record.event_name.startswith(OBJECT_CREATED_PREFIX):
            skipped += 1
            log.debug("ingestion_ignored_event", event_name=record.event_name)
            continue

        bucket = record.s3.bucket.name
        key = record.s3.object.key
        # S3 notification keys are form-encoded ("a+b" for "a b")
        if record.key_url_encoded:
            key = unquote_plus(key)
        try:
            subject_id, captured_at_ms = parse_object_key(key)
        except ObjectKeyError:
            skipped += 1
            log.warning("ingestion_unrecognized_key", bucket=bucket, key=key)
            continue

        if (bucket, key) in seen:
            continue
        seen.add((bucket, key))
        refs.append(
            StoredImageRef(
                bucket=bucket,
                key=key,
                subject_id=subject_id,
                captured_at_ms=captured_at_ms,
            )
        )
    return refs, skipped


def workflow_id_for(image: StoredImageRef) -> str:
    return f"shopping-list:{image.bucket}/{image.key}"


async def start_workflows(client: Client, refs: list[StoredImageRef]) -> tuple[int, int]:
    """Start one ShoppingListWorkflow per ref. Returns ``(started, duplicates)``."""
    started = 0
    duplicates = 0
    for ref in refs:
        workflow_id = workflow_id_for(ref)
        try:
            await client.start_workflow(
                ShoppingListWorkflow.run,
                ref,
                id=workflow_id,
                task_queue=settings.temporal_task_queue,
                id_reuse_policy=WorkflowIDReusePolicy.REJECT_DUPLICATE,
            )
        except WorkflowAlreadyStartedError:
            duplicates += 1
            log.info("ingestion_duplicate_event", workflow_id=workflow_id)
            continue
        started += 1
        log.info("ingestion_workflow_started", workflow_id=workflow_id, subject_id=ref.subject_id)
    return started, duplicates


async def run_inline(refs: list[StoredImageRef]) -> int:
    """Run every cycle in-process, concurrently. Returns the number run."""
    if not refs:
        return 0
    results = await asyncio.gather(*(run_cycle(ref) for ref in refs))
    for result in results:
        log.info(
            "ingestion_cycle_finished",
            key=result.object_key,
            status=result.status,
            dispatched=len(result.results),
        )
    return len(results)


async def handle_event(
    event: S3EventNotification,
    temporal_client: Client | None = None,
) -> IngestionResponse:
    refs, skipped = parse_event(event)
    if settings.use_temporal:
        if temporal_client is None:
            raise RuntimeError("USE_TEMPORAL is set but no Temporal client is available")
        accepted, duplicates = await start_workflows(temporal_client, refs)
    else:
        accepted, duplicates = await run_inline(refs), 0
    return IngestionResponse(accepted=accepted, duplicates=duplicates, skipped=skipped)
