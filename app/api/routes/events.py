"""Storage event endpoint.

S3 cannot call HTTP directly: ``ObjectCreated`` notifications reach this
endpoint through SNS (HTTPS subscription, enveloped or raw) or an EventBridge
API destination. The body is unwrapped by ``app.ingestion``. A non-2xx
response tells the relay to redeliver, so a body we cannot read is a 422,
never an empty 200.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from app.api.responses import error_response
from app.errors import UnrecognizedEventError
from app.ingestion import handle_event, notification_from_payload
from app.models.contracts import ErrorResponse, IngestionResponse

logger = structlog.get_logger()

router = APIRouter(tags=["events"])


@router.post(
    "/events/object-created",
    response_model=IngestionResponse,
    responses={422: {"model": ErrorResponse}},
)
async def object_created(request: Request, payload: dict[str, Any] = Body(...)):
    try:
        notification = notification_from_payload(payload)
    except UnrecognizedEventError as e:
        logger.warning("object_created_unrecognized", error=str(e), fields=sorted(payload)[:10])
        return error_response(422, "unrecognized_event", str(e))
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e

    temporal_client = getattr(request.app.state, "temporal_client", None)
    result = await handle_event(notification, temporal_client)
    logger.info(
        "object_created_handled",
        records=len(notification.records),
        accepted=result.accepted,
        duplicates=result.duplicates,
        skipped=result.skipped,
    )
    return result
