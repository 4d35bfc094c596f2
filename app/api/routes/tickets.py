"""Upload ticket issuer.

Turns a verified identity token into a write-only, single-key presigned URL
under the caller's own ``{subject}/`` prefix. The URL expires after at most
ten seconds, which bounds what a leaked ticket can be used for.
"""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.api.responses import error_response
from app.config import settings
from app.errors import InvalidTokenError
from app.models.contracts import ErrorResponse, UploadTicketResponse
from app.utils import s3
from app.utils.object_keys import KeyAllocator
from app.utils.tokens import get_signing_key, verify_identity_token

logger = structlog.get_logger()

router = APIRouter(tags=["tickets"])

security = HTTPBearer(auto_error=False)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}

_key_allocator = KeyAllocator()


@router.post(
    "/upload-tickets",
    status_code=201,
    response_model=UploadTicketResponse,
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def issue_upload_ticket(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
):
    """Issue a short-lived PUT URL for one capture."""
    if credentials is None:
        return error_response(
            401, "not_authenticated", "Bearer token required", headers=_BEARER_CHALLENGE
        )

    try:
        signing_key = await get_signing_key()
    except httpx.HTTPError as e:
        logger.error("signing_key_unavailable", error=str(e))
        return error_response(
            503, "identity_provider_unavailable", "Cannot verify tokens right now", retryable=True
        )

    try:
        claims = verify_identity_token(credentials.credentials, signing_key)
    except InvalidTokenError as e:
        logger.warning("ticket_rejected", reason=str(e))
        return error_response(
            401, "invalid_token", "Invalid or expired token", headers=_BEARER_CHALLENGE
        )

    key = _key_allocator.allocate(claims.subject_id)
    expires_in = settings.upload_ticket_expiry_seconds
    url = s3.generate_upload_url(key, expires_in)

    logger.info("ticket_issued", subject_id=claims.subject_id, key=key, expires_in=expires_in)
    return UploadTicketResponse(url=url, key=key, expires_in=expires_in)
