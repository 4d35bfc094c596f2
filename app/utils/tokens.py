"""Identity-token verification for the upload ticket issuer.

Tokens are Cognito user-pool JWTs. The signing key is either configured
directly (``TOKEN_SIGNING_KEY``, used for local development and tests) or the
pool's published JWKS, fetched once and cached for the process lifetime.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from jose import JWTError, jwt

from app.config import settings
from app.errors import InvalidTokenError

logger = structlog.get_logger()

_ACCEPTED_TOKEN_USES = frozenset({"id", "access"})

_jwks: dict[str, Any] | None = None


@dataclass(frozen=True)
class IdentityClaims:
    subject_id: str
    username: str | None = None


async def _fetch_jwks() -> dict[str, Any]:
    url = f"{settings.token_issuer}/.well-known/jwks.json"
    async with httpx.AsyncClient() as client:
        response = await client.get(url, timeout=5.0)
    response.raise_for_status()
    jwks: dict[str, Any] = response.json()
    logger.info("jwks_loaded", issuer=settings.token_issuer, key_count=len(jwks.get("keys", [])))
    return jwks


async def get_signing_key() -> str | dict[str, Any]:
    """Return the verification key: configured key, else the cached pool JWKS."""
    global _jwks  # noqa: PLW0603
    if settings.token_signing_key:
        return settings.token_signing_key
    if _jwks is None:
        _jwks = await _fetch_jwks()
    return _jwks


def reset_jwks_cache() -> None:
    """Drop the cached JWKS (for testing and key rotation)."""
    global _jwks  # noqa: PLW0603
    _jwks = None


def verify_identity_token(token: str, key: str | dict[str, Any]) -> IdentityClaims:
    """Check signature, expiry, issuer and audience; return the subject claim.

    Raises InvalidTokenError for anything that does not verify.
    """
    options = {"verify_aud": settings.token_audience is not None}
    issuer = settings.token_issuer if settings.cognito_user_pool_id else None
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=settings.token_algorithms,
            audience=settings.token_audience,
            issuer=issuer,
            options=options,
        )
    except JWTError as e:
        raise InvalidTokenError(str(e)) from e

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject or "/" in subject:
        raise InvalidTokenError("Token has no usable 'sub' claim")

    token_use = claims.get("token_use")
    if token_use is not None and token_use not in _ACCEPTED_TOKEN_USES:
        raise InvalidTokenError(f"Unsupported token_use: {token_use}")

    return IdentityClaims(
        subject_id=subject,
        username=claims.get("cognito:username") or claims.get("username"),
    )
