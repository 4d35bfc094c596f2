"""Credential & session manager for the capture device (Cognito user pool).

The device boots with a username/password file, authenticates once, and from
then on lives on the refresh token. Sessions are immutable values:
``refresh_session(idp, old)`` returns a new one and the owning
CredentialManager swaps it in. Nothing but the bootstrap file touches disk.

Rejected credentials are never retried (repeated bad attempts lock the
account). Throttling and network errors are retried with bounded backoff.
"""

from __future__ import annotations

import asyncio
import json
import stat
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from jose import jwt

from app.config import settings
from app.errors import AuthenticationFailure, ConfigurationError, SessionRefreshFailure

log = structlog.get_logger("device.session")

_REJECTED_CODES = frozenset(
    {
        "NotAuthorizedException",
        "UserNotFoundException",
        "UserNotConfirmedException",
        "PasswordResetRequiredException",
    }
)
_TRANSIENT_CODES = frozenset({"TooManyRequestsException", "InternalErrorException"})


@dataclass(frozen=True)
class BootstrapCredentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class IdentitySession:
    subject_id: str
    id_token: str = field(repr=False)
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: float  # epoch seconds

    def expires_within(self, seconds: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current + seconds >= self.expires_at


def load_credentials(path: str | Path) -> BootstrapCredentials:
    """Read the bootstrap credentials file, refusing one others can read."""
    path = Path(path)
    try:
        mode = path.stat().st_mode
    except FileNotFoundError as e:
        raise ConfigurationError(f"Credentials file not found: {path}") from e
    if mode & (stat.S_IROTH | stat.S_IWOTH):
        raise ConfigurationError(
            f"Credentials file {path} is world-accessible; run: chmod 600 {path}"
        )

    try:
        data = json.loads(path.read_text())
        return BootstrapCredentials(username=data["username"], password=data["password"])
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise ConfigurationError(f"Credentials file {path} must hold username and password") from e


def build_idp_client() -> Any:
    return boto3.client(
        "cognito-idp",
        region_name=settings.cognito_region,
        config=Config(
            connect_timeout=5,
            read_timeout=10,
            retries={"total_max_attempts": 1, "mode": "standard"},
        ),
    )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return _error_code(exc) in _TRANSIENT_CODES or status >= 500
    return isinstance(exc, BotoCoreError)


def _session_from_result(result: dict[str, Any], refresh_token: str | None = None) -> IdentitySession:
    id_token = result["IdToken"]
    claims = jwt.get_unverified_claims(id_token)
    return IdentitySession(
        subject_id=claims["sub"],
        id_token=id_token,
        access_token=result["AccessToken"],
        refresh_token=result.get("RefreshToken") or refresh_token or "",
        expires_at=time.time() + int(result["ExpiresIn"]),
    )


def authenticate(idp: Any, credentials: BootstrapCredentials) -> IdentitySession:
    """USER_PASSWORD_AUTH against the user pool app client."""
    try:
        response = idp.initiate_auth(
            ClientId=settings.cognito_client_id,
            AuthFlow="USER_PASSWORD_AUTH",
            AuthParameters={"USERNAME": credentials.username, "PASSWORD": credentials.password},
        )
    except ClientError as e:
        if _error_code(e) in _REJECTED_CODES:
            raise AuthenticationFailure(
                f"Identity provider rejected credentials for {credentials.username}: {_error_code(e)}"
            ) from e
        raise

    if "AuthenticationResult" not in response:
        raise AuthenticationFailure(
            f"Unsupported auth challenge: {response.get('ChallengeName', 'unknown')}"
        )
    return _session_from_result(response["AuthenticationResult"])


def refresh_session(idp: Any, old: IdentitySession) -> IdentitySession:
    """REFRESH_TOKEN_AUTH. Cognito does not rotate the refresh token, so it carries over."""
    try:
        response = idp.initiate_auth(
            ClientId=settings.cognito_client_id,
            AuthFlow="REFRESH_TOKEN_AUTH",
            AuthParameters={"REFRESH_TOKEN": old.refresh_token},
        )
    except ClientError as e:
        if _error_code(e) in _REJECTED_CODES:
            raise AuthenticationFailure(f"Refresh token rejected: {_error_code(e)}") from e
        raise
    new = _session_from_result(response["AuthenticationResult"], refresh_token=old.refresh_token)
    if new.subject_id != old.subject_id:
        raise AuthenticationFailure("Refreshed session belongs to a different subject")
    return new


class CredentialManager:
    """Owns the device's identity session and hands out valid tokens."""

    def __init__(
        self,
        idp: Any,
        credentials: BootstrapCredentials,
        *,
        skew_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._idp = idp
        self._credentials = credentials
        self._skew = settings.session_refresh_skew_seconds if skew_seconds is None else skew_seconds
        self._max_attempts = max_attempts or settings.session_refresh_max_attempts
        self._backoff = (
            settings.session_refresh_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._clock = clock
        self._session: IdentitySession | None = None

    @property
    def session(self) -> IdentitySession | None:
        return self._session

    async def current_token(self) -> str:
        """Return an ID token that is not expired and not about to expire."""
        if self._session is None:
            self._session = await self._call_with_retry(authenticate, self._idp, self._credentials)
            log.info("session_established", subject_id=self._session.subject_id)
        elif self._session.expires_within(self._skew, now=self._clock()):
            try:
                self._session = await self._call_with_retry(refresh_session, self._idp, self._session)
                log.info("session_refreshed", subject_id=self._session.subject_id)
            except AuthenticationFailure:
                # Refresh token revoked or expired; one fresh bootstrap login.
                log.warning("refresh_token_rejected", subject_id=self._session.subject_id)
                self._session = None
                self._session = await self._call_with_retry(
                    authenticate, self._idp, self._credentials
                )
        return self._session.id_token

    async def _call_with_retry(self, fn: Callable[..., IdentitySession], *args: Any) -> IdentitySession:
        delay = self._backoff
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await asyncio.to_thread(fn, *args)
            except AuthenticationFailure:
                log.error("authentication_failed", operation=fn.__name__)
                raise
            except (ClientError, BotoCoreError) as e:
                if not _is_transient(e) or attempt == self._max_attempts:
                    raise SessionRefreshFailure(
                        f"{fn.__name__} failed after {attempt} attempt(s): {type(e).__name__}"
                    ) from e
                log.warning(
                    "session_call_retrying",
                    operation=fn.__name__,
                    attempt=attempt,
                    error_type=type(e).__name__,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                delay *= 2
        raise SessionRefreshFailure("No session attempts configured")
