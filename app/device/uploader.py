"""Capture-upload client — one physical trigger → one stored capture.

Cycle: valid token → upload ticket → capture → PUT to the signed URL.

A noisy button fires several edges per press, so triggers are debounced
(``CAPTURE_DEBOUNCE_SECONDS`` since the last accepted trigger) and a trigger
that arrives while a cycle is in flight is dropped, not queued. Nothing in a
cycle is retried: the next press is the retry. A ticket is used at most once
and never after its expiry.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog

from app.config import settings
from app.device.camera import CaptureDevice
from app.device.session import CredentialManager
from app.errors import (
    AuthenticationFailure,
    ConfigurationError,
    PipelineError,
    TicketIssuanceFailure,
    UploadFailure,
)

log = structlog.get_logger("device.uploader")

TICKET_PATH = "/api/v1/upload-tickets"


@dataclass(frozen=True)
class UploadTicket:
    url: str
    key: str
    deadline: float  # monotonic clock

    def expired(self, now: float) -> bool:
        return now >= self.deadline


class CaptureUploadClient:
    def __init__(
        self,
        credentials: CredentialManager,
        camera: CaptureDevice,
        http_client: httpx.AsyncClient,
        *,
        api_base_url: str | None = None,
        debounce_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._credentials = credentials
        self._camera = camera
        self._http = http_client
        self._api_base_url = (api_base_url or settings.api_base_url).rstrip("/")
        self._debounce = (
            settings.capture_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._clock = clock
        self._in_flight = False
        self._last_accepted: float | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def on_capture_trigger(self) -> str | None:
        """Run one capture cycle. Returns the stored key, or None if ignored or aborted.

        AuthenticationFailure and ConfigurationError are raised: they need an
        operator, and another press will not fix them.
        """
        now = self._clock()
        if self._in_flight:
            log.info("trigger_ignored", reason="in_flight")
            return None
        if self._last_accepted is not None and now - self._last_accepted < self._debounce:
            log.info("trigger_ignored", reason="debounce", since_last=round(now - self._last_accepted, 3))
            return None

        self._last_accepted = now
        self._in_flight = True
        try:
            key = await self._run_cycle()
        except (AuthenticationFailure, ConfigurationError):
            log.critical("capture_cycle_fatal", exc_info=True)
            raise
        except PipelineError as e:
            log.error("capture_cycle_aborted", error_type=type(e).__name__, error=str(e))
            return None
        finally:
            self._in_flight = False

        log.info("capture_cycle_complete", key=key)
        return key

    async def _run_cycle(self) -> str:
        token = await self._credentials.current_token()
        ticket = await self._request_ticket(token)
        image = await self._camera.capture()
        await self._upload(ticket, image)
        return ticket.key

    async def _request_ticket(self, token: str) -> UploadTicket:
        requested_at = self._clock()
        try:
            resp = await self._http.post(
                f"{self._api_base_url}{TICKET_PATH}",
                headers={"Authorization": f"Bearer {token}"},
                timeout=settings.ticket_timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TicketIssuanceFailure(f"Ticket request failed: {type(e).__name__}") from e

        if resp.status_code not in (200, 201):
            raise TicketIssuanceFailure(f"Ticket request rejected: HTTP {resp.status_code}")

        try:
            body = resp.json()
            url = body["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise TicketIssuanceFailure("Ticket response has no url") from e

        expires_in = body.get("expires_in", settings.upload_ticket_expiry_seconds)
        ticket = UploadTicket(url=url, key=body.get("key", ""), deadline=requested_at + expires_in)
        log.info("ticket_received", key=ticket.key, expires_in=expires_in)
        return ticket

    async def _upload(self, ticket: UploadTicket, image: bytes) -> None:
        if ticket.expired(self._clock()):
            raise UploadFailure(f"Ticket for {ticket.key} expired before upload")

        try:
            resp = await self._http.put(
                ticket.url,
                content=image,
                headers={"Content-Type": "image/jpeg"},
                timeout=settings.upload_timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise UploadFailure(f"Upload of {ticket.key} failed: {type(e).__name__}") from e

        if resp.status_code >= 300:
            raise UploadFailure(f"Upload of {ticket.key} rejected: HTTP {resp.status_code}")
        log.info("image_uploaded", key=ticket.key, size=len(image))
