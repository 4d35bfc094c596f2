"""Contract models shared by the API, the Temporal workflow and its activities.

All models cross process boundaries (HTTP bodies or Temporal payloads via the
pydantic data converter), so they stay plain data: no clients, no callables.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# === API ===


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool = False


class UploadTicketResponse(BaseModel):
    """Write-only upload ticket. ``url`` is the only field the device needs."""

    url: str
    key: str
    expires_in: int = Field(ge=1, le=10)


class IngestionResponse(BaseModel):
    accepted: int = 0
    duplicates: int = 0
    skipped: int = 0


# === Storage events ===


class S3Bucket(BaseModel):
    name: str


class S3Object(BaseModel):
    key: str
    size: int | None = None


class S3Entity(BaseModel):
    bucket: S3Bucket
    object: S3Object


class S3EventRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: str = Field(alias="eventName")
    s3: S3Entity
    # S3 notifications form-encode object keys; EventBridge events do not.
    key_url_encoded: bool = Field(default=True, exclude=True)


class S3EventNotification(BaseModel):
    """Subset of the S3 event notification document we consume.

    Arrives as-is (SNS raw delivery), inside an SNS ``Message`` string, or is
    rebuilt from an EventBridge ``detail``; see ``app.ingestion.notification_from_payload``.
    """

    model_config = ConfigDict(populate_by_name=True)

    records: list[S3EventRecord] = Field(default=[], alias="Records")


class StoredImageRef(BaseModel):
    """A stored capture. ``subject_id`` is always parsed from ``key``."""

    bucket: str
    key: str
    subject_id: str
    captured_at_ms: int


# === Extraction ===


class TextBlock(BaseModel):
    text: str = ""
    block_type: str
    confidence: float = Field(default=0.0, ge=0, le=100)


class ExtractTextInput(BaseModel):
    image: StoredImageRef


class ExtractionResult(BaseModel):
    blocks: list[TextBlock] = []


# === Line resolution ===


class LineIntent(BaseModel):
    subject_id: str
    line_text: str

    def to_payload(self) -> dict[str, str]:
        """Wire shape expected by the cart collaborator."""
        return {"subjectId": self.subject_id, "lineText": self.line_text}


class DispatchResult(BaseModel):
    line_text: str
    ok: bool
    status_code: int | None = None
    error: str | None = None


class ResolveLinesInput(BaseModel):
    image: StoredImageRef
    extraction: ExtractionResult


class ResolveLinesOutput(BaseModel):
    results: list[DispatchResult] = []
    discarded: int = 0


class CycleResult(BaseModel):
    """Outcome of one ingestion → extraction → resolution chain."""

    object_key: str
    status: Literal["completed", "aborted"]
    results: list[DispatchResult] = []
    discarded: int = 0
    error: str | None = None
