"""Failure classes for a capture cycle.

Every class here aborts the cycle it occurs in. Low-confidence discards and
per-line dispatch failures are not exceptions: the first is a filter outcome,
the second is recorded on a ``DispatchResult``.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for cycle-aborting failures."""

    retryable: bool = False


class ConfigurationError(PipelineError):
    """Local setup is unusable (missing or world-readable credentials file, etc.)."""


class AuthenticationFailure(PipelineError):
    """Bootstrap credentials were rejected. Operator action required."""


class SessionRefreshFailure(PipelineError):
    """Refreshing the identity session failed after bounded retries."""

    retryable = True


class TicketIssuanceFailure(PipelineError):
    """The ticket issuer refused or could not be reached."""


class CaptureFailure(PipelineError):
    """The capture device produced no image."""


class UploadFailure(PipelineError):
    """Uploading to the signed URL failed or the ticket had expired."""


class RecognitionServiceFailure(PipelineError):
    """The recognition service stayed unavailable after bounded retries."""

    retryable = True


class InvalidTokenError(Exception):
    """An identity token failed signature or claim verification."""


class UnrecognizedEventError(ValueError):
    """A storage event body is not an S3, SNS or EventBridge delivery."""


class ObjectKeyError(ValueError):
    """An object key does not have the ``{subject}/{millis}.jpg`` shape."""
