"""Exception taxonomy shared by the index manager and the delivery layer."""

from __future__ import annotations

from typing import Optional


class MoodstreamError(Exception):
    """Base class for all domain errors."""


class DeliveryError(MoodstreamError):
    """A stream request that cannot be fulfilled; maps onto an HTTP status."""

    status_code = 500
    error_code = "delivery_failed"
    retryable = False

    def __init__(self, message: str, *, status_code: Optional[int] = None, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }


class SourceValidationError(DeliveryError):
    status_code = 400
    error_code = "invalid_source"


class SourceExpiredError(DeliveryError):
    status_code = 410
    error_code = "source_expired"


class UpstreamUnavailableError(DeliveryError):
    """Upstream could not be reached within the connect/first-byte budget."""

    status_code = 503
    error_code = "upstream_unreachable"
    retryable = True


class UpstreamStatusError(DeliveryError):
    status_code = 502
    error_code = "upstream_error"
    retryable = True

    def __init__(self, message: str, *, upstream_status: int, error_code: Optional[str] = None) -> None:
        super().__init__(message, error_code=error_code)
        self.upstream_status = upstream_status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["upstream_status"] = self.upstream_status
        return payload


class ExtractionError(DeliveryError):
    status_code = 502
    error_code = "extraction_failed"


class LocalStreamNotFound(DeliveryError):
    status_code = 404
    error_code = "local_source_unavailable"


class LocalSourceUnavailable(MoodstreamError):
    """A retained copy cannot be opened; callers fall back to the remote source."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"{reference}: {reason}")
        self.reference = reference
        self.reason = reason


class IndexCorruptError(MoodstreamError):
    """The persisted index blob cannot be used and must be rebuilt."""


__all__ = [
    "MoodstreamError",
    "DeliveryError",
    "SourceValidationError",
    "SourceExpiredError",
    "UpstreamUnavailableError",
    "UpstreamStatusError",
    "ExtractionError",
    "LocalStreamNotFound",
    "LocalSourceUnavailable",
    "IndexCorruptError",
]
