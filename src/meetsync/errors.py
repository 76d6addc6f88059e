"""Error taxonomy shared by the webhook, calendar, and vendor layers.

Every error raised deliberately by this package derives from MeetSyncError
so route handlers can tell expected failures from programming errors.
"""

from __future__ import annotations


class MeetSyncError(Exception):
    """Base class for all application errors."""


class AuthenticationError(MeetSyncError):
    """Bad or missing webhook secret, signature, or bearer token."""


class ConfigurationError(MeetSyncError):
    """A required secret is not configured; requests must be refused."""


class InputValidationError(MeetSyncError):
    """Malformed id, URL, or timestamp. Raised before any external call."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class AttributionError(MeetSyncError):
    """An inbound event cannot be attributed to a user."""


class OwnershipError(MeetSyncError):
    """The resource exists but belongs to a different user."""


class VendorError(MeetSyncError):
    """Error response (or exhausted retries) from the MeetingBaas API."""

    def __init__(
        self,
        message: str,
        code: str = "VENDOR_ERROR",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class RateLimitError(VendorError):
    """HTTP 429 that persisted through the whole retry budget."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, code="FST_ERR_TOO_MANY_REQUESTS", status_code=429)
        self.retry_after = retry_after


class ArtifactError(MeetSyncError):
    """Transcript or diarization could not be downloaded or parsed."""


class GenerationError(MeetSyncError):
    """The AI completion service failed to produce a usable result."""
