"""Error types shared by the service, the provider adapters and the HTTP layer."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised at startup when required configuration or secrets are missing."""


class TrackerError(Exception):
    """Base class for request-scoped failures.

    ``public_message`` is what the caller sees; ``str(err)`` may carry more
    detail and is only meant for the server log.
    """

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class AuthRequired(TrackerError):
    status_code = 401
    public_message = "Unauthorized"


class InvalidInput(TrackerError):
    status_code = 400
    public_message = "Invalid request"

    def __init__(self, message: str | None = None):
        super().__init__(message)
        # Validation messages are safe to show to the caller.
        if message:
            self.public_message = message


class NotFound(TrackerError):
    status_code = 404
    public_message = "No API key found"


class DecryptionError(TrackerError):
    status_code = 500
    public_message = "Stored API key could not be decrypted; please re-enter it"


class StoreError(TrackerError):
    status_code = 500
    public_message = "Failed to access stored API keys"


class UpstreamError(TrackerError):
    """A provider returned a non-2xx status or could not be reached."""

    status_code = 500

    def __init__(self, provider: str, status: int | None = None, body: str = ""):
        self.provider = provider
        self.status = status
        self.body = body
        self.public_message = f"Failed to fetch usage from {provider}"
        if status is None:
            detail = f"{provider} request failed: {body}"
        else:
            detail = f"{provider} returned HTTP {status}: {body[:500]}"
        super().__init__(detail)


class RateLimited(TrackerError):
    status_code = 429
    public_message = "Too many requests"

    def __init__(self, retry_after: int = 0):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s")
