from typing import Optional


class SessionServiceError(Exception):
    """Base for errors surfaced to callers as ``{"detail": ...}`` responses."""

    status_code: int = 500
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(SessionServiceError):
    status_code = 400
    default_detail = "Invalid request"


class UnauthorizedError(SessionServiceError):
    status_code = 401
    default_detail = "Authorization required"


class NotFoundError(SessionServiceError):
    status_code = 404
    default_detail = "Session not found or access denied"


class ProviderUnavailable(SessionServiceError):
    """An external provider is unconfigured, unreachable or returned unusable data.

    The analysis orchestrator absorbs it; only conversation lookups surface it.
    """

    status_code = 503
    default_detail = "Provider unavailable"


class StoreError(SessionServiceError):
    status_code = 500
    default_detail = "Storage operation failed"
