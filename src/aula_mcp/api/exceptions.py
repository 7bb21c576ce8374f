"""Exceptions for the Aula API."""


class AulaAPIError(Exception):
    """Base exception for Aula API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(AulaAPIError):
    """The session cookie is no longer accepted by Aula."""


class RateLimitError(AulaAPIError):
    """Rate limit exceeded."""

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


class NotAuthenticatedError(AulaAPIError):
    """No session cookie is available."""

    def __init__(self, message: str = "Not authenticated. Call aula_login first."):
        super().__init__(message)
