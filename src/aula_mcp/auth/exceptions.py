"""Exceptions raised by the MitID capture flow."""


class AuthError(Exception):
    """Base exception for authentication errors."""


class ConfigurationError(AuthError):
    """A required setting (e.g. the browser executable) is missing."""


class NavigationError(AuthError):
    """The login page could not be opened or loaded in time."""


class SessionAlreadyOpenError(AuthError):
    """A login window is already open for this process."""

    def __init__(self, message: str = "A login window is already open. Call aula_check_auth."):
        super().__init__(message)


class NoLoginInProgressError(AuthError):
    """Polling was requested without an open login window."""

    def __init__(self, message: str = "No authentication flow in progress. Call aula_login first."):
        super().__init__(message)
