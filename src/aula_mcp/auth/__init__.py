"""Authentication module for aula-mcp."""

from aula_mcp.auth.exceptions import (
    AuthError,
    ConfigurationError,
    NavigationError,
    NoLoginInProgressError,
    SessionAlreadyOpenError,
)
from aula_mcp.auth.keepalive import KeepaliveScheduler
from aula_mcp.auth.qr_capture import (
    Authenticated,
    BrowserClosed,
    LoginDetector,
    PollResult,
    QRCaptureSession,
    QRRefreshed,
    Waiting,
)
from aula_mcp.auth.session_store import (
    SessionIdProvider,
    SessionStatus,
    SessionStore,
    StoredSession,
)

__all__ = [
    # Session storage
    "SessionIdProvider",
    "SessionStatus",
    "SessionStore",
    "StoredSession",
    # Browser capture
    "QRCaptureSession",
    "LoginDetector",
    "PollResult",
    "Authenticated",
    "Waiting",
    "QRRefreshed",
    "BrowserClosed",
    # Keepalive
    "KeepaliveScheduler",
    # Errors
    "AuthError",
    "ConfigurationError",
    "NavigationError",
    "SessionAlreadyOpenError",
    "NoLoginInProgressError",
]
