"""File-based storage for the captured Aula session cookie.

The store holds a single record (one child, one service) in
``<data_dir>/session.json`` so the session survives server restarts.
It also acts as the session-id provider handed to the API client.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, Self

from aula_mcp.auth.constants import (
    SESSION_LOCK_FILENAME,
    ensure_private_dir,
    secure_file,
    session_file_lock,
)
from aula_mcp.config import get_settings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now()


class SessionStatus(str, Enum):
    """Lifecycle of the stored session."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REAUTH_PENDING = "reauth_pending"


class SessionIdProvider(Protocol):
    """Supplies the session cookie to the API client."""

    def get(self) -> str: ...

    def set(self, credential: str) -> None: ...


@dataclass
class StoredSession:
    """Persisted session record."""

    credential: str
    created_at: datetime
    last_checked_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return bool(self.credential) and self.status == SessionStatus.ACTIVE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "credential": self.credential,
            "created_at": self.created_at.isoformat(),
            "last_checked_at": self.last_checked_at.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create from dictionary.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a timestamp or status is malformed
        """
        return cls(
            credential=data["credential"],
            created_at=datetime.fromisoformat(data["created_at"]),
            last_checked_at=datetime.fromisoformat(data["last_checked_at"]),
            status=SessionStatus(data["status"]),
        )


def format_age(delta_seconds: float) -> str:
    """Format an elapsed time as ``"2h 5m"`` or ``"5m"``."""
    total_minutes = max(0, int(delta_seconds // 60))
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class SessionStore:
    """Single-record session store with atomic writes."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_settings().session_file
        ensure_private_dir(self.path.parent)

    @property
    def lock_path(self) -> Path:
        return self.path.parent / SESSION_LOCK_FILENAME

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    # --- provider interface ---

    def get(self) -> str:
        """Return the stored cookie value, or "" if none is stored."""
        session = self.read()
        return session.credential if session else ""

    def set(self, credential: str) -> None:
        """Store a freshly captured cookie and mark the session active.

        The first ``created_at`` is kept when a record already exists.
        """
        with session_file_lock(self.lock_path):
            current = self.read()
            now = _now()
            self._write(
                StoredSession(
                    credential=credential,
                    created_at=current.created_at if current else now,
                    last_checked_at=now,
                    status=SessionStatus.ACTIVE,
                )
            )
        logger.info("Session cookie stored")

    get_credential = get
    set_credential = set

    # --- helpers ---

    def get_session(self) -> StoredSession | None:
        """Return the stored record, or None."""
        return self.read()

    def is_available(self) -> bool:
        """True if a non-empty cookie is stored and the session is active."""
        session = self.read()
        return session is not None and session.is_active

    def touch(self) -> None:
        """Record a successful use of the session."""
        self._update(last_checked_at=_now())

    def mark_expired(self) -> None:
        """Mark the session as expired; a new login is required."""
        if self._update(status=SessionStatus.EXPIRED):
            logger.info("Session marked expired")

    def mark_reauth_pending(self) -> None:
        """Mark that a login flow is in progress (informational)."""
        self._update(status=SessionStatus.REAUTH_PENDING)

    def clear(self) -> bool:
        """Delete the stored record.

        Returns:
            True if a record was removed
        """
        with session_file_lock(self.lock_path):
            if self.path.exists():
                self.path.unlink()
                logger.info("Session record cleared")
                return True
        return False

    def age(self) -> str | None:
        """Human-readable time since the session was first captured."""
        session = self.read()
        if session is None:
            return None
        return format_age((_now() - session.created_at).total_seconds())

    # --- file I/O ---

    def read(self) -> StoredSession | None:
        """Read the record; a missing or corrupt file reads as no session."""
        try:
            if not self.path.exists():
                return None
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return StoredSession.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path.name}: {e}")
            return None

    def _update(self, **changes) -> bool:
        with session_file_lock(self.lock_path):
            current = self.read()
            if current is None:
                return False
            for name, value in changes.items():
                setattr(current, name, value)
            self._write(current)
        return True

    def _write(self, session: StoredSession) -> None:
        """Write via temp file + rename so a crash never leaves a partial record."""
        tmp_path = self.tmp_path
        try:
            tmp_path.write_text(json.dumps(session.to_dict(), indent=2), encoding="utf-8")
            secure_file(tmp_path)
            tmp_path.replace(self.path)
        except BaseException:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise
