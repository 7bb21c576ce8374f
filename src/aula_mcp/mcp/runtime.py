"""Process-wide authentication state for the MCP server.

One ``AuthRuntime`` lives for the lifetime of the server process. It owns
the session store, the active API client, the (single) MitID login window
and the keepalive scheduler, and exposes the three operations the auth
tools need: start a login, check on it, report the session status.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from aula_mcp.api.client import AulaClient
from aula_mcp.auth.constants import CHECK_AUTH_TIMEOUT_MS
from aula_mcp.auth.exceptions import NoLoginInProgressError, SessionAlreadyOpenError
from aula_mcp.auth.keepalive import KeepaliveScheduler
from aula_mcp.auth.qr_capture import Authenticated, BrowserClosed, PollResult, QRCaptureSession
from aula_mcp.auth.session_store import SessionStatus, SessionStore
from aula_mcp.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginStarted:
    """A login window is open; ``screenshot`` shows the MitID QR code."""

    screenshot: str


@dataclass(frozen=True)
class AlreadyAuthenticated:
    """The stored session still works."""

    session_age: str | None


class AuthRuntime:
    """Owns the session store, API client, login window and keepalive."""

    def __init__(
        self,
        store: SessionStore | None = None,
        settings: Settings | None = None,
        client_factory: Callable[[SessionStore], AulaClient] | None = None,
        capture_factory: Callable[[SessionStore], QRCaptureSession] | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or SessionStore(self.settings.session_file)
        self._client_factory = client_factory or (
            lambda store: AulaClient(store, settings=self.settings)
        )
        self._capture_factory = capture_factory or (
            lambda store: QRCaptureSession(store, settings=self.settings)
        )
        self.client: AulaClient | None = None
        self.capture: QRCaptureSession | None = None
        self._closing: set[asyncio.Task] = set()
        self.keepalive = KeepaliveScheduler(
            self.store,
            get_client=lambda: self.client,
            on_session_lost=self._drop_client,
            interval_minutes=self.settings.ping_interval_minutes,
        )

    def _drop_client(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            task = asyncio.get_running_loop().create_task(client.aclose())
            self._closing.add(task)
            task.add_done_callback(self._client_closed)

    def _client_closed(self, task: asyncio.Task) -> None:
        self._closing.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Closing the dropped Aula client failed: {task.exception()}")

    async def init_client(self) -> AulaClient:
        """Create an API client on the stored session and start the keepalive."""
        client = self._client_factory(self.store)
        try:
            await client.login()
        except Exception:
            await client.aclose()
            raise

        if self.settings.child_name and not client.select_child(self.settings.child_name):
            logger.warning(f"Child '{self.settings.child_name}' not found, using default")
        if self.settings.institution_name and not client.select_institution(
            self.settings.institution_name
        ):
            logger.warning(
                f"Institution '{self.settings.institution_name}' not found, using default"
            )

        old, self.client = self.client, client
        if old is not None and old is not client:
            await old.aclose()
        self.keepalive.start()
        return client

    async def start_login(self) -> LoginStarted | AlreadyAuthenticated:
        """Reuse the stored session if it still works, otherwise open a login window.

        Raises:
            SessionAlreadyOpenError: If a login window is already open
            ConfigurationError: If no browser executable is configured
            NavigationError: If the login page could not be loaded
        """
        if self.store.is_available():
            try:
                client = self.client or await self.init_client()
                await client.ping()
                self.store.touch()
                return AlreadyAuthenticated(session_age=self.store.age())
            except Exception as e:
                logger.info(f"Stored session no longer works: {e}")
                self.store.mark_expired()
                self.keepalive.stop()
                await self._close_client()

        if self.capture is not None and self.capture.is_open:
            raise SessionAlreadyOpenError()

        capture = self._capture_factory(self.store)
        self.capture = capture
        self.store.mark_reauth_pending()
        try:
            screenshot = await capture.open()
        except Exception:
            self.capture = None
            self.store.mark_expired()
            raise
        return LoginStarted(screenshot=screenshot)

    async def check_login(self, timeout_ms: int = CHECK_AUTH_TIMEOUT_MS) -> PollResult:
        """Poll the open login window.

        Raises:
            NoLoginInProgressError: If no login window is open
        """
        capture = self.capture
        if capture is None or not capture.is_open:
            raise NoLoginInProgressError()

        result = await capture.poll(timeout_ms)
        if isinstance(result, Authenticated):
            self.capture = None
            try:
                await self.init_client()
            except Exception as e:
                # The cookie is stored either way; self.client stays None
                logger.warning(f"Session captured but client login failed: {e}")
        elif isinstance(result, BrowserClosed):
            self.capture = None
            self.store.mark_expired()
        return result

    async def session_status(self) -> dict:
        """Report whether the stored session is usable, pinging Aula if possible."""
        session = self.store.get_session()
        if session is None or not session.credential:
            return {"authenticated": False, "reason": "No session stored"}

        if session.status != SessionStatus.ACTIVE:
            return {
                "authenticated": False,
                "reason": f"Session status: {session.status.value}",
                "sessionAge": self.store.age(),
            }

        if self.client is None:
            return {
                "authenticated": False,
                "reason": "Session file exists but Aula client not initialized. Call aula_login.",
                "sessionAge": self.store.age(),
            }

        try:
            await self.client.ping()
        except Exception as e:
            logger.info(f"Session status ping failed: {e}")
            self.store.mark_expired()
            return {
                "authenticated": False,
                "reason": "Session expired (ping failed)",
                "sessionAge": self.store.age(),
            }

        self.store.touch()
        refreshed = self.store.get_session() or session
        return {
            "authenticated": True,
            "sessionAge": self.store.age(),
            "lastChecked": refreshed.last_checked_at.isoformat(),
        }

    async def restore(self) -> bool:
        """Try to resume a stored session at startup."""
        if not self.store.is_available():
            return False
        try:
            await self.init_client()
        except Exception as e:
            logger.info(f"Stored session could not be restored: {e}")
            self.store.mark_expired()
            return False
        logger.info("Restored stored Aula session")
        return True

    async def logout(self) -> bool:
        """Forget the session and close everything that uses it."""
        await self._close_capture()
        self.keepalive.stop()
        await self._close_client()
        return self.store.clear()

    async def shutdown(self) -> None:
        """Stop the keepalive and close the login window and client."""
        self.keepalive.stop()
        await self._close_capture()
        await self._close_client()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def _close_capture(self) -> None:
        if self.capture is not None:
            await self.capture.close()
            self.capture = None

    async def _close_client(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await client.aclose()
