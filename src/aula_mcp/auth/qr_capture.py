"""Visible-browser MitID login capture using Playwright.

Aula signs parents in through MitID, which cannot be automated: the user
has to click through the login page, type their MitID user id and scan a
QR code with the MitID app. This module opens a real Chrome window for
that, hands screenshots of the QR code back to the caller, and watches
the page until the ``PHPSESSID`` cookie shows up on a portal URL.

Flow:
    1. ``open()`` launches Chrome, loads the login page, returns a screenshot
    2. ``poll()`` is called repeatedly until it reports a terminal result
    3. ``refresh()`` reloads the page for a fresh QR code on demand
    4. ``close()`` shuts the browser down
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal

from playwright.async_api import async_playwright

from aula_mcp.auth.constants import (
    BROWSER_ARGS,
    COOKIE_POLL_INTERVAL_SEC,
    DEFAULT_POLL_TIMEOUT_MS,
    NAVIGATION_TIMEOUT_MS,
    QR_REFRESH_AFTER_SEC,
    QR_SETTLE_DELAY_MS,
    RELOAD_TIMEOUT_MS,
    VIEWPORT,
)
from aula_mcp.auth.exceptions import ConfigurationError, NavigationError, SessionAlreadyOpenError
from aula_mcp.auth.session_store import SessionStore
from aula_mcp.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authenticated:
    """Login completed; the cookie has been stored and the browser closed."""

    credential: str
    status: Literal["authenticated"] = field(default="authenticated", init=False)


@dataclass(frozen=True)
class Waiting:
    """Nothing happened before the poll timeout."""

    status: Literal["waiting"] = field(default="waiting", init=False)


@dataclass(frozen=True)
class QRRefreshed:
    """The login page was reloaded; ``screenshot`` holds the new QR code."""

    screenshot: str
    status: Literal["qr_refreshed"] = field(default="qr_refreshed", init=False)


@dataclass(frozen=True)
class BrowserClosed:
    """The login window is gone."""

    status: Literal["browser_closed"] = field(default="browser_closed", init=False)


PollResult = Authenticated | Waiting | QRRefreshed | BrowserClosed


@dataclass(frozen=True)
class LoginDetector:
    """Decides from the page URL whether the user reached the portal.

    A URL counts as logged in when it contains the portal marker, or the
    client-side route marker, or does not contain the login marker. A
    marker set to None disables its condition.
    """

    portal_marker: str | None = "/portal"
    route_marker: str | None = "#/"
    login_marker: str | None = "login"

    @classmethod
    def from_settings(cls, settings: Settings) -> "LoginDetector":
        return cls(
            portal_marker=settings.login_portal_marker,
            route_marker=settings.login_route_marker,
            login_marker=settings.login_marker,
        )

    def matches(self, url: str) -> bool:
        if self.portal_marker and self.portal_marker in url:
            return True
        if self.route_marker and self.route_marker in url:
            return True
        if self.login_marker and self.login_marker not in url:
            return True
        return False


class QRCaptureSession:
    """Owns one visible Chrome window for a single MitID login attempt."""

    def __init__(
        self,
        store: SessionStore,
        settings: Settings | None = None,
        detector: LoginDetector | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the capture session.

        Args:
            store: Where the captured cookie is written
            settings: Settings to use (defaults to the global settings)
            detector: Login URL heuristic (defaults to the configured markers)
            clock: Monotonic clock in seconds
            sleep: Coroutine used between polls
        """
        self.store = store
        self.settings = settings or get_settings()
        self.detector = detector or LoginDetector.from_settings(self.settings)
        self._clock = clock
        self._sleep = sleep
        self._playwright = None
        self._browser = None
        self._page = None
        self.last_refresh: float = 0.0

    @property
    def is_open(self) -> bool:
        return self._browser is not None and self._page is not None

    async def open(self) -> str:
        """Launch Chrome on the Aula login page and screenshot the QR code.

        Returns:
            Base64-encoded PNG of the browser viewport

        Raises:
            SessionAlreadyOpenError: If this session already has a window
            ConfigurationError: If no browser executable is configured
            NavigationError: If the browser or login page fails to load
        """
        if self.is_open:
            raise SessionAlreadyOpenError()

        executable = self.settings.browser_executable_path
        if not executable:
            raise ConfigurationError(
                "BROWSER_EXECUTABLE_PATH not set. Point it at your Chrome installation "
                "(environment variable or ~/.aula-mcp/config.yaml)."
            )

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                executable_path=str(executable),
                headless=False,
                args=BROWSER_ARGS,
            )
            self._page = await self._browser.new_page(viewport=VIEWPORT)

            logger.info(f"Opening login page {self.settings.login_url}")
            await self._page.goto(
                self.settings.login_url,
                wait_until="networkidle",
                timeout=NAVIGATION_TIMEOUT_MS,
            )
            self.last_refresh = self._clock()

            # Give the MitID QR a moment to render
            await self._page.wait_for_timeout(QR_SETTLE_DELAY_MS)
            return await self._take_screenshot()
        except Exception as e:
            await self.close()
            raise NavigationError(f"Could not open the Aula login page: {e}") from e

    async def poll(self, timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS) -> PollResult:
        """Wait up to ``timeout_ms`` for the login to finish.

        Each tick checks, in order: window closed, session cookie on a
        portal URL, stale QR code. Transient page errors are ignored and
        retried on the next tick.
        """
        if not self.is_open:
            return BrowserClosed()

        deadline = self._clock() + timeout_ms / 1000

        while self._clock() < deadline:
            if self._is_closed():
                logger.info("Login window was closed")
                await self.close()
                return BrowserClosed()

            credential = await self._find_session_cookie()
            if credential:
                self.store.set(credential)
                await self.close()
                logger.info("MitID login detected, session captured")
                return Authenticated(credential)

            if self._clock() - self.last_refresh > QR_REFRESH_AFTER_SEC:
                screenshot = await self.refresh()
                if screenshot is not None:
                    logger.info("QR code was stale, login page reloaded")
                    return QRRefreshed(screenshot)

            await self._sleep(COOKIE_POLL_INTERVAL_SEC)

        return Waiting()

    async def refresh(self) -> str | None:
        """Reload the login page for a fresh QR code.

        Returns:
            New screenshot, or None if no window is open or the reload failed
        """
        if not self.is_open:
            return None
        try:
            await self._page.reload(wait_until="networkidle", timeout=RELOAD_TIMEOUT_MS)
            self.last_refresh = self._clock()
            await self._page.wait_for_timeout(QR_SETTLE_DELAY_MS)
            return await self._take_screenshot()
        except Exception as e:
            logger.warning(f"Could not refresh login page: {e}")
            return None

    async def close(self) -> None:
        """Close the browser window. Safe to call more than once."""
        browser, playwright = self._browser, self._playwright
        self._release()
        try:
            if browser is not None:
                await browser.close()
        except Exception as e:
            logger.debug(f"Ignoring browser close error: {e}")
        try:
            if playwright is not None:
                await playwright.stop()
        except Exception as e:
            logger.debug(f"Ignoring playwright stop error: {e}")

    def _release(self) -> None:
        self._browser = None
        self._page = None
        self._playwright = None

    def _is_closed(self) -> bool:
        page, browser = self._page, self._browser
        if page is None or browser is None:
            return True
        try:
            return page.is_closed() or not browser.is_connected()
        except Exception:
            return True

    async def _find_session_cookie(self) -> str | None:
        """Return the session cookie once the page has left the login screens."""
        try:
            cookies = await self._page.context.cookies(self.settings.login_url)
            value = next(
                (c.get("value") for c in cookies if c.get("name") == self.settings.cookie_name),
                None,
            )
            if not value:
                return None
            if not self.detector.matches(self._page.url):
                return None
            return value
        except Exception as e:
            # Page might be navigating
            logger.debug(f"Cookie check failed, retrying: {e}")
            return None

    async def _take_screenshot(self) -> str:
        png = await self._page.screenshot(type="png", full_page=False)
        return base64.b64encode(png).decode("ascii")
