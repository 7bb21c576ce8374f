"""Background keepalive for the Aula session.

Aula drops idle PHP sessions after a while. The scheduler pings the API at
a fixed interval so a captured session stays usable for as long as the
server runs. After three failed pings in a row the session is treated as
dead: it is marked expired, the client is dropped and the scheduler stops.
"""

import asyncio
import logging
from typing import Callable, Protocol

from aula_mcp.auth.session_store import SessionStore
from aula_mcp.config import get_settings

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 3


class PingableClient(Protocol):
    async def ping(self) -> None: ...


class KeepaliveScheduler:
    """Recurring ``ping()`` against the active API client."""

    def __init__(
        self,
        store: SessionStore,
        get_client: Callable[[], PingableClient | None],
        on_session_lost: Callable[[], None],
        interval_minutes: float | None = None,
    ):
        """Initialize the scheduler.

        Args:
            store: Session store to touch or expire
            get_client: Returns the active client, or None when logged out
            on_session_lost: Called after the third failed ping so the owner
                can drop its client reference
            interval_minutes: Minutes between pings (default: from settings)
        """
        self.store = store
        self._get_client = get_client
        self._on_session_lost = on_session_lost
        if interval_minutes is None:
            interval_minutes = get_settings().ping_interval_minutes
        self.interval_seconds = interval_minutes * 60
        self._task: asyncio.Task | None = None
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def start(self) -> None:
        """Start pinging. Does nothing if already running."""
        if self.is_running:
            return
        self._failures = 0
        self._task = asyncio.get_running_loop().create_task(self._run(), name="aula-keepalive")
        logger.info(f"Keepalive started (every {self.interval_seconds / 60:g} min)")

    def stop(self) -> None:
        """Stop pinging. Safe to call when not running."""
        task, self._task = self._task, None
        if task is None:
            return
        if task is not asyncio.current_task():
            task.cancel()
        logger.info("Keepalive stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.tick()
            if self._task is None:
                return

    async def tick(self) -> None:
        """Ping once and update the failure count."""
        client = self._get_client()
        if client is None:
            return

        try:
            await client.ping()
        except Exception as e:
            self._failures += 1
            logger.warning(
                f"Keepalive ping failed ({self._failures}/{MAX_CONSECUTIVE_FAILURES}): {e}"
            )
            if self._failures >= MAX_CONSECUTIVE_FAILURES:
                logger.warning("Session considered dead after repeated ping failures")
                self.store.mark_expired()
                self._on_session_lost()
                self.stop()
            return

        self._failures = 0
        self.store.touch()
        logger.debug("Keepalive ping ok")
