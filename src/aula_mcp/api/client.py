"""Async HTTP client for the Aula API with retry logic.

The client never logs in by itself: it sends whatever ``PHPSESSID`` the
session-id provider returns, which is the cookie captured by the MitID
browser flow.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from aula_mcp.api.exceptions import (
    AulaAPIError,
    NotAuthenticatedError,
    RateLimitError,
    SessionExpiredError,
)
from aula_mcp.api.models import Child, Institution, Profile
from aula_mcp.auth.session_store import SessionIdProvider
from aula_mcp.config import Settings, get_settings

logger = logging.getLogger(__name__)

CSRF_COOKIE = "csrfp-token"
# Aula's "session expired / csrf mismatch" status code
SESSION_INVALID_CODE = 448


class AulaClient:
    """Async HTTP client for the Aula JSON API."""

    def __init__(
        self,
        provider: SessionIdProvider,
        settings: Settings | None = None,
        timeout: int | None = None,
    ):
        self.provider = provider
        self.settings = settings or get_settings()
        self._timeout = timeout or self.settings.timeout
        self._client: httpx.AsyncClient | None = None
        self.profile: Profile | None = None
        self.current_child: Child | None = None
        self.current_institution: Institution | None = None

    @property
    def base_url(self) -> str:
        return self.settings.api_base_url

    @property
    def children(self) -> list[Child]:
        return self.profile.children if self.profile else []

    @property
    def institutions(self) -> list[Institution]:
        return self.profile.institution_profiles if self.profile else []

    async def __aenter__(self) -> "AulaClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "aula-mcp/0.1.0",
                },
                timeout=self._timeout,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _prepare_cookies(self, client: httpx.AsyncClient) -> dict[str, str]:
        """Load the provider's session cookie into the jar; return extra headers."""
        session_id = self.provider.get()
        if not session_id:
            raise NotAuthenticatedError()

        client.cookies.delete(self.settings.cookie_name)
        client.cookies.set(self.settings.cookie_name, session_id)

        headers = {}
        for cookie in client.cookies.jar:
            if cookie.name.lower() == CSRF_COOKIE and cookie.value:
                headers[CSRF_COOKIE] = cookie.value
        return headers

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle API response, raising appropriate errors."""
        if response.status_code in (401, 403):
            raise SessionExpiredError("Aula session is no longer valid", response.status_code)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitError("Rate limit exceeded", retry_after)

        if response.status_code >= 400:
            # Log detailed error for debugging, but don't expose raw response to users
            logger.error(f"API error: {response.status_code} - {response.text}")
            raise AulaAPIError(
                f"API request failed ({response.status_code})",
                response.status_code,
            )

        if not response.content:
            return None

        payload = response.json()
        if not isinstance(payload, dict) or "status" not in payload:
            return payload

        status = payload.get("status") or {}
        code = status.get("code", 0)
        if code == SESSION_INVALID_CODE:
            raise SessionExpiredError("Aula session is no longer valid", code)
        if code not in (0, None):
            raise AulaAPIError(f"Aula error {code}: {status.get('message', 'unknown')}", code)
        return payload.get("data")

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(
        self,
        http_method: str,
        api_method: str,
        params: dict[str, Any] | None = None,
        **kwargs,
    ) -> Any:
        """Call ``?method=<api_method>`` with retry logic."""
        client = self._ensure_client()
        headers = self._prepare_cookies(client)
        query = {"method": api_method, **(params or {})}
        response = await client.request(http_method, "", params=query, headers=headers, **kwargs)
        return self._handle_response(response)

    # --- session ---

    async def login(self) -> Profile:
        """Load the guardian profile for the current session.

        Raises:
            NotAuthenticatedError: If no session cookie is stored
            SessionExpiredError: If Aula rejects the cookie
        """
        data = await self._request("GET", "profiles.getProfilesByLogin")
        profiles = (data or {}).get("profiles") or []
        if not profiles:
            raise AulaAPIError("No profiles returned for this login")

        self.profile = Profile.model_validate(profiles[0])
        self.current_child = self.children[0] if self.children else None
        self.current_institution = self.institutions[0] if self.institutions else None
        logger.info(
            f"Logged in as {self.profile.display_name or 'unknown'} "
            f"({len(self.children)} children)"
        )
        return self.profile

    async def ping(self) -> None:
        """Keep the session alive."""
        await self._request("POST", "session.keepAlive")

    def select_child(self, name: str) -> bool:
        """Select the current child by (partial, case-insensitive) name."""
        needle = name.lower()
        for child in self.children:
            if needle in child.name.lower():
                self.current_child = child
                return True
        return False

    def select_institution(self, name: str) -> bool:
        """Select the current institution by (partial, case-insensitive) name."""
        needle = name.lower()
        candidates = self.institutions + [
            c.institution_profile for c in self.children if c.institution_profile
        ]
        for institution in candidates:
            if institution.institution_name and needle in institution.institution_name.lower():
                self.current_institution = institution
                return True
        return False

    def _institution_profile_ids(self) -> list[int]:
        ids = [i.id for i in self.institutions if i.id is not None]
        ids.extend(c.id for c in self.children)
        return ids

    def _require_child(self, child_id: int | None) -> int:
        if child_id is not None:
            return child_id
        if self.current_child is None:
            raise AulaAPIError("No child selected. Re-authenticate with aula_login.")
        return self.current_child.id

    # --- data ---

    async def get_posts(self, days_back: int = 3, limit: int = 10) -> list[dict]:
        """Get recent posts, newest first, no older than ``days_back`` days."""
        data = await self._request(
            "GET",
            "posts.getAllPosts",
            params={
                "parent": "profile",
                "index": 0,
                "limit": limit,
                "institutionProfileIds[]": self._institution_profile_ids(),
            },
        )
        posts = (data or {}).get("posts", []) if isinstance(data, dict) else data or []
        cutoff = datetime.now().astimezone() - timedelta(days=days_back)
        return [p for p in posts if _is_after(p.get("timestamp"), cutoff)][:limit]

    async def get_threads(self, page: int = 0) -> list[dict]:
        """Get message threads, newest first."""
        data = await self._request(
            "GET",
            "messaging.getThreads",
            params={"sortOn": "date", "orderDirection": "desc", "page": page},
        )
        return (data or {}).get("threads", []) if isinstance(data, dict) else data or []

    async def get_thread_messages(self, thread_id: int, page: int = 0) -> dict:
        """Get the messages of one thread."""
        data = await self._request(
            "GET",
            "messaging.getMessagesForThread",
            params={"threadId": thread_id, "page": page},
        )
        return data or {}

    async def get_calendar_events(self, start: date, end: date) -> list[dict]:
        """Get calendar events between two dates (inclusive)."""
        data = await self._request(
            "POST",
            "calendar.getEventsByProfileIdsAndResourceIds",
            json={
                "instProfileIds": self._institution_profile_ids(),
                "resourceIds": [],
                "start": f"{start.isoformat()} 00:00:00.0000+00:00",
                "end": f"{end.isoformat()} 23:59:59.0000+00:00",
            },
        )
        return data or []

    async def get_daily_overview(self, child_id: int | None = None) -> Any:
        """Get today's presence overview for a child."""
        return await self._request(
            "GET",
            "presence.getDailyOverview",
            params={"childIds[]": [self._require_child(child_id)]},
        )

    async def get_gallery_albums(self, limit: int = 10) -> list[dict]:
        """Get the most recent gallery albums."""
        data = await self._request(
            "GET",
            "gallery.getAlbums",
            params={
                "index": 0,
                "limit": limit,
                "sortOn": "createdAt",
                "orderDirection": "desc",
                "filterBy": "all",
            },
        )
        return data or []


def _is_after(timestamp: str | None, cutoff: datetime) -> bool:
    """True if an ISO timestamp is at or after ``cutoff`` (unparseable counts as recent)."""
    if not timestamp:
        return True
    try:
        parsed = datetime.fromisoformat(timestamp)
    except ValueError:
        return True
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed >= cutoff


def _parse_retry_after(value: str | None, default: int = 60) -> int:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return default
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, int((when - datetime.now(timezone.utc)).total_seconds()))
