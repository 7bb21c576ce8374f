"""Tests for API client."""

import json
from datetime import date, datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest
import respx

from aula_mcp.api.client import AulaClient, _is_after, _parse_retry_after
from aula_mcp.api.exceptions import (
    AulaAPIError,
    NotAuthenticatedError,
    RateLimitError,
    SessionExpiredError,
)

BASE = "https://www.aula.dk/api/v19/"


def ok(data) -> httpx.Response:
    """Aula's standard response envelope."""
    return httpx.Response(200, json={"status": {"code": 0, "message": "OK"}, "data": data})


@pytest.fixture
def profile_response():
    return {
        "profiles": [
            {
                "profileId": 501,
                "displayName": "Mette Hansen",
                "portalRole": "guardian",
                "institutionProfiles": [
                    {"id": 9001, "institutionCode": "101001", "institutionName": "Skovbo Skole"}
                ],
                "children": [
                    {
                        "id": 7001,
                        "profileId": 601,
                        "name": "Emma Hansen",
                        "institutionProfile": {"institutionName": "Skovbo Skole"},
                    },
                    {
                        "id": 7002,
                        "profileId": 602,
                        "name": "Oliver Hansen",
                        "institutionProfile": {"institutionName": "Bakkegården Børnehave"},
                    },
                ],
            }
        ]
    }


@pytest.fixture
def logged_in_store(store):
    store.set("sess-123")
    return store


@pytest.fixture
def client(logged_in_store, settings):
    return AulaClient(logged_in_store, settings=settings)


class TestAulaClient:
    """Tests for AulaClient."""

    @pytest.mark.asyncio
    async def test_context_manager(self, client):
        """Client can be used as async context manager."""
        assert client._client is None

        async with client:
            assert client._client is not None

        assert client._client is None

    def test_base_url(self, client):
        assert client.base_url == BASE

    @pytest.mark.asyncio
    @respx.mock
    async def test_login(self, client, profile_response):
        """Login loads the profile and selects the first child and institution."""
        route = respx.get(BASE, params={"method": "profiles.getProfilesByLogin"}).mock(
            return_value=ok(profile_response)
        )

        async with client:
            profile = await client.login()

        assert profile.display_name == "Mette Hansen"
        assert [c.name for c in client.children] == ["Emma Hansen", "Oliver Hansen"]
        assert client.current_child.id == 7001
        assert client.current_institution.institution_name == "Skovbo Skole"
        assert "PHPSESSID=sess-123" in route.calls[0].request.headers["cookie"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_without_profiles(self, client):
        respx.get(BASE, params={"method": "profiles.getProfilesByLogin"}).mock(
            return_value=ok({"profiles": []})
        )

        with pytest.raises(AulaAPIError, match="No profiles"):
            async with client:
                await client.login()

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping(self, client):
        route = respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=ok(None)
        )

        async with client:
            await client.ping()

        assert route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_uses_latest_stored_cookie(self, client, logged_in_store):
        """A cookie replaced in the store is picked up on the next request."""
        route = respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=ok(None)
        )

        async with client:
            await client.ping()
            logged_in_store.set("sess-456")
            await client.ping()

        assert "PHPSESSID=sess-456" in route.calls[1].request.headers["cookie"]
        assert "sess-123" not in route.calls[1].request.headers["cookie"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_csrf_token_is_echoed(self, client):
        """The csrfp-token cookie set by Aula is sent back as a header."""
        route = respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={"status": {"code": 0}, "data": None},
                    headers={"set-cookie": "Csrfp-Token=tok-1; Path=/"},
                ),
                ok(None),
            ]
        )

        async with client:
            await client.ping()
            await client.ping()

        assert "csrfp-token" not in route.calls[0].request.headers
        assert route.calls[1].request.headers["csrfp-token"] == "tok-1"

    @pytest.mark.asyncio
    async def test_not_authenticated(self, store, settings):
        """No stored cookie fails before any request is sent."""
        with pytest.raises(NotAuthenticatedError):
            async with AulaClient(store, settings=settings) as client:
                await client.ping()

    @pytest.mark.asyncio
    @respx.mock
    async def test_session_expired_status(self, client):
        """Handle 403 response."""
        respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=httpx.Response(403, text="Forbidden")
        )

        with pytest.raises(SessionExpiredError) as exc_info:
            async with client:
                await client.ping()

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    @respx.mock
    async def test_session_expired_body_code(self, client):
        """Aula reports an invalid session as status code 448 inside a 200."""
        respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=httpx.Response(
                200, json={"status": {"code": 448, "message": "Session invalid"}, "data": None}
            )
        )

        with pytest.raises(SessionExpiredError):
            async with client:
                await client.ping()

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_body_code(self, client):
        respx.get(BASE, params={"method": "messaging.getThreads"}).mock(
            return_value=httpx.Response(
                200, json={"status": {"code": 12, "message": "Bad input"}, "data": None}
            )
        )

        with pytest.raises(AulaAPIError, match="Bad input"):
            async with client:
                await client.get_threads()

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_error(self, client):
        """Handle 429 response."""
        respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "120"})
        )

        with pytest.raises(RateLimitError) as exc_info:
            async with client:
                await client.ping()

        assert exc_info.value.retry_after == 120

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_with_http_date(self, client):
        """A Retry-After date is not mistaken for bad input."""
        respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=httpx.Response(
                429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
            )
        )

        with pytest.raises(RateLimitError) as exc_info:
            async with client:
                await client.ping()

        assert exc_info.value.retry_after == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_generic_api_error(self, client):
        """Handle other error responses."""
        respx.post(BASE, params={"method": "session.keepAlive"}).mock(
            return_value=httpx.Response(500, text="Internal Server Error")
        )

        with pytest.raises(AulaAPIError) as exc_info:
            async with client:
                await client.ping()

        assert exc_info.value.status_code == 500


class TestSelection:
    """Tests for child and institution selection."""

    @pytest.mark.asyncio
    async def test_select_child(self, client, profile_response):
        with respx.mock:
            respx.get(BASE, params={"method": "profiles.getProfilesByLogin"}).mock(
                return_value=ok(profile_response)
            )
            async with client:
                await client.login()

        assert client.select_child("oliver") is True
        assert client.current_child.id == 7002
        assert client.select_child("Nobody") is False
        assert client.current_child.id == 7002

    @pytest.mark.asyncio
    async def test_select_institution(self, client, profile_response):
        with respx.mock:
            respx.get(BASE, params={"method": "profiles.getProfilesByLogin"}).mock(
                return_value=ok(profile_response)
            )
            async with client:
                await client.login()

        assert client.select_institution("bakkegården") is True
        assert client.current_institution.institution_name == "Bakkegården Børnehave"
        assert client.select_institution("Unknown Skole") is False

    @pytest.mark.asyncio
    async def test_daily_overview_requires_child(self, client):
        with pytest.raises(AulaAPIError, match="No child selected"):
            await client.get_daily_overview()


class TestData:
    """Tests for the data endpoints."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_filtered_by_age(self, client):
        now = datetime.now().astimezone()
        posts = [
            {"id": 1, "title": "Udflugt", "timestamp": (now - timedelta(days=1)).isoformat()},
            {"id": 2, "title": "Gammel", "timestamp": (now - timedelta(days=10)).isoformat()},
            {"id": 3, "title": "Uden dato"},
        ]
        respx.get(BASE, params={"method": "posts.getAllPosts"}).mock(
            return_value=ok({"posts": posts})
        )

        async with client:
            result = await client.get_posts(days_back=3, limit=10)

        assert [p["id"] for p in result] == [1, 3]

    @pytest.mark.asyncio
    @respx.mock
    async def test_threads(self, client):
        route = respx.get(BASE, params={"method": "messaging.getThreads"}).mock(
            return_value=ok({"threads": [{"id": 11, "subject": "Forældremøde"}]})
        )

        async with client:
            threads = await client.get_threads(page=2)

        assert threads == [{"id": 11, "subject": "Forældremøde"}]
        assert route.calls[0].request.url.params["page"] == "2"

    @pytest.mark.asyncio
    @respx.mock
    async def test_calendar_events(self, client):
        route = respx.post(
            BASE, params={"method": "calendar.getEventsByProfileIdsAndResourceIds"}
        ).mock(return_value=ok([{"id": 1, "title": "Skolefoto"}]))

        async with client:
            events = await client.get_calendar_events(date(2026, 3, 2), date(2026, 3, 8))

        assert events == [{"id": 1, "title": "Skolefoto"}]
        body = json.loads(route.calls[0].request.content)
        assert body["start"].startswith("2026-03-02")
        assert body["end"].startswith("2026-03-08 23:59:59")

    @pytest.mark.asyncio
    @respx.mock
    async def test_daily_overview_for_child(self, client):
        route = respx.get(BASE, params={"method": "presence.getDailyOverview"}).mock(
            return_value=ok([{"status": 1}])
        )

        async with client:
            overview = await client.get_daily_overview(child_id=7001)

        assert overview == [{"status": 1}]
        assert route.calls[0].request.url.params["childIds[]"] == "7001"


class TestIsAfter:
    def test_missing_timestamp_counts_as_recent(self):
        assert _is_after(None, datetime.now().astimezone())

    def test_unparseable_timestamp_counts_as_recent(self):
        assert _is_after("i går", datetime.now().astimezone())

    def test_old_timestamp(self):
        cutoff = datetime(2026, 3, 1).astimezone()
        assert not _is_after("2026-02-01T10:00:00+00:00", cutoff)


class TestParseRetryAfter:
    def test_seconds(self):
        assert _parse_retry_after("120") == 120

    def test_missing(self):
        assert _parse_retry_after(None) == 60

    def test_garbage(self):
        assert _parse_retry_after("soon") == 60

    def test_future_date(self):
        when = datetime.now(timezone.utc) + timedelta(minutes=5)

        assert 240 <= _parse_retry_after(format_datetime(when, usegmt=True)) <= 300
