"""MCP server for the Aula school portal.

This server exposes the MitID login flow and a handful of Aula read
operations as MCP tools for Claude and other AI agents.

Usage:
    # Run the server
    aula-mcp

    # Or via the CLI
    aula serve

    # Test with MCP dev tools
    mcp dev src/aula_mcp/mcp/server.py
"""

import asyncio
import base64
import json
import logging
import signal
import sys
from datetime import date, timedelta
from functools import wraps
from typing import Callable, TypeVar

from mcp.server.fastmcp import FastMCP, Image

from aula_mcp.api.client import AulaClient
from aula_mcp.api.exceptions import (
    AulaAPIError,
    NotAuthenticatedError,
    RateLimitError,
    SessionExpiredError,
)
from aula_mcp.auth.exceptions import (
    ConfigurationError,
    NavigationError,
    NoLoginInProgressError,
    SessionAlreadyOpenError,
)
from aula_mcp.auth.qr_capture import Authenticated, BrowserClosed, QRRefreshed
from aula_mcp.config import get_settings
from aula_mcp.mcp.runtime import AlreadyAuthenticated, AuthRuntime

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)

LOGIN_RESOLUTION = {
    "action": "login_required",
    "user_instruction": "Call aula_login and scan the MitID QR code.",
}

_runtime: AuthRuntime | None = None


def get_runtime() -> AuthRuntime:
    """Get or create the process-wide auth runtime."""
    global _runtime
    if _runtime is None:
        _runtime = AuthRuntime()
    return _runtime


def reset_runtime(runtime: AuthRuntime | None = None) -> None:
    """Replace the process-wide runtime (useful for testing)."""
    global _runtime
    _runtime = runtime


def mcp_error_handler(f: F) -> F:
    """Decorator to handle common errors in MCP tools.

    Converts auth, API and validation errors into structured error
    responses the agent can act on.
    """

    @wraps(f)
    async def wrapper(*args, **kwargs):
        try:
            return await f(*args, **kwargs)
        except ConfigurationError as e:
            return {
                "success": False,
                "error_type": "configuration_error",
                "message": str(e),
                "resolution": {
                    "action": "fix_config",
                    "user_instruction": "Set BROWSER_EXECUTABLE_PATH to your Chrome executable.",
                },
            }
        except NavigationError as e:
            return {
                "success": False,
                "error_type": "navigation_error",
                "message": f"Failed to start login flow: {e}",
                "resolution": {"action": "retry", "user_instruction": "Call aula_login again."},
            }
        except (SessionAlreadyOpenError, NoLoginInProgressError) as e:
            return {"success": False, "error_type": "login_state", "message": str(e)}
        except SessionExpiredError:
            get_runtime().store.mark_expired()
            return {
                "success": False,
                "error_type": "auth_error",
                "message": "Aula session expired",
                "resolution": LOGIN_RESOLUTION,
            }
        except NotAuthenticatedError as e:
            return {
                "success": False,
                "error_type": "auth_error",
                "message": str(e),
                "resolution": LOGIN_RESOLUTION,
            }
        except RateLimitError as e:
            return {
                "success": False,
                "error_type": "rate_limit",
                "message": str(e),
                "retry_after": e.retry_after,
            }
        except AulaAPIError as e:
            return {"success": False, "error_type": "api_error", "message": str(e)}
        except ValueError as e:
            return {
                "success": False,
                "error_type": "validation_error",
                "message": str(e),
                "resolution": {
                    "action": "fix_input",
                    "user_instruction": "Check the input parameters and try again.",
                },
            }
        except Exception:
            logger.exception(f"MCP tool error in {f.__name__}")
            return {
                "success": False,
                "error_type": "internal_error",
                "message": "An unexpected error occurred",
            }

    return wrapper  # type: ignore


def _require_client() -> AulaClient:
    client = get_runtime().client
    if client is None:
        raise NotAuthenticatedError()
    return client


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}")


def _qr_image(screenshot: str) -> Image:
    return Image(data=base64.b64decode(screenshot), format="png")


# Initialize MCP server
mcp = FastMCP(
    name="aula",
    instructions=(
        "Aula - Danish school portal for parents. Call aula_login first; it opens a "
        "Chrome window with a MitID QR code. Then call aula_check_auth repeatedly until "
        "it reports success. Aula content is in Danish."
    ),
)


# -----------------------------------------------------------------------------
# MCP Tools - Authentication
# -----------------------------------------------------------------------------


@mcp.tool()
@mcp_error_handler
async def aula_login():
    """
    Start Aula authentication.

    If a valid session exists, confirms it. Otherwise opens a Chrome window
    with the MitID login and returns a screenshot of the QR code for the
    user to scan with the MitID app.
    """
    result = await get_runtime().start_login()

    if isinstance(result, AlreadyAuthenticated):
        return (
            f"Already authenticated. Session age: {result.session_age or 'unknown'}. "
            "You can now use any Aula data tools."
        )

    return [
        "A Chrome window has opened with the Aula/MitID login page. The user needs to "
        "complete a few manual steps (click login, enter MitID user id, then scan the QR "
        "code with the MitID app). IMPORTANT: Immediately call aula_check_auth now "
        "WITHOUT waiting for the user to message you. Keep calling aula_check_auth until "
        'it returns "authenticated" or "browser_closed".',
        _qr_image(result.screenshot),
    ]


@mcp.tool()
@mcp_error_handler
async def aula_check_auth():
    """
    Check if the MitID QR code was scanned and authentication completed.

    Call this after aula_login. May return a refreshed QR screenshot if the
    previous one expired.
    """
    runtime = get_runtime()
    result = await runtime.check_login()

    if isinstance(result, Authenticated):
        if runtime.client is None:
            return (
                "Session captured but failed to initialize the Aula client. The session "
                "may still be valid - try calling aula_session_status."
            )
        return (
            "Authentication successful! Session captured and stored. "
            "You can now use any Aula data tools."
        )

    if isinstance(result, QRRefreshed):
        return [
            "The QR code was refreshed (the previous one expired). Here is the updated "
            "QR. IMPORTANT: Call aula_check_auth again immediately - do NOT wait for a "
            "user message.",
            _qr_image(result.screenshot),
        ]

    if isinstance(result, BrowserClosed):
        return (
            "The authentication browser window was closed. "
            "Call aula_login to start a new authentication flow."
        )

    return (
        "Still waiting for the user to complete authentication in the browser. "
        "IMPORTANT: Call aula_check_auth again immediately - do NOT wait for a user "
        "message. The user is busy with the MitID flow in the Chrome window."
    )


@mcp.tool()
@mcp_error_handler
async def aula_session_status() -> dict:
    """
    Check if the current Aula session is valid without starting an auth flow.

    Returns:
        - authenticated: boolean
        - reason: why not, when not authenticated
        - sessionAge: time since the session was captured
        - lastChecked: last successful use of the session
    """
    return await get_runtime().session_status()


@mcp.tool()
@mcp_error_handler
async def aula_logout() -> dict:
    """
    Forget the stored Aula session.

    Closes any open login window and stops the keepalive.
    """
    removed = await get_runtime().logout()
    return {"success": True, "session_removed": removed}


# -----------------------------------------------------------------------------
# MCP Tools - Aula data (pass-through)
# -----------------------------------------------------------------------------


@mcp.tool()
@mcp_error_handler
async def aula_get_children() -> dict:
    """
    List the children and institutions on this Aula login.

    Returns:
        Children with institution names, and which child is currently selected
    """
    client = _require_client()
    return {
        "success": True,
        "children": [
            {"id": c.id, "name": c.name, "institution": c.institution_name}
            for c in client.children
        ],
        "institutions": [
            {"id": i.id, "code": i.institution_code, "name": i.institution_name}
            for i in client.institutions
        ],
        "current_child": client.current_child.name if client.current_child else None,
    }


@mcp.tool()
@mcp_error_handler
async def aula_get_posts(days_back: int = 3, limit: int = 10) -> dict:
    """
    Get recent posts from Aula (announcements, updates from school).

    Content is in Danish.

    Args:
        days_back: Number of days to look back (1-30, default: 3)
        limit: Maximum number of posts (1-50, default: 10)
    """
    _check_range("days_back", days_back, 1, 30)
    _check_range("limit", limit, 1, 50)
    posts = await _require_client().get_posts(days_back=days_back, limit=limit)
    return {"success": True, "posts": posts, "total": len(posts)}


@mcp.tool()
@mcp_error_handler
async def aula_get_messages(page: int = 0) -> dict:
    """
    Get message threads from the Aula inbox, newest first.

    Args:
        page: Page number, starting at 0
    """
    _check_range("page", page, 0, 100)
    threads = await _require_client().get_threads(page=page)
    return {"success": True, "threads": threads, "page": page}


@mcp.tool()
@mcp_error_handler
async def aula_get_message_thread(thread_id: int, page: int = 0) -> dict:
    """
    Get the messages in one Aula message thread.

    Args:
        thread_id: Thread id from aula_get_messages
        page: Page number, starting at 0
    """
    thread = await _require_client().get_thread_messages(thread_id, page=page)
    return {"success": True, "thread": thread}


@mcp.tool()
@mcp_error_handler
async def aula_get_calendar(days_ahead: int = 7, days_back: int = 0) -> dict:
    """
    Get calendar events for the children.

    Args:
        days_ahead: Days to look ahead from today (0-60, default: 7)
        days_back: Days to look back from today (0-30, default: 0)
    """
    _check_range("days_ahead", days_ahead, 0, 60)
    _check_range("days_back", days_back, 0, 30)
    today = date.today()
    start = today - timedelta(days=days_back)
    end = today + timedelta(days=days_ahead)
    events = await _require_client().get_calendar_events(start, end)
    return {
        "success": True,
        "events": events,
        "start": start.isoformat(),
        "end": end.isoformat(),
    }


@mcp.tool()
@mcp_error_handler
async def aula_get_daily_overview() -> dict:
    """
    Get today's overview for the selected child (presence, check-in/out, notes).
    """
    client = _require_client()
    overview = await client.get_daily_overview()
    return {
        "success": True,
        "child": client.current_child.name if client.current_child else None,
        "overview": overview,
    }


@mcp.tool()
@mcp_error_handler
async def aula_get_gallery(limit: int = 10) -> dict:
    """
    Get the most recent photo albums from the Aula gallery.

    Args:
        limit: Maximum number of albums (1-50, default: 10)
    """
    _check_range("limit", limit, 1, 50)
    albums = await _require_client().get_gallery_albums(limit=limit)
    return {"success": True, "albums": albums, "total": len(albums)}


# -----------------------------------------------------------------------------
# MCP Resources
# -----------------------------------------------------------------------------


@mcp.resource("aula://status")
def get_auth_status() -> str:
    """
    Stored session status, without contacting Aula.
    """
    store = get_runtime().store
    session = store.get_session()
    if session is None:
        return "Not authenticated. Call aula_login."
    return json.dumps(
        {
            "status": session.status.value,
            "sessionAge": store.age(),
            "lastChecked": session.last_checked_at.isoformat(),
        }
    )


# -----------------------------------------------------------------------------
# Server Entry Point
# -----------------------------------------------------------------------------


async def serve() -> None:
    """Run the stdio server until EOF or SIGINT/SIGTERM, then clean up."""
    runtime = get_runtime()
    await runtime.restore()

    loop = asyncio.get_running_loop()
    server_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, server_task.cancel)

    try:
        await mcp.run_stdio_async()
    except asyncio.CancelledError:
        logger.info("Shutdown signal received")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await runtime.shutdown()


def main():
    """Run the MCP server."""
    # stdout carries the JSON-RPC stream
    logging.basicConfig(
        stream=sys.stderr,
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(serve())


if __name__ == "__main__":
    main()
