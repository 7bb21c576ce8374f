"""Authentication CLI commands."""

import asyncio
import base64
import time
from pathlib import Path
from typing import Annotated

import typer

from aula_mcp.api.client import AulaClient
from aula_mcp.api.exceptions import AulaAPIError
from aula_mcp.auth.constants import CHECK_AUTH_TIMEOUT_MS
from aula_mcp.auth.exceptions import ConfigurationError, NavigationError
from aula_mcp.auth.qr_capture import (
    Authenticated,
    BrowserClosed,
    PollResult,
    QRCaptureSession,
    QRRefreshed,
    Waiting,
)
from aula_mcp.auth.session_store import SessionStatus, SessionStore
from aula_mcp.cli.progress import (
    console,
    login_progress,
    print_error,
    print_info,
    print_success,
    print_warning,
    waiting_message,
)
from aula_mcp.config import get_settings

app = typer.Typer(help="Authentication commands")

DEFAULT_QR_FILE = Path("aula-qr.png")


def _write_qr(path: Path, screenshot: str) -> None:
    path.write_bytes(base64.b64decode(screenshot))


async def _run_login(store: SessionStore, qr_file: Path, timeout_seconds: int) -> PollResult:
    """Open the login window and poll until a terminal result or timeout."""
    capture = QRCaptureSession(store)
    screenshot = await capture.open()
    _write_qr(qr_file, screenshot)
    print_info(f"QR code saved to [cyan]{qr_file}[/cyan]")
    console.print("[dim]Complete the MitID login in the Chrome window.[/dim]")

    deadline = time.monotonic() + timeout_seconds
    try:
        with login_progress(qr_file) as status:
            while True:
                remaining_ms = int((deadline - time.monotonic()) * 1000)
                if remaining_ms <= 0:
                    return Waiting()

                result = await capture.poll(min(remaining_ms, CHECK_AUTH_TIMEOUT_MS))
                if isinstance(result, QRRefreshed):
                    _write_qr(qr_file, result.screenshot)
                    status.update(waiting_message(qr_file, refreshed=True))
                    continue
                if isinstance(result, Waiting):
                    continue
                return result
    finally:
        await capture.close()


async def _verify(store: SessionStore) -> str | None:
    """Load the profile with the stored cookie; returns the display name."""
    async with AulaClient(store) as client:
        profile = await client.login()
    return profile.display_name


async def _ping(store: SessionStore) -> None:
    async with AulaClient(store) as client:
        await client.ping()


@app.command("login")
def do_login(
    qr_file: Annotated[
        Path,
        typer.Option("--qr-file", "-o", help="Where to save the QR code screenshot"),
    ] = DEFAULT_QR_FILE,
    timeout: Annotated[
        int,
        typer.Option("--timeout", "-t", help="Seconds to wait for the MitID login"),
    ] = 600,
    verify: Annotated[
        bool,
        typer.Option("--verify/--no-verify", help="Check the captured session against Aula"),
    ] = True,
):
    """
    Log in to Aula with MitID.

    Opens a Chrome window on the Aula login page. Complete the MitID login
    there; the session cookie is stored for the MCP server to use.
    """
    store = SessionStore()

    try:
        result = asyncio.run(_run_login(store, qr_file, timeout))
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except NavigationError as e:
        print_error(f"Login failed: {e}")
        raise typer.Exit(1)

    if isinstance(result, BrowserClosed):
        print_warning("The login window was closed before login completed.")
        raise typer.Exit(1)
    if not isinstance(result, Authenticated):
        print_warning(f"No login detected within {timeout} seconds.")
        raise typer.Exit(1)

    print_success("Login complete. Session stored.")

    if verify:
        try:
            name = asyncio.run(_verify(store))
        except AulaAPIError as e:
            print_warning(f"Session stored, but Aula did not accept it yet: {e}")
            raise typer.Exit(1)
        if name:
            console.print(f"  User: [bold]{name}[/bold]")


@app.command()
def status(
    ping: Annotated[
        bool,
        typer.Option("--ping", help="Ping Aula to check the session is still alive"),
    ] = False,
):
    """Show the stored session status."""
    store = SessionStore()
    session = store.get_session()

    if session is None or not session.credential:
        console.print("[red]Not logged in[/red] - no session stored")
        console.print("\nLog in with: [cyan]aula login[/cyan]")
        raise typer.Exit(1)

    if session.status != SessionStatus.ACTIVE:
        console.print(f"[red]Session {session.status.value}[/red]")
        console.print(f"Session age: {store.age()}")
        console.print("\nLog in again with: [cyan]aula login[/cyan]")
        raise typer.Exit(1)

    if ping:
        try:
            asyncio.run(_ping(store))
        except AulaAPIError as e:
            store.mark_expired()
            print_error(f"Session expired (ping failed): {e}")
            raise typer.Exit(1)
        store.touch()
        session = store.get_session() or session

    console.print("[green]Logged in[/green]")
    console.print(f"Session age: [cyan]{store.age()}[/cyan]")
    console.print(f"[dim]Last checked: {session.last_checked_at.strftime('%Y-%m-%d %H:%M')}[/dim]")
    console.print(f"[dim]Data dir: {get_settings().data_dir}[/dim]")


@app.command("logout")
def do_logout():
    """Remove the stored session."""
    if SessionStore().clear():
        print_success("Logged out.")
    else:
        print_warning("No session found to remove.")
