"""Rich output helpers for the aula CLI."""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from rich.console import Console
from rich.status import Status

# Shared console instance
console = Console()


@contextmanager
def login_progress(qr_file: Path | None = None) -> Generator[Status, None, None]:
    """Spinner shown while the user completes MitID in the Chrome window.

    Usage:
        with login_progress(qr_file) as status:
            result = await capture.poll()
            status.update(waiting_message(qr_file, refreshed=True))

    Args:
        qr_file: Where the QR screenshot is written, shown in the message

    Yields:
        Rich Status object for updating the message
    """
    with console.status(waiting_message(qr_file), spinner="dots") as status:
        yield status


def waiting_message(qr_file: Path | None, refreshed: bool = False) -> str:
    prefix = "QR code refreshed" if refreshed else "Waiting for MitID login"
    if qr_file is None:
        return f"[bold blue]{prefix}..."
    return f"[bold blue]{prefix} [dim]({qr_file})[/dim]..."


def _print(symbol: str, style: str, message: str) -> None:
    console.print(f"[{style}]{symbol}[/{style}] {message}")


def print_success(message: str) -> None:
    _print("✓", "green", message)


def print_error(message: str) -> None:
    _print("✗", "red", message)


def print_warning(message: str) -> None:
    _print("!", "yellow", message)


def print_info(message: str) -> None:
    _print("i", "blue", message)
