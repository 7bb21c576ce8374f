"""API module for aula-mcp."""

from aula_mcp.api.client import AulaClient
from aula_mcp.api.exceptions import (
    AulaAPIError,
    NotAuthenticatedError,
    RateLimitError,
    SessionExpiredError,
)
from aula_mcp.api.models import AulaModel, Child, Institution, Profile

__all__ = [
    # Client
    "AulaClient",
    # Exceptions
    "AulaAPIError",
    "NotAuthenticatedError",
    "RateLimitError",
    "SessionExpiredError",
    # Models
    "AulaModel",
    "Child",
    "Institution",
    "Profile",
]
