"""MCP server module for aula-mcp.

This module provides an MCP (Model Context Protocol) server that exposes
the Aula MitID login and Aula read operations as tools for AI agents.
"""

from aula_mcp.mcp.server import main, mcp

__all__ = ["mcp", "main"]
