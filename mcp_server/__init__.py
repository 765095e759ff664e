"""MCP Server for goldsync

This package provides read-only MCP tools for golden copy and migration checks.
"""

from mcp_server.handlers import GoldsyncHandler

__all__ = [
    "GoldsyncHandler",
]
