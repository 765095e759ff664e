"""Tests for MCP server"""

import asyncio
import json
from unittest.mock import patch

from mcp_server.server import app, call_tool, handler, list_tools

TOOL_NAMES = {
    "analyze_source_tables",
    "golden_copy_status",
    "migration_status",
    "compare_schema",
    "compare_migration_baselines",
}


class TestServerInitialization:
    """Tests for server initialization"""

    def test_server_name(self) -> None:
        """Test that server is initialized with correct name"""
        assert app.name == "goldsync"

    def test_handler_initialized(self) -> None:
        """Test that the handler is initialized"""
        assert handler is not None


class TestTools:
    """Tests for tool listing and dispatch"""

    def test_list_tools(self) -> None:
        """Test that every handler method is exposed as a tool"""
        tools = asyncio.run(list_tools())

        assert {tool.name for tool in tools} == TOOL_NAMES
        for tool in tools:
            assert callable(getattr(handler, tool.name))
            assert tool.inputSchema["required"]

    def test_unknown_tool(self) -> None:
        """Test calling a tool that does not exist"""
        result = asyncio.run(call_tool("drop_everything", {}))

        assert result[0].text == "Error: Unknown tool: drop_everything"

    def test_missing_arguments(self) -> None:
        """Test that missing arguments are reported, not raised"""
        result = asyncio.run(call_tool("compare_schema", {"source_url": "postgresql://u@h/a"}))

        assert result[0].text.startswith("Error: Invalid arguments for tool 'compare_schema'")

    def test_dispatch(self) -> None:
        """Test that arguments are passed through to the handler"""
        with patch.object(handler, "migration_status", return_value='{"compatibility": "synced"}') as method:
            result = asyncio.run(
                call_tool("migration_status", {"database_url": "postgresql://u@h/db", "worktree_path": "/src/app"})
            )

        method.assert_called_once_with(database_url="postgresql://u@h/db", worktree_path="/src/app")
        assert json.loads(result[0].text) == {"compatibility": "synced"}
