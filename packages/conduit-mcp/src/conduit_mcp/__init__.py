"""Conduit MCP: external MCP tool/prompt hosts bridged in as agents."""
from __future__ import annotations

from conduit_mcp.agent import (
    CallToolOutput,
    GetPromptOutput,
    MCPAgent,
    MCPPrompt,
    MCPTool,
)
from conduit_mcp.connection import (
    MCPConnection,
    SSEServerOptions,
    StdioServerOptions,
    TransportKind,
)
from conduit_mcp.json_schema import model_from_json_schema

__all__ = [
    "CallToolOutput",
    "GetPromptOutput",
    "MCPAgent",
    "MCPConnection",
    "MCPPrompt",
    "MCPTool",
    "SSEServerOptions",
    "StdioServerOptions",
    "TransportKind",
    "model_from_json_schema",
]
