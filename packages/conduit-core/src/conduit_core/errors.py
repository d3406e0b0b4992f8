from __future__ import annotations

from typing import Any


class ConduitError(Exception):
    """Base exception for all conduit errors."""


# ── Agent Errors ─────────────────────────────────────────────────────

class AgentError(ConduitError):
    """Base for agent invocation errors."""


class SchemaValidationError(AgentError):
    """Input or output failed the agent's declared schema."""

    def __init__(
        self,
        message: str,
        *,
        schema_name: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.schema_name = schema_name
        self.errors = errors or []


class NotCallableError(AgentError):
    """Agent has no process implementation."""


class ModelUnavailableError(AgentError):
    """A model-backed agent was called without a chat model in context."""


# ── Engine Errors ────────────────────────────────────────────────────

class EngineError(ConduitError):
    """Base for execution engine errors."""


class TopicResolutionError(EngineError):
    """A computed publish topic could not be resolved."""


class RunLimitError(EngineError):
    """A run exceeded its round or transfer limit."""


# ── MCP Errors ───────────────────────────────────────────────────────

class MCPError(ConduitError):
    """Base for MCP bridge errors."""


class MCPConnectionError(MCPError):
    """Transport could not be established or was lost."""


class ProtocolError(MCPError):
    """Host answered with a malformed or error response."""


class ToolExecutionError(MCPError):
    """Host reported that a tool failed.

    Tool failures travel through pipelines as flagged output; this
    exception is only raised by callers that opt in via :meth:`check`.
    """

    def __init__(self, tool_name: str, content: list[dict[str, Any]]) -> None:
        text = "; ".join(
            str(item.get("text", "")) for item in content if item.get("type") == "text"
        )
        super().__init__(f"Tool {tool_name!r} failed: {text or 'no details'}")
        self.tool_name = tool_name
        self.content = content

    @classmethod
    def check(cls, tool_name: str, output: dict[str, Any]) -> dict[str, Any]:
        """Return *output* unchanged, raising if it carries ``isError``."""
        if output.get("isError"):
            raise cls(tool_name, list(output.get("content") or []))
        return output


# ── Config Errors ────────────────────────────────────────────────────

class ConfigError(ConduitError):
    """Invalid or missing configuration."""
