"""MCP bridge: an external tool/prompt host exposed as agents.

Usage::

    async with await MCPAgent.connect(command="uvx", args=["mcp-server-sqlite"]) as sqlite:
        prompt = await sqlite.prompts.get("mcp-demo").call({"topic": "sales"})
        engine = ExecutionEngine(agents=[...], tools=[sqlite])
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from conduit_core.logging import get_logger
from conduit_runtime.agent import Agent
from conduit_runtime.tools import ToolRegistry
from pydantic import BaseModel, ConfigDict, Field

from conduit_mcp.connection import (
    MCPConnection,
    ServerOptions,
    SSEServerOptions,
    StdioServerOptions,
)
from conduit_mcp.json_schema import model_from_json_schema

if TYPE_CHECKING:
    from conduit_core.config import MCPConfig
    from conduit_runtime.context import ExecutionContext
    from mcp.types import Prompt, Tool

logger = get_logger("mcp")


class CallToolOutput(BaseModel):
    """Result of ``tools/call``; ``isError`` flags a host-reported failure."""

    model_config = ConfigDict(extra="allow")

    content: list[dict[str, Any]] = Field(default_factory=list)
    isError: bool = False


class GetPromptOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    messages: list[dict[str, Any]]
    description: str | None = None


# ── Capability agents ────────────────────────────────────────────────


class MCPBase(Agent):
    """Agent backed by one capability of an MCP connection."""

    def __init__(self, connection: MCPConnection, **options: Any) -> None:
        super().__init__(**options)
        self.connection = connection

    @property
    def mcp_server(self) -> str:
        return self.connection.server_name or self.connection.target


class MCPTool(MCPBase):
    """A host tool.  Calls send ``tools/call`` with the validated input."""

    def __init__(
        self,
        connection: MCPConnection,
        *,
        json_schema: dict[str, Any] | None = None,
        **options: Any,
    ) -> None:
        options.setdefault("output_schema", CallToolOutput)
        super().__init__(connection, **options)
        self.json_schema = json_schema

    @classmethod
    def from_mcp_tool(cls, connection: MCPConnection, tool: Tool) -> MCPTool:
        return cls(
            connection,
            name=tool.name,
            description=tool.description,
            input_schema=model_from_json_schema(tool.name, tool.inputSchema),
            json_schema=tool.inputSchema,
        )

    def tool_arguments(self, input: Mapping[str, Any]) -> dict[str, Any]:
        """The part of *input* the host accepts.

        Pipelines carry extra keys (``$message``, merged upstream output);
        unless the schema allows ``additionalProperties`` only declared
        properties are sent.
        """
        schema = self.json_schema
        if not schema or schema.get("additionalProperties") not in (None, False):
            return dict(input)
        declared = schema.get("properties") or {}
        return {k: v for k, v in input.items() if k in declared}

    async def process(
        self,
        input: dict[str, Any],
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        result = await self.connection.call_tool(self.name, self.tool_arguments(input))
        if result.get("isError"):
            logger.info("Tool %s on %s reported an error", self.name, self.mcp_server)
        else:
            logger.debug("Called tool %s on %s", self.name, self.mcp_server)
        return result


class MCPPrompt(MCPBase):
    """A host prompt template.  Calls send ``prompts/get`` with string arguments."""

    def __init__(
        self,
        connection: MCPConnection,
        *,
        argument_names: Sequence[str] = (),
        **options: Any,
    ) -> None:
        options.setdefault("output_schema", GetPromptOutput)
        super().__init__(connection, **options)
        self.argument_names = tuple(argument_names)

    @classmethod
    def from_mcp_prompt(cls, connection: MCPConnection, prompt: Prompt) -> MCPPrompt:
        arguments = list(prompt.arguments or [])
        schema = model_from_json_schema(
            f"{prompt.name}_arguments",
            {
                "type": "object",
                "properties": {
                    arg.name: {"type": "string", "description": arg.description}
                    for arg in arguments
                },
                "required": [arg.name for arg in arguments if arg.required],
            },
        )
        return cls(
            connection,
            name=prompt.name,
            description=prompt.description,
            input_schema=schema,
            argument_names=[arg.name for arg in arguments],
        )

    async def process(
        self,
        input: dict[str, Any],
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        arguments = {
            name: str(input[name])
            for name in self.argument_names
            if input.get(name) is not None
        }
        return await self.connection.get_prompt(self.name, arguments)


# ── Bridge ───────────────────────────────────────────────────────────


def _server_options(
    *,
    command: str | None,
    args: Sequence[str],
    cwd: str | None,
    env: Mapping[str, str] | None,
    url: str | None,
    headers: Mapping[str, str] | None,
) -> ServerOptions:
    if url is not None and command is not None:
        raise ValueError("Pass either url= (SSE) or command= (stdio), not both")
    if url is not None:
        return SSEServerOptions(url=url, headers=dict(headers or {}))
    if command is not None:
        return StdioServerOptions(command=command, args=tuple(args), cwd=cwd, env=env)
    raise ValueError("MCPAgent.connect needs either url= or command=")


class MCPAgent(Agent):
    """Owns one MCP connection and exposes its tools and prompts as agents.

    The bridge itself has no process; its capabilities live in
    :attr:`tools` and :attr:`prompts`.  :meth:`shutdown` closes the
    session and, for stdio hosts, stops the subprocess; it is safe to
    call any number of times.
    """

    def __init__(
        self,
        connection: MCPConnection,
        *,
        prompts: Iterable[MCPPrompt] = (),
        **options: Any,
    ) -> None:
        options.setdefault("name", connection.server_name or "MCPAgent")
        super().__init__(**options)
        self.connection = connection
        self._prompts: ToolRegistry[MCPPrompt] = ToolRegistry(prompts)
        self._shutdown_lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        *,
        command: str | None = None,
        args: Sequence[str] = (),
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        url: str | None = None,
        headers: Mapping[str, str] | None = None,
        config: MCPConfig | None = None,
    ) -> MCPAgent:
        """Connect to a host (stdio when *command* is given, SSE for *url*)."""
        options = _server_options(
            command=command, args=args, cwd=cwd, env=env, url=url, headers=headers
        )
        connection = await MCPConnection.open(options, config)
        try:
            return await cls.from_connection(connection)
        except BaseException:
            await connection.close()
            raise

    @classmethod
    async def from_connection(cls, connection: MCPConnection) -> MCPAgent:
        """Discover the capabilities of an open connection and wrap them."""
        tools: list[MCPTool] = []
        prompts: list[MCPPrompt] = []
        if connection.has_tools:
            listed = await connection.list_tools()
            logger.debug(
                "Tools from %s: %s", connection.server_name, [t.name for t in listed]
            )
            tools = [MCPTool.from_mcp_tool(connection, t) for t in listed]
        if connection.has_prompts:
            listed_prompts = await connection.list_prompts()
            logger.debug(
                "Prompts from %s: %s",
                connection.server_name,
                [p.name for p in listed_prompts],
            )
            prompts = [MCPPrompt.from_mcp_prompt(connection, p) for p in listed_prompts]

        logger.info(
            "MCP bridge %s ready with %d tool(s) and %d prompt(s)",
            connection.server_name or connection.target,
            len(tools),
            len(prompts),
        )
        return cls(connection, tools=tools, prompts=prompts)

    @property
    def prompts(self) -> ToolRegistry[MCPPrompt]:
        return self._prompts

    async def shutdown(self) -> None:
        async with self._shutdown_lock:
            if await self.connection.close():
                logger.info("MCP bridge %s shut down", self.name)

    async def __aenter__(self) -> MCPAgent:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
