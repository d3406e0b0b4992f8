from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio
from mcp.types import (
    CallToolResult,
    GetPromptResult,
    Implementation,
    ListPromptsResult,
    ListToolsResult,
    Prompt,
    PromptArgument,
    PromptMessage,
    PromptsCapability,
    ServerCapabilities,
    TextContent,
    Tool,
    ToolsCapability,
)


class RecordingObserver:
    """Collects (event, agent name, error) tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, BaseException | None]] = []

    def on_call_start(self, agent, input, context) -> None:
        self.events.append(("start", agent.name, None))

    def on_call_end(self, agent, input, result, error, elapsed_ms) -> None:
        self.events.append(("end", agent.name, error))


class ScriptedChatModel:
    """Chat model double: replies are produced by *respond(messages, tools)*."""

    def __init__(self, respond) -> None:
        self._respond = respond
        self.requests: list[tuple[list[dict[str, Any]], list[dict[str, Any]] | None]] = []

    async def call(self, messages, tools=None):
        self.requests.append(([dict(m) for m in messages], tools))
        return self._respond(messages, tools)


# ---------------------------------------------------------------------------
# MCP doubles
# ---------------------------------------------------------------------------

ADD_TOOL = Tool(
    name="add",
    description="Add two integers",
    inputSchema={
        "type": "object",
        "properties": {
            "a": {"type": "integer"},
            "b": {"type": "integer"},
        },
        "required": ["a", "b"],
    },
)

FAIL_TOOL = Tool(
    name="explode",
    description="Always fails on the host",
    inputSchema={"type": "object", "properties": {}},
)

DEMO_PROMPT = Prompt(
    name="mcp-demo",
    description="Seed a demo conversation",
    arguments=[
        PromptArgument(name="topic", description="Business topic", required=True),
        PromptArgument(name="tone", description="Optional tone", required=False),
    ],
)


class FakeSession:
    """Stands in for ``mcp.ClientSession`` after ``initialize``."""

    def __init__(self) -> None:
        self.tool_calls: list[tuple[str, dict[str, Any]]] = []
        self.prompt_calls: list[tuple[str, dict[str, str]]] = []
        self.fail_with: BaseException | None = None

    async def list_tools(self) -> ListToolsResult:
        return ListToolsResult(tools=[ADD_TOOL, FAIL_TOOL])

    async def list_prompts(self) -> ListPromptsResult:
        return ListPromptsResult(prompts=[DEMO_PROMPT])

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.tool_calls.append((name, dict(arguments or {})))
        if name == "add":
            total = arguments["a"] + arguments["b"]
            return CallToolResult(content=[TextContent(type="text", text=str(total))])
        return CallToolResult(
            content=[TextContent(type="text", text="boom")],
            isError=True,
        )

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None) -> GetPromptResult:
        self.prompt_calls.append((name, dict(arguments or {})))
        topic = (arguments or {}).get("topic", "")
        return GetPromptResult(
            description="demo",
            messages=[
                PromptMessage(
                    role="user",
                    content=TextContent(type="text", text=f"Let's talk about {topic}"),
                )
            ],
        )


class CloseCounter:
    def __init__(self) -> None:
        self.count = 0

    async def __call__(self) -> None:
        self.count += 1


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def close_counter():
    return CloseCounter()


@pytest_asyncio.fixture
async def fake_connection(fake_session, close_counter):
    from conduit_mcp.connection import MCPConnection, TransportKind

    connection = MCPConnection(
        TransportKind.STDIO,
        "fake-server --stdio",
        fake_session,
        close_counter,
        server_info=Implementation(name="fake", version="1.0.0"),
        capabilities=ServerCapabilities(
            tools=ToolsCapability(),
            prompts=PromptsCapability(),
        ),
    )
    yield connection
    await connection.close()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def scripted_model():
    return ScriptedChatModel
