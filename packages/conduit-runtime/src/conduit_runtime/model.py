"""Prompt-template agents backed by an externally supplied chat model."""
from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from conduit_core.errors import AgentError, ModelUnavailableError
from conduit_core.logging import get_logger

from conduit_runtime.agent import USER_INPUT_KEY, Agent, TransferSignal
from conduit_runtime.schema import json_schema_for

if TYPE_CHECKING:
    from conduit_runtime.context import ExecutionContext

logger = get_logger("model")

_PLACEHOLDER = re.compile(r"\{\{\s*([\w$.-]+)\s*\}\}")


@runtime_checkable
class ChatModel(Protocol):
    """Chat-completion backend.  Supplied by the application, never built here.

    ``messages`` are ``{"role", "content"}`` dicts.  The reply is an
    assistant message; when the model wants tools it carries
    ``tool_calls``: ``[{"id", "name", "arguments"}]``.
    """

    async def call(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]: ...


def render_template(template: str, values: Mapping[str, Any]) -> str:
    """Replace ``{{ name }}`` placeholders; missing values render empty."""

    def _sub(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    return _PLACEHOLDER.sub(_sub, template)


def message_text(content: Any) -> str:
    """Flatten MCP-style content (str, text block, or list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        return str(content.get("text", ""))
    if isinstance(content, Sequence):
        return "\n".join(message_text(part) for part in content)
    return str(content)


def tool_spec(tool: Agent) -> dict[str, Any]:
    parameters = getattr(tool, "json_schema", None) or json_schema_for(tool.input_schema)
    return {
        "name": tool.name,
        "description": tool.description or "",
        "parameters": parameters,
    }


class ModelAgent(Agent):
    """Renders its instructions from the input and asks the chat model.

    *instructions* is a template string or a list of messages (for
    example the ``messages`` of an MCP prompt).  Tool calls requested by
    the model are executed against the agent's tools and the run's
    engine-level tools; a tool that transfers makes this agent transfer
    too.  The final reply text is stored under *output_key*.

    With *enable_history*, earlier exchanges of this agent recorded in
    the context are replayed as user/assistant turns, so a context kept
    across calls (see ``UserAgent(keep_context=True)``) holds a
    conversation.
    """

    def __init__(
        self,
        *,
        instructions: str | Sequence[Mapping[str, Any]] = "",
        output_key: str = USER_INPUT_KEY,
        max_iterations: int = 8,
        enable_history: bool = False,
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.instructions = instructions
        self.output_key = output_key
        self.max_iterations = max_iterations
        self.enable_history = enable_history

    def history_messages(self, context: ExecutionContext | None) -> list[dict[str, Any]]:
        """User/assistant turns from this agent's earlier calls in *context*."""
        if context is None:
            return []
        messages: list[dict[str, Any]] = []
        for entry in context.history:
            if entry.agent != self.name:
                continue
            question = entry.input.get(USER_INPUT_KEY)
            if question is not None:
                messages.append({"role": "user", "content": message_text(question)})
            answer = entry.output.get(self.output_key)
            if answer is not None:
                messages.append({"role": "assistant", "content": message_text(answer)})
        return messages

    def build_messages(
        self,
        input: Mapping[str, Any],
        context: ExecutionContext | None = None,
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if isinstance(self.instructions, str):
            if self.instructions:
                messages.append({
                    "role": "system",
                    "content": render_template(self.instructions, input),
                })
        else:
            for message in self.instructions:
                messages.append({
                    "role": message.get("role", "system"),
                    "content": render_template(message_text(message.get("content")), input),
                })

        if self.enable_history:
            messages.extend(self.history_messages(context))

        question = input.get(USER_INPUT_KEY)
        if question is not None:
            messages.append({"role": "user", "content": message_text(question)})
        return messages

    async def process(
        self,
        input: dict[str, Any],
        context: ExecutionContext | None = None,
    ) -> dict[str, Any] | Agent:
        model = context.model if context is not None else None
        if model is None:
            raise ModelUnavailableError(
                f"Agent {self.name!r} needs a chat model in its execution context"
            )

        tools = [*self.tools, *context.tools]
        specs = [tool_spec(t) for t in tools] or None
        messages = self.build_messages(input, context)

        for _ in range(self.max_iterations):
            reply = await model.call(messages, specs)
            calls = reply.get("tool_calls") or []
            if not calls:
                return {self.output_key: message_text(reply.get("content"))}

            messages.append(dict(reply))
            for tool_call in calls:
                name = tool_call.get("name", "")
                tool = next((t for t in tools if t.name == name), None)
                arguments = tool_call.get("arguments") or {}
                if tool is None:
                    logger.warning("Model requested unknown tool %r", name)
                    content: Any = {"error": f"Tool {name!r} not found"}
                else:
                    try:
                        if isinstance(arguments, str):
                            arguments = json.loads(arguments or "{}")
                    except json.JSONDecodeError as exc:
                        logger.warning("Model sent malformed arguments for tool %r", name)
                        content = {"error": f"Invalid JSON arguments for tool {name!r}: {exc}"}
                    else:
                        result = await tool.invoke(arguments, context)
                        if isinstance(result, TransferSignal):
                            return result.target
                        content = result.output
                messages.append({
                    "role": "tool",
                    "tool_call_id": tool_call.get("id"),
                    "name": name,
                    "content": json.dumps(content, default=str),
                })

        raise AgentError(
            f"Agent {self.name!r} exceeded {self.max_iterations} model iteration(s)"
        )
