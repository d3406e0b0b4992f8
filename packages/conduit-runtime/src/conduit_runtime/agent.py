from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Union

from conduit_core.config import EngineConfig
from conduit_core.errors import NotCallableError, RunLimitError
from conduit_core.logging import get_logger

from conduit_runtime.observer import CallObserver, default_observer, notify
from conduit_runtime.schema import AnyObject, validate_passthrough
from conduit_runtime.tools import ToolRegistry

if TYPE_CHECKING:
    from pydantic import BaseModel

    from conduit_runtime.context import ExecutionContext

logger = get_logger("agent")

_DEFAULT_MAX_TRANSFERS = EngineConfig().max_transfers

USER_INPUT_KEY = "$message"

AgentInput = Mapping[str, Any]
SubscribeTopic = Union[str, Sequence[str]]
PublishTopic = Union[
    str,
    Sequence[str],
    Callable[[dict[str, Any]], "str | Sequence[str] | Awaitable[str | Sequence[str]]"],
]


def user_input(text: str) -> dict[str, Any]:
    """Wrap a bare string into the canonical user-input shape."""
    return {USER_INPUT_KEY: text}


# ── Process results ──────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Data:
    """A validated output payload."""
    output: dict[str, Any]


@dataclass(frozen=True, slots=True)
class TransferSignal:
    """Control passes to *target*, which receives *input* unchanged."""
    target: Agent
    input: dict[str, Any]


ProcessResult = Union[Data, TransferSignal]


# ── Agent ────────────────────────────────────────────────────────────


class Agent:
    """Named, schema-bound unit of asynchronous computation.

    Subclasses provide ``async def process(self, input, context)``.  It
    returns either an output mapping or another :class:`Agent`; the latter
    is turned into a :class:`TransferSignal`.  An agent without ``process``
    is never callable.

    Agents are built once and then shared across runs; the only mutable
    state is the append-only tool list, which must be complete before the
    first call.
    """

    process: ClassVar[Callable[..., Awaitable[Any]] | None] = None

    def __init__(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        input_schema: type[BaseModel] | None = None,
        output_schema: type[BaseModel] | None = None,
        include_input_in_output: bool = False,
        subscribe_topic: SubscribeTopic | None = None,
        publish_topic: PublishTopic | None = None,
        tools: Iterable[Agent | Callable[..., Any]] = (),
        disable_logging: bool = False,
        observer: CallObserver | None = None,
    ) -> None:
        self.name = name or type(self).__name__
        self.description = description
        self.input_schema: type[BaseModel] = input_schema or AnyObject
        self.output_schema: type[BaseModel] = output_schema or AnyObject
        self.include_input_in_output = include_input_in_output
        self.subscribe_topic = subscribe_topic
        self.publish_topic = publish_topic
        self.disable_logging = disable_logging
        self._observer = observer or default_observer
        self._tools: ToolRegistry[Agent] = ToolRegistry()
        for tool in tools:
            self.add_tool(tool)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> Agent:
        """Build an agent from a configuration mapping, ignoring unknown keys."""
        accepted = _init_parameters(cls)
        known = {k: v for k, v in options.items() if k in accepted}
        ignored = sorted(set(options) - set(known))
        if ignored:
            logger.debug("Ignoring unknown agent options for %s: %s", cls.__name__, ignored)
        return cls(**known)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"

    # ── Tools ───────────────────────────────────────────────────────

    @property
    def tools(self) -> ToolRegistry[Agent]:
        return self._tools

    def add_tool(self, tool: Agent | Callable[..., Any]) -> Agent:
        """Append *tool*, lifting a plain function into a :class:`FunctionAgent`."""
        agent = as_agent(tool)
        self._tools._append(agent)
        return agent

    # ── Topics ──────────────────────────────────────────────────────

    @property
    def subscribe_topics(self) -> tuple[str, ...]:
        if self.subscribe_topic is None:
            return ()
        if isinstance(self.subscribe_topic, str):
            return (self.subscribe_topic,)
        return tuple(self.subscribe_topic)

    # ── Invocation ──────────────────────────────────────────────────

    @property
    def is_callable(self) -> bool:
        return self.process is not None

    async def invoke(
        self,
        input: AgentInput | str,
        context: ExecutionContext | None = None,
    ) -> ProcessResult:
        """Run one call and return the raw :data:`ProcessResult`.

        Transfers are returned, not followed; see :meth:`call` and the
        execution engine for that.
        """
        if self.process is None:
            raise NotCallableError(
                f"Agent {self.name!r} has no process implementation"
            )

        raw = user_input(input) if isinstance(input, str) else input
        observer = None if self.disable_logging else self._observer

        notify(observer, "on_call_start", self, raw, context)
        start = time.monotonic()
        try:
            result = await self._run(raw, context)
        except Exception as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            notify(observer, "on_call_end", self, raw, None, exc, elapsed_ms)
            raise
        elapsed_ms = (time.monotonic() - start) * 1000
        notify(observer, "on_call_end", self, raw, result, None, elapsed_ms)
        return result

    async def _run(
        self,
        raw: AgentInput,
        context: ExecutionContext | None,
    ) -> ProcessResult:
        parsed = validate_passthrough(
            self.input_schema, raw, label=f"Input of agent {self.name!r}"
        )

        produced = await self.process(parsed, context)
        if isinstance(produced, Agent):
            logger.debug("Agent %s transfers to %s", self.name, produced.name)
            return TransferSignal(target=produced, input=parsed)

        output = validate_passthrough(
            self.output_schema, produced, label=f"Output of agent {self.name!r}"
        )
        if self.include_input_in_output:
            output = {**parsed, **output}

        if context is not None:
            context.record(self.name, parsed, output)
        return Data(output)

    async def call(
        self,
        input: AgentInput | str,
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        """Call the agent and return its output, following any transfers."""
        result = await self.invoke(input, context)
        return await follow_transfers(result, context)

    async def shutdown(self) -> None:
        """Release owned resources.  The base agent owns none."""


async def follow_transfers(
    result: ProcessResult,
    context: ExecutionContext | None,
    *,
    max_transfers: int = _DEFAULT_MAX_TRANSFERS,
    on_transfer: Callable[[TransferSignal], None] | None = None,
) -> dict[str, Any]:
    """Resolve a chain of transfers to the final agent's output."""
    hops = 0
    while isinstance(result, TransferSignal):
        hops += 1
        if hops > max_transfers:
            raise RunLimitError(
                f"Transfer chain exceeded {max_transfers} hop(s) "
                f"(last target: {result.target.name!r})"
            )
        if on_transfer is not None:
            on_transfer(result)
        result = await result.target.invoke(result.input, context)
    return result.output


# ── Function-backed agents ───────────────────────────────────────────

FunctionAgentFn = Callable[..., Any]


def _context_mode(fn: Callable[..., Any]) -> str | None:
    """How *fn* takes the context: "positional", "keyword" or not at all.

    A second positional parameter only receives the context when it is
    required or named ``context``; an optional one keeps its default.
    """
    try:
        params = list(inspect.signature(fn).parameters.values())
    except (TypeError, ValueError):
        return None
    positional = [
        p for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    if len(positional) >= 2:
        second = positional[1]
        if second.default is inspect.Parameter.empty or second.name == "context":
            return "positional"
    elif any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return "positional"
    if any(
        p.name == "context" and p.kind is inspect.Parameter.KEYWORD_ONLY for p in params
    ):
        return "keyword"
    return None


def _empty(input: AgentInput) -> dict[str, Any]:
    return {}


class FunctionAgent(Agent):
    """Agent whose process is a plain (sync or async) function.

    The function receives the validated input, and the context too when
    its signature asks for it (see :func:`_context_mode`).  Returning an
    :class:`Agent` transfers control to it.
    """

    def __init__(self, fn: FunctionAgentFn | None = None, **options: Any) -> None:
        self.fn = fn or _empty
        if "name" not in options or options["name"] is None:
            options["name"] = getattr(fn, "__name__", None) if fn else None
        super().__init__(**options)
        self._context_mode = _context_mode(self.fn)

    async def process(
        self,
        input: dict[str, Any],
        context: ExecutionContext | None = None,
    ) -> Any:
        if self._context_mode == "positional":
            result = self.fn(input, context)
        elif self._context_mode == "keyword":
            result = self.fn(input, context=context)
        else:
            result = self.fn(input)
        if inspect.isawaitable(result):
            result = await result
        return result


ToolLike = Union[Agent, FunctionAgentFn]


def as_agent(tool: ToolLike) -> Agent:
    """Lift a tool reference into an agent at registration time."""
    if isinstance(tool, Agent):
        return tool
    if callable(tool):
        return FunctionAgent(fn=tool)
    raise TypeError(f"Tool must be an Agent or a callable, got {type(tool).__name__}")


def _init_parameters(cls: type) -> set[str]:
    """Keyword names accepted by ``cls.__init__`` and its bases."""
    kinds = (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
    names: set[str] = set()
    for klass in cls.__mro__:
        init = klass.__dict__.get("__init__")
        if init is None or klass is object:
            continue
        names.update(
            p.name for p in inspect.signature(init).parameters.values() if p.kind in kinds
        )
    names.discard("self")
    return names
