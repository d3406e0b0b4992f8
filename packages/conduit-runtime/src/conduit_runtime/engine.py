"""ExecutionEngine: drives runs over a static topic bus.

A run seeds :data:`USER_INPUT_TOPIC` with the initial input and then
proceeds in rounds.  Each round takes every pending ``(topic, message)``,
invokes the subscribers of each topic in registration order, follows any
transfers to completion, and resolves the publish topic(s) of each
result.  New messages only become visible to the next round, after every
invocation of the current round has finished.  A run ends when a round
produces nothing routable.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from conduit_core.config import EngineConfig
from conduit_core.errors import EngineError, RunLimitError
from conduit_core.logging import get_logger

from conduit_runtime.agent import (
    Agent,
    AgentInput,
    ToolLike,
    TransferSignal,
    as_agent,
    follow_transfers,
    user_input,
)
from conduit_runtime.context import ExecutionContext
from conduit_runtime.topics import (
    USER_INPUT_TOPIC,
    USER_OUTPUT_TOPIC,
    TopicBus,
    resolve_publish_topics,
)

if TYPE_CHECKING:
    from conduit_runtime.model import ChatModel

logger = get_logger("engine")

Runner = Callable[[dict[str, Any], ExecutionContext], Awaitable[dict[str, Any]]]


class ExecutionEngine:
    """Runs agent pipelines with a shared, run-scoped context.

    *agents* take part in topic routing.  *tools* and *model* are not
    routed; they are exposed to every agent through the run context
    (``context.tools`` / ``context.model``).
    """

    def __init__(
        self,
        *,
        agents: Iterable[Agent] = (),
        tools: Iterable[ToolLike] = (),
        model: ChatModel | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._agents = tuple(agents)
        self._tools = tuple(as_agent(t) for t in tools)
        self._model = model
        self._config = config or EngineConfig()
        self._bus = TopicBus.build(self._agents)

    @property
    def bus(self) -> TopicBus:
        return self._bus

    @property
    def tools(self) -> tuple[Agent, ...]:
        return self._tools

    def new_context(
        self, correlation: Mapping[str, str] | None = None
    ) -> ExecutionContext:
        return ExecutionContext(
            correlation=dict(correlation or {}),
            model=self._model,
            tools=self._tools,
        )

    # ── Single invocation ───────────────────────────────────────────

    async def _invoke(
        self,
        agent: Agent,
        message: AgentInput,
        context: ExecutionContext,
    ) -> tuple[dict[str, Any], Agent]:
        """Invoke *agent*, following transfers; return output and final agent."""
        final = agent

        def on_transfer(signal: TransferSignal) -> None:
            nonlocal final
            logger.info(
                "Run %s: %s transfers to %s",
                context.run_id,
                final.name,
                signal.target.name,
                extra={"run_id": context.run_id, "agent": final.name},
            )
            final = signal.target

        result = await agent.invoke(message, context)
        output = await follow_transfers(
            result,
            context,
            max_transfers=self._config.max_transfers,
            on_transfer=on_transfer,
        )
        return output, final

    async def call(
        self,
        agent: Agent,
        input: AgentInput | str,
        *,
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        """Invoke one agent outside topic routing, following transfers."""
        context = context or self.new_context()
        message = user_input(input) if isinstance(input, str) else input
        output, _ = await self._invoke(agent, message, context)
        return output

    # ── Topic runs ──────────────────────────────────────────────────

    async def run(
        self,
        input: AgentInput | str,
        *,
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        """Publish *input* to the user-input topic and run to completion.

        Returns the last message published to :data:`USER_OUTPUT_TOPIC`,
        or else the output of the run's last invocation.
        """
        if not self._bus.has_subscribers(USER_INPUT_TOPIC):
            raise EngineError(
                f"No agent subscribes to {USER_INPUT_TOPIC!r}; nothing to run"
            )

        context = context or self.new_context()
        seed = user_input(input) if isinstance(input, str) else dict(input)
        pending: list[tuple[str, dict[str, Any]]] = [(USER_INPUT_TOPIC, seed)]
        user_output: dict[str, Any] | None = None
        last_output: dict[str, Any] = {}
        rounds = 0

        logger.debug(
            "Run %s started", context.run_id, extra={"run_id": context.run_id}
        )
        while pending:
            rounds += 1
            if rounds > self._config.max_rounds:
                raise RunLimitError(
                    f"Run {context.run_id} exceeded {self._config.max_rounds} round(s)"
                )

            next_round: list[tuple[str, dict[str, Any]]] = []
            for topic, message in pending:
                for agent in self._bus.subscribers(topic):
                    output, final = await self._invoke(agent, message, context)
                    last_output = output
                    for target in await resolve_publish_topics(final, output):
                        if target == USER_OUTPUT_TOPIC:
                            user_output = output
                        if self._bus.has_subscribers(target):
                            next_round.append((target, output))
                        elif target != USER_OUTPUT_TOPIC:
                            logger.debug(
                                "Run %s: no subscribers for topic %r from %s",
                                context.run_id,
                                target,
                                final.name,
                                extra={"run_id": context.run_id, "topic": target},
                            )
            pending = next_round

        logger.debug(
            "Run %s finished after %d round(s)",
            context.run_id,
            rounds,
            extra={"run_id": context.run_id},
        )
        return user_output if user_output is not None else last_output

    # ── Sequences ───────────────────────────────────────────────────

    async def run_sequence(
        self,
        stages: Iterable[Agent],
        input: AgentInput | str,
        *,
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        """Run *stages* in order without explicit topics.

        Each stage receives the carried input merged with the previous
        stage's output, so an output key feeds the next stage's field of
        the same name.  Returns the last stage's output.
        """
        context = context or self.new_context()
        carry = user_input(input) if isinstance(input, str) else dict(input)
        output: dict[str, Any] = {}
        for stage in stages:
            output, _ = await self._invoke(stage, carry, context)
            carry = {**carry, **output}
        return output

    def sequential(self, *stages: Agent, input_key: str | None = None) -> UserAgent:
        """Terminal agent running *stages* as a sequence on every call."""
        if not stages:
            raise ValueError("A sequence must contain at least one agent")
        ordered = tuple(stages)

        async def runner(message: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
            return await self.run_sequence(ordered, message, context=context)

        return UserAgent(self, runner, input_key=input_key)

    def user_agent(
        self, *, input_key: str | None = None, keep_context: bool = False
    ) -> UserAgent:
        """Terminal agent running this engine's topic pipeline on every call."""

        async def runner(message: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
            return await self.run(message, context=context)

        return UserAgent(self, runner, input_key=input_key, keep_context=keep_context)

    def chat(self, agent: Agent, *, input_key: str | None = None) -> UserAgent:
        """Terminal agent calling *agent* directly, one shared context per session.

        Every call sees the history of the previous ones, so a
        :class:`~conduit_runtime.model.ModelAgent` built with
        ``enable_history=True`` holds a conversation.
        """

        async def runner(message: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
            return await self.call(agent, message, context=context)

        return UserAgent(self, runner, input_key=input_key, keep_context=True)

    # ── Teardown ────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Shut down every routed agent and engine tool (best-effort)."""
        seen: set[int] = set()
        for agent in (*self._agents, *self._tools):
            if id(agent) in seen:
                continue
            seen.add(id(agent))
            try:
                await agent.shutdown()
            except Exception:
                logger.warning("Shutdown of agent %s failed", agent.name, exc_info=True)

    async def __aenter__(self) -> ExecutionEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()


class UserAgent(Agent):
    """Terminal agent handed to an interactive loop.

    By default every call starts a new run with a fresh context unless the
    caller supplies one.  With *keep_context* the first call creates a
    context that all later calls reuse, so history accumulates across
    turns; such an agent serves one conversation at a time.  A bare
    string is wrapped under *input_key* when given.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        runner: Runner,
        *,
        input_key: str | None = None,
        keep_context: bool = False,
        name: str = "UserAgent",
    ) -> None:
        super().__init__(name=name)
        self._engine = engine
        self._runner = runner
        self.input_key = input_key
        self.keep_context = keep_context
        self._context: ExecutionContext | None = None

    @property
    def context(self) -> ExecutionContext | None:
        """The context kept across calls, once the first call created it."""
        return self._context

    def reset(self) -> None:
        """Forget the kept context; the next call starts a new conversation."""
        self._context = None

    async def invoke(self, input, context=None):
        if isinstance(input, str) and self.input_key:
            input = {self.input_key: input}
        return await super().invoke(input, context)

    async def process(
        self,
        input: dict[str, Any],
        context: ExecutionContext | None = None,
    ) -> dict[str, Any]:
        if context is None:
            if not self.keep_context:
                context = self._engine.new_context()
            else:
                if self._context is None:
                    self._context = self._engine.new_context()
                context = self._context
        return await self._runner(input, context)
