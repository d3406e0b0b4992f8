from __future__ import annotations

import asyncio

import pytest
from conduit_core.config import EngineConfig
from conduit_core.errors import (
    EngineError,
    RunLimitError,
    SchemaValidationError,
    TopicResolutionError,
)
from conduit_runtime.agent import USER_INPUT_KEY, FunctionAgent
from conduit_runtime.engine import ExecutionEngine, UserAgent
from conduit_runtime.topics import USER_INPUT_TOPIC, USER_OUTPUT_TOPIC
from pydantic import BaseModel


class Trace:
    """Records the order in which agents run."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []

    def agent(self, name, fn=None, **options):
        def body(input):
            self.calls.append((name, dict(input)))
            return fn(input) if fn else {}

        return FunctionAgent(fn=body, name=name, **options)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class TestTopicRuns:
    async def test_chain_runs_each_agent_once_in_order(self):
        trace = Trace()
        a = trace.agent(
            "A",
            lambda i: {"step": 1},
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic="t1",
        )
        b = trace.agent("B", lambda i: {"step": i["step"] + 1}, subscribe_topic="t1")
        engine = ExecutionEngine(agents=[a, b])

        result = await engine.run("go")

        assert trace.names == ["A", "B"]
        assert trace.calls[0][1] == {USER_INPUT_KEY: "go"}
        assert trace.calls[1][1] == {"step": 1}
        assert result == {"step": 2}

    async def test_fan_out_respects_registration_order(self):
        trace = Trace()
        root = trace.agent("root", subscribe_topic=USER_INPUT_TOPIC, publish_topic="t")
        left = trace.agent("left", subscribe_topic="t")
        right = trace.agent("right", subscribe_topic="t")
        engine = ExecutionEngine(agents=[root, left, right])

        await engine.run({})

        assert trace.names == ["root", "left", "right"]

    async def test_round_barrier_defers_downstream_messages(self):
        trace = Trace()
        a = trace.agent("A", subscribe_topic=USER_INPUT_TOPIC, publish_topic="next")
        b = trace.agent("B", subscribe_topic=USER_INPUT_TOPIC, publish_topic="next")
        c = trace.agent("C", subscribe_topic="next")
        engine = ExecutionEngine(agents=[a, b, c])

        await engine.run({})

        # Both first-round agents finish before C sees either message.
        assert trace.names == ["A", "B", "C", "C"]

    async def test_messages_without_subscribers_are_dropped(self):
        trace = Trace()
        a = trace.agent("A", subscribe_topic=USER_INPUT_TOPIC, publish_topic="void")
        engine = ExecutionEngine(agents=[a])
        assert await engine.run({}) == {}
        assert trace.names == ["A"]

    async def test_user_output_topic_is_the_result(self):
        trace = Trace()
        answer = trace.agent(
            "answer",
            lambda i: {"answer": 42},
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic=[USER_OUTPUT_TOPIC, "audit"],
        )
        audit = trace.agent("audit", lambda i: {"audited": True}, subscribe_topic="audit")
        engine = ExecutionEngine(agents=[answer, audit])

        assert await engine.run({}) == {"answer": 42}
        assert trace.names == ["answer", "audit"]

    async def test_dynamic_publish_topic(self):
        trace = Trace()
        triage = trace.agent(
            "triage",
            lambda i: {"kind": i[USER_INPUT_KEY]},
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic=lambda output: f"{output['kind']}-queue",
        )
        bugs = trace.agent("bugs", subscribe_topic="bug-queue")
        features = trace.agent("features", subscribe_topic="feature-queue")
        engine = ExecutionEngine(agents=[triage, bugs, features])

        await engine.run("bug")

        assert trace.names == ["triage", "bugs"]

    async def test_publish_topic_failure_aborts_run(self):
        def broken(output):
            raise RuntimeError("no route")

        a = FunctionAgent(name="A", subscribe_topic=USER_INPUT_TOPIC, publish_topic=broken)
        engine = ExecutionEngine(agents=[a])
        with pytest.raises(TopicResolutionError):
            await engine.run({})

    async def test_cycle_hits_round_limit(self):
        ping = FunctionAgent(name="ping", subscribe_topic=[USER_INPUT_TOPIC, "ping"], publish_topic="pong")
        pong = FunctionAgent(name="pong", subscribe_topic="pong", publish_topic="ping")
        engine = ExecutionEngine(agents=[ping, pong], config=EngineConfig(max_rounds=5))
        with pytest.raises(RunLimitError):
            await engine.run({})

    async def test_run_without_entry_agent_raises(self):
        engine = ExecutionEngine(agents=[FunctionAgent(name="idle", subscribe_topic="elsewhere")])
        with pytest.raises(EngineError):
            await engine.run("hello")

    async def test_agent_error_propagates(self):
        class Strict(BaseModel):
            count: int

        a = FunctionAgent(name="A", subscribe_topic=USER_INPUT_TOPIC, publish_topic="t")
        b = FunctionAgent(name="B", subscribe_topic="t", input_schema=Strict)
        engine = ExecutionEngine(agents=[a, b])
        with pytest.raises(SchemaValidationError):
            await engine.run({})

    async def test_history_records_every_call(self):
        a = FunctionAgent(
            fn=lambda i: {"x": 1},
            name="A",
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic="t",
        )
        b = FunctionAgent(fn=lambda i: {"y": 2}, name="B", subscribe_topic="t")
        engine = ExecutionEngine(agents=[a, b])
        context = engine.new_context({"session": "s-1"})

        await engine.run({}, context=context)

        assert [e.agent for e in context.history] == ["A", "B"]
        assert context.correlation == {"session": "s-1"}


class TestTransfersInRuns:
    async def test_transfer_uses_final_agent_publish_topic(self):
        trace = Trace()
        specialist = trace.agent(
            "specialist",
            lambda i: {"handled": True},
            publish_topic=USER_OUTPUT_TOPIC,
        )
        router = FunctionAgent(
            fn=lambda i: specialist,
            name="router",
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic="never",
        )
        never = trace.agent("never", subscribe_topic="never")
        engine = ExecutionEngine(agents=[router, never])

        assert await engine.run("help") == {"handled": True}
        assert trace.names == ["specialist"]
        assert trace.calls[0][1] == {USER_INPUT_KEY: "help"}

    async def test_transfer_chain_is_bounded(self):
        ping = FunctionAgent(name="ping", subscribe_topic=USER_INPUT_TOPIC)
        pong = FunctionAgent(fn=lambda i: ping, name="pong")
        ping.fn = lambda i: pong
        engine = ExecutionEngine(agents=[ping], config=EngineConfig(max_transfers=3))
        with pytest.raises(RunLimitError):
            await engine.run({})

    async def test_call_follows_transfers(self):
        target = FunctionAgent(fn=lambda i: {"from": "target"}, name="target")
        router = FunctionAgent(fn=lambda i: target, name="router")
        engine = ExecutionEngine()
        assert await engine.call(router, "hi") == {"from": "target"}


class TestSequences:
    async def test_outputs_feed_following_stages(self):
        first = FunctionAgent(fn=lambda i: {"concept": f"idea for {i['product']}"}, name="first")
        second = FunctionAgent(fn=lambda i: {"draft": i["concept"].upper()}, name="second")
        engine = ExecutionEngine()

        result = await engine.run_sequence([first, second], {"product": "kettle"})

        assert result == {"draft": "IDEA FOR KETTLE"}

    async def test_sequential_user_agent_wraps_string_input(self):
        seen = []
        stage = FunctionAgent(fn=lambda i: seen.append(dict(i)) or {"ok": True}, name="stage")
        engine = ExecutionEngine()
        user = engine.sequential(stage, input_key="product")

        assert isinstance(user, UserAgent)
        assert await user.call("Lumen") == {"ok": True}
        assert seen == [{"product": "Lumen"}]

    def test_empty_sequence_rejected(self):
        with pytest.raises(ValueError):
            ExecutionEngine().sequential()

    async def test_user_agent_runs_topic_pipeline(self):
        echo = FunctionAgent(
            fn=lambda i: {"echo": i[USER_INPUT_KEY]},
            name="echo",
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic=USER_OUTPUT_TOPIC,
        )
        user = ExecutionEngine(agents=[echo]).user_agent()
        assert await user.call("ping") == {"echo": "ping"}
        assert await user.call("pong") == {"echo": "pong"}


class TestConcurrentRuns:
    async def test_runs_have_isolated_contexts(self):
        async def slow(input):
            await asyncio.sleep(0.01)
            return {"echo": input[USER_INPUT_KEY]}

        agent = FunctionAgent(
            fn=slow,
            name="slow",
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic=USER_OUTPUT_TOPIC,
        )
        engine = ExecutionEngine(agents=[agent])
        contexts = [engine.new_context() for _ in range(4)]

        results = await asyncio.gather(
            *(engine.run(str(n), context=ctx) for n, ctx in enumerate(contexts))
        )

        assert [r["echo"] for r in results] == ["0", "1", "2", "3"]
        assert len({ctx.run_id for ctx in contexts}) == 4
        assert all(len(ctx.history) == 1 for ctx in contexts)


class TestShutdown:
    async def test_shutdown_reaches_agents_and_tools_once(self):
        closed = []

        class Closable(FunctionAgent):
            async def shutdown(self):
                closed.append(self.name)

        shared = Closable(name="shared", subscribe_topic=USER_INPUT_TOPIC)
        tool = Closable(name="tool")
        async with ExecutionEngine(agents=[shared, shared], tools=[tool, shared]):
            pass

        assert closed == ["shared", "tool"]

    async def test_failing_shutdown_does_not_stop_others(self):
        closed = []

        class Broken(FunctionAgent):
            async def shutdown(self):
                raise RuntimeError("stuck")

        class Closable(FunctionAgent):
            async def shutdown(self):
                closed.append(self.name)

        engine = ExecutionEngine(agents=[Broken(name="broken"), Closable(name="fine")])
        await engine.shutdown()
        assert closed == ["fine"]

    async def test_engine_tools_reach_context(self):
        def lookup(input):
            return {"found": True}

        engine = ExecutionEngine(tools=[lookup])
        context = engine.new_context()
        assert [t.name for t in context.tools] == ["lookup"]


class TestKeptContext:
    async def test_user_agent_can_keep_context_across_calls(self):
        echo = FunctionAgent(
            fn=lambda i: {"echo": i[USER_INPUT_KEY]},
            name="echo",
            subscribe_topic=USER_INPUT_TOPIC,
            publish_topic=USER_OUTPUT_TOPIC,
        )
        user = ExecutionEngine(agents=[echo]).user_agent(keep_context=True)

        await user.call("one")
        await user.call("two")

        assert [e.input[USER_INPUT_KEY] for e in user.context.history] == ["one", "two"]

    async def test_fresh_context_per_call_by_default(self):
        echo = FunctionAgent(
            fn=lambda i: {},
            name="echo",
            subscribe_topic=USER_INPUT_TOPIC,
        )
        user = ExecutionEngine(agents=[echo]).user_agent()
        await user.call("one")
        assert user.context is None
